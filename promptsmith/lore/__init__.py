from .engine import LoreEngine, LoreScanResult, scan
from .matcher import match_key, match_secondary
from .timed_effects import EffectPhase, TimedEffects, delay_active

__all__ = [
    'EffectPhase',
    'LoreEngine',
    'LoreScanResult',
    'TimedEffects',
    'delay_active',
    'match_key',
    'match_secondary',
    'scan',
]
