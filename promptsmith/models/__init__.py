from .block import Block
from .lorebook import LoreBook, LoreEntry
from .plan import EvictionRecord, Plan, TrimReport

__all__ = [
    'Block',
    'EvictionRecord',
    'LoreBook',
    'LoreEntry',
    'Plan',
    'TrimReport',
]
