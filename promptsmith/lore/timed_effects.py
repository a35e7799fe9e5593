from enum import Enum
from typing import Any, Dict, Iterable, MutableMapping, Optional, Set, Tuple

from promptsmith.config import BuilderConfig
from promptsmith.models.lorebook import LoreEntry
from promptsmith.utils.utils import create_logger, resolve_log_level

timed_log = create_logger(__name__, entity_name='TIMED_EFFECTS', level=resolve_log_level(BuilderConfig.LOG_LEVEL))

STICKY = 'sticky'
COOLDOWN = 'cooldown'
EFFECT_TYPES = (STICKY, COOLDOWN)

TimedState = MutableMapping[str, Dict[str, Any]]


class EffectPhase(Enum):
    INACTIVE = 'inactive'
    STICKY_PROVISIONAL = 'sticky_provisional'
    STICKY_CONFIRMED = 'sticky_confirmed'
    COOLDOWN = 'cooldown'


def build_window(turn_count: int, duration: int, protected: bool) -> Dict[str, Any]:
    return {
        'start_turn': turn_count,
        'end_turn': turn_count + duration,
        'protected': protected
    }


TRUE_STRINGS = ('true', '1', 'yes')


def read_flag(value: Any) -> bool:
    """Reads a persisted flag. Strings count as true only for true, 1 or yes."""
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def read_window(effect: Dict[str, Any]) -> Tuple[int, int, bool]:
    start_turn = effect.get('start_turn', effect.get('start', 0))
    end_turn = effect.get('end_turn', effect.get('end', 0))
    return int(start_turn or 0), int(end_turn or 0), read_flag(effect.get('protected', False))


def delay_active(entry: LoreEntry, turn_count: int) -> bool:
    return entry.delay > 0 and turn_count < entry.delay


class TimedEffects:
    """
    Sticky/cooldown lifecycle of lore entries, persisted in a caller-owned map:

        timed_state[entry_id] = {
            'sticky':   {'start_turn': int, 'end_turn': int, 'protected': bool},
            'cooldown': {'start_turn': int, 'end_turn': int, 'protected': bool},
        }

    A fresh record is provisional (`protected=False`) until the conversation
    advances past its start turn. Re-running the same turn (a regenerate)
    discards it, so repeated builds of one turn never extend an effect.

    `check()` must run once before activation decisions are made and
    `record()` once afterwards; both operate on the same map. The map is
    mutated in place and is not safe for concurrent use.
    """

    def __init__(self, turn_count: int, entries: Iterable[LoreEntry], timed_state: Optional[TimedState] = None,
                 dry_run: bool = False):
        self.turn_count = int(turn_count)
        self.entries: Dict[str, LoreEntry] = {entry.id: entry for entry in entries if entry.id}
        self.timed_state: TimedState = timed_state if timed_state is not None else {}
        self.dry_run = dry_run
        self._active: Dict[str, Set[str]] = {STICKY: set(), COOLDOWN: set()}
        self._checked = False

    def check(self) -> 'TimedEffects':
        for entry_id in list(self.timed_state.keys()):
            state = self.timed_state[entry_id]
            if not isinstance(state, dict):
                timed_log.warning(f"Dropping malformed timed state for entry '{entry_id}': {state!r}")
                if not self.dry_run:
                    del self.timed_state[entry_id]
                continue

            entry = self.entries.get(entry_id)
            for effect_type in EFFECT_TYPES:
                if effect_type in state:
                    self._check_effect(entry_id, entry, state, effect_type)

            if not state and not self.dry_run:
                del self.timed_state[entry_id]

        self._checked = True
        return self

    def _check_effect(self, entry_id: str, entry: Optional[LoreEntry], state: Dict[str, Any], effect_type: str) -> None:
        effect = state[effect_type]
        if not isinstance(effect, dict):
            self._clear(state, effect_type)
            return

        start_turn, end_turn, protected = read_window(effect)

        if not protected:
            if self.turn_count <= start_turn:
                timed_log.debug(f"Rolling back provisional {effect_type} of '{entry_id}' (turn {self.turn_count} <= {start_turn})")
                self._clear(state, effect_type)
                return
            if not self.dry_run:
                effect['protected'] = True

        # records of entries that left the books are kept until they run out
        if entry is None:
            if self.turn_count >= end_turn:
                self._clear(state, effect_type)
            return

        if getattr(entry, effect_type) <= 0:
            self._clear(state, effect_type)
            return

        if self.turn_count >= end_turn:
            self._clear(state, effect_type)
            if effect_type == STICKY:
                self._on_sticky_ended(entry, state)
            return

        self._active[effect_type].add(entry_id)

    def _on_sticky_ended(self, entry: LoreEntry, state: Dict[str, Any]) -> None:
        if entry.cooldown <= 0:
            return
        timed_log.debug(f"Sticky of '{entry.id}' ended at turn {self.turn_count}, cooldown for {entry.cooldown} turns")
        if not self.dry_run:
            state[COOLDOWN] = build_window(self.turn_count, entry.cooldown, protected=True)
        else:
            self._active[COOLDOWN].add(entry.id)

    def _clear(self, state: Dict[str, Any], effect_type: str) -> None:
        if not self.dry_run:
            state.pop(effect_type, None)

    def sticky_active(self, entry_id: str) -> bool:
        return entry_id in self._active[STICKY]

    def cooldown_active(self, entry_id: str) -> bool:
        return entry_id in self._active[COOLDOWN]

    def delay_active(self, entry: LoreEntry) -> bool:
        return delay_active(entry, self.turn_count)

    def phase(self, entry_id: str) -> EffectPhase:
        state = self.timed_state.get(entry_id)
        if not isinstance(state, dict):
            return EffectPhase.INACTIVE
        sticky = state.get(STICKY)
        if isinstance(sticky, dict):
            return EffectPhase.STICKY_CONFIRMED if read_flag(sticky.get('protected')) else EffectPhase.STICKY_PROVISIONAL
        if isinstance(state.get(COOLDOWN), dict):
            return EffectPhase.COOLDOWN
        return EffectPhase.INACTIVE

    def record(self, matched_entries: Iterable[LoreEntry]) -> 'TimedEffects':
        """
        Opens effect windows for entries that matched this turn. Existing
        windows are never overwritten. An entry with a cooldown but no sticky
        duration starts its cooldown right away.
        """
        if self.dry_run:
            return self

        for entry in matched_entries:
            if not entry.id:
                continue
            if entry.sticky > 0:
                state = self.timed_state.setdefault(entry.id, {})
                if STICKY not in state:
                    state[STICKY] = build_window(self.turn_count, entry.sticky, protected=False)
                    timed_log.debug(f"Sticky window for '{entry.id}': turns {self.turn_count}..{self.turn_count + entry.sticky}")
            elif entry.cooldown > 0:
                state = self.timed_state.setdefault(entry.id, {})
                if COOLDOWN not in state:
                    state[COOLDOWN] = build_window(self.turn_count, entry.cooldown, protected=False)
        return self
