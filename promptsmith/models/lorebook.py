from dataclasses import dataclass, field
from typing import Optional, Tuple

from promptsmith.constants import DEFAULT_SCAN_DEPTH, MAX_RECURSION_STEPS, LorePosition, SelectiveLogic
from promptsmith.errors import ConfigurationError


@dataclass(frozen=True)
class LoreEntry:
    keys: Tuple[str, ...] = ()
    content: str = ''
    secondary_keys: Tuple[str, ...] = ()
    insertion_order: int = 100
    enabled: bool = True
    constant: bool = False
    selective: bool = False
    selective_logic: str = SelectiveLogic.AND_ANY
    use_regex: bool = False
    case_sensitive: bool = False
    match_whole_words: bool = True
    sticky: int = 0
    cooldown: int = 0
    delay: int = 0
    position: str = LorePosition.AFTER_CHAR
    prevent_recursion: bool = False
    exclude_recursion: bool = False
    id: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        # tuples keep the entry hashable and immutable
        object.__setattr__(self, 'keys', tuple(self.keys))
        object.__setattr__(self, 'secondary_keys', tuple(self.secondary_keys))

        label = self.name or self.id or (self.keys[0] if self.keys else '<unnamed>')
        for attribute in ('sticky', 'cooldown', 'delay'):
            value = getattr(self, attribute)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(
                    f"Lore entry '{label}': {attribute} must be a non-negative integer, got {value!r}"
                )
        if self.selective_logic not in SelectiveLogic.ALL:
            raise ConfigurationError(f"Lore entry '{label}': unknown selective logic '{self.selective_logic}'")
        if self.position not in (LorePosition.BEFORE_CHAR, LorePosition.AFTER_CHAR):
            raise ConfigurationError(f"Lore entry '{label}': unknown position '{self.position}'")


@dataclass(frozen=True)
class LoreBook:
    entries: Tuple[LoreEntry, ...] = field(default_factory=tuple)
    name: Optional[str] = None
    scan_depth: int = DEFAULT_SCAN_DEPTH
    token_budget: Optional[int] = None
    recursive_scanning: bool = False
    max_recursion_steps: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'entries', tuple(self.entries))
        if self.scan_depth < 0:
            raise ConfigurationError(f"Lorebook '{self.name}': scan_depth must be non-negative")
        if not 0 <= self.max_recursion_steps <= MAX_RECURSION_STEPS:
            raise ConfigurationError(
                f"Lorebook '{self.name}': max_recursion_steps must be between 0 and {MAX_RECURSION_STEPS}"
            )

    def __len__(self) -> int:
        return len(self.entries)
