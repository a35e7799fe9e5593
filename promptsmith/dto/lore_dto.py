from typing import Any, List, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator

from promptsmith.constants import DEFAULT_SCAN_DEPTH, MAX_RECURSION_STEPS, LorePosition, SelectiveLogic
from promptsmith.models import LoreBook, LoreEntry


def _as_key_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(key) for key in value if key is not None]


class LoreEntryDTO(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices('name', 'comment'))
    keys: List[str] = Field(default_factory=list, validation_alias=AliasChoices('keys', 'key'))
    secondary_keys: List[str] = Field(default_factory=list,
                                      validation_alias=AliasChoices('secondary_keys', 'keysecondary'))
    content: str = ''
    insertion_order: int = Field(default=100, validation_alias=AliasChoices('insertion_order', 'order'))
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
    prevent_recursion: bool = Field(default=False,
                                    validation_alias=AliasChoices('prevent_recursion', 'preventRecursion'))
    exclude_recursion: bool = Field(default=False,
                                    validation_alias=AliasChoices('exclude_recursion', 'excludeRecursion'))

    model_config = {"from_attributes": True, "populate_by_name": True}

    @field_validator('id', mode='before')
    @classmethod
    def stringify_id(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator('keys', 'secondary_keys', mode='before')
    @classmethod
    def ensure_key_list(cls, v: Any) -> List[str]:
        return _as_key_list(v)

    @field_validator('sticky', 'cooldown', 'delay', mode='before')
    @classmethod
    def ensure_turn_count(cls, v: Any) -> int:
        if v is None:
            return 0
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError(f"expected a non-negative integer number of turns, got {v!r}")
        if v < 0:
            raise ValueError(f"expected a non-negative integer number of turns, got {v}")
        return v

    @field_validator('selective_logic')
    @classmethod
    def check_selective_logic(cls, v: str) -> str:
        if v not in SelectiveLogic.ALL:
            raise ValueError(f"Unknown selective logic '{v}', expected one of {', '.join(SelectiveLogic.ALL)}")
        return v

    @field_validator('position')
    @classmethod
    def check_position(cls, v: str) -> str:
        if v not in (LorePosition.BEFORE_CHAR, LorePosition.AFTER_CHAR):
            raise ValueError(f"Unknown lore position '{v}'")
        return v

    def to_model(self) -> LoreEntry:
        return LoreEntry(
            keys=tuple(self.keys),
            content=self.content,
            secondary_keys=tuple(self.secondary_keys),
            insertion_order=self.insertion_order,
            enabled=self.enabled,
            constant=self.constant,
            selective=self.selective,
            selective_logic=self.selective_logic,
            use_regex=self.use_regex,
            case_sensitive=self.case_sensitive,
            match_whole_words=self.match_whole_words,
            sticky=self.sticky,
            cooldown=self.cooldown,
            delay=self.delay,
            position=self.position,
            prevent_recursion=self.prevent_recursion,
            exclude_recursion=self.exclude_recursion,
            id=self.id,
            name=self.name,
        )


class LoreBookDTO(BaseModel):
    name: Optional[str] = None
    entries: List[LoreEntryDTO] = Field(default_factory=list)
    scan_depth: int = Field(default=DEFAULT_SCAN_DEPTH, ge=0)
    token_budget: Optional[int] = Field(default=None, ge=0)
    recursive_scanning: bool = False
    max_recursion_steps: int = Field(default=0, ge=0, le=MAX_RECURSION_STEPS)

    model_config = {"from_attributes": True}

    def to_model(self) -> LoreBook:
        return LoreBook(
            entries=tuple(entry.to_model() for entry in self.entries),
            name=self.name,
            scan_depth=self.scan_depth,
            token_budget=self.token_budget,
            recursive_scanning=self.recursive_scanning,
            max_recursion_steps=self.max_recursion_steps,
        )
