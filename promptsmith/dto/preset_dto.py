from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from promptsmith.constants import DEFAULT_AUTHORS_NOTE_DEPTH, Slot

FORMAT_PLACEHOLDER = '{{content}}'

FORMATTABLE_SLOTS = (
    Slot.MAIN_PROMPT,
    Slot.CHARACTER_DESCRIPTION,
    Slot.CHARACTER_PERSONALITY,
    Slot.SCENARIO,
    Slot.PERSONA_DESCRIPTION,
    Slot.AUTHORS_NOTE,
    Slot.POST_HISTORY_INSTRUCTIONS,
)


class PresetDTO(BaseModel):
    """
    Prompt layout and budget settings. Fields left as None fall back to the
    builder configuration.
    """
    main_prompt: str = ''
    formats: Dict[str, str] = Field(default_factory=dict)
    authors_note: str = ''
    authors_note_depth: int = Field(default=DEFAULT_AUTHORS_NOTE_DEPTH, ge=0)
    post_history_instructions: str = ''
    max_context_tokens: Optional[int] = Field(default=None, ge=1)
    max_response_tokens: int = Field(default=0, ge=0)
    message_overhead_tokens: Optional[int] = Field(default=None, ge=0)
    eviction_order: Optional[List[str]] = None
    lore_token_budget: Optional[int] = Field(default=None, ge=0)
    preserve_latest_user_message: Optional[bool] = None
    strict: Optional[bool] = None

    model_config = {"from_attributes": True}

    @field_validator('formats')
    @classmethod
    def check_formats(cls, v: Dict[str, str]) -> Dict[str, str]:
        for slot, template in v.items():
            if slot not in FORMATTABLE_SLOTS:
                raise ValueError(f"Slot '{slot}' cannot be formatted")
            if FORMAT_PLACEHOLDER not in template:
                raise ValueError(f"Format for '{slot}' must contain {FORMAT_PLACEHOLDER}")
        return v

    @model_validator(mode='after')
    def check_response_fits(self) -> 'PresetDTO':
        if self.max_context_tokens is not None and self.max_response_tokens > self.max_context_tokens:
            raise ValueError("max_response_tokens cannot exceed max_context_tokens")
        return self

    def format(self, slot: str, text: str) -> str:
        template = self.formats.get(slot)
        if not template or not text:
            return text
        return template.replace(FORMAT_PLACEHOLDER, text)
