from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator

from promptsmith.constants import MessageRole
from .lore_dto import LoreBookDTO


class CharacterDTO(BaseModel):
    name: str = Field(default='', max_length=100)
    description: str = ''
    personality: str = ''
    scenario: str = ''
    system_prompt: str = ''
    post_history_instructions: str = ''
    mes_example: str = ''
    character_book: Optional[LoreBookDTO] = None

    model_config = {"from_attributes": True}

    @field_validator('description', 'personality', 'scenario', 'system_prompt',
                     'post_history_instructions', 'mes_example', mode='before')
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return '' if v is None else v


class UserDTO(BaseModel):
    name: str = Field(default='', max_length=100)
    persona: str = ''

    model_config = {"from_attributes": True}

    @field_validator('persona', mode='before')
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return '' if v is None else v


class MessageDTO(BaseModel):
    role: str
    content: str = ''
    name: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator('role')
    @classmethod
    def check_role(cls, v: str) -> str:
        if v not in MessageRole.ALL:
            raise ValueError(f"Unknown message role '{v}'")
        return v
