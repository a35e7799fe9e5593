from typing import List, Optional
from pydantic import BaseModel, Field

from .character_dto import CharacterDTO, MessageDTO, UserDTO
from .lore_dto import LoreBookDTO
from .preset_dto import PresetDTO


class BuildRequestDTO(BaseModel):
    character: Optional[CharacterDTO] = None
    user: Optional[UserDTO] = None
    history: List[MessageDTO] = Field(default_factory=list)
    user_message: Optional[str] = None
    preset: PresetDTO = Field(default_factory=PresetDTO)
    lore_books: List[LoreBookDTO] = Field(default_factory=list)
    turn_count: Optional[int] = Field(default=None, ge=0)
    dialect: Optional[str] = None
    conversation_id: Optional[str] = None

    model_config = {"from_attributes": True}
