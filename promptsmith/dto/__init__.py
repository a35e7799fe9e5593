# This file marks the dto directory as a Python package.

from .lore_dto import LoreEntryDTO, LoreBookDTO

from .character_dto import CharacterDTO, UserDTO, MessageDTO

from .preset_dto import PresetDTO

from .request_dto import BuildRequestDTO

__all__ = [
    # Lore DTOs
    'LoreEntryDTO', 'LoreBookDTO',
    # Build input DTOs
    'CharacterDTO', 'UserDTO', 'MessageDTO', 'PresetDTO', 'BuildRequestDTO'
]
