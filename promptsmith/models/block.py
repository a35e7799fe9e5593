from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from promptsmith.constants import BudgetGroup, MessageRole


@dataclass(frozen=True)
class Block:
    """
    One unit of prompt content. Stages create blocks; the trimmer disables
    them by producing copies with `enabled=False`.
    """
    role: str
    content: str
    slot: str
    budget_group: str = BudgetGroup.HISTORY
    removable: bool = True
    priority_order: int = 0
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        if self.role not in MessageRole.ALL:
            raise ValueError(f"Wrong role '{self.role}' in block '{self.slot}'")
        if not isinstance(self.content, str):
            raise TypeError(f"Block content must be a string, got {type(self.content).__name__}")

    def disable(self) -> 'Block':
        return replace(self, enabled=False, metadata=dict(self.metadata))

    def with_id(self, block_id: str) -> 'Block':
        return replace(self, id=block_id, metadata=dict(self.metadata))
