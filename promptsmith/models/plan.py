from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .block import Block


@dataclass(frozen=True)
class EvictionRecord:
    block_id: Optional[str]
    slot: str
    budget_group: str
    token_count: int
    reason: str
    index: int


@dataclass(frozen=True)
class TrimReport:
    budget_tokens: int
    initial_tokens: int
    final_tokens: int
    eviction_count: int
    evictions: Tuple[EvictionRecord, ...] = ()

    @property
    def over_budget(self) -> bool:
        return self.final_tokens > self.budget_tokens

    @property
    def shortfall(self) -> int:
        return max(self.final_tokens - self.budget_tokens, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'budget_tokens': self.budget_tokens,
            'initial_tokens': self.initial_tokens,
            'final_tokens': self.final_tokens,
            'eviction_count': self.eviction_count,
            'over_budget': self.over_budget,
            'evictions': [
                {
                    'block_id': record.block_id,
                    'slot': record.slot,
                    'budget_group': record.budget_group,
                    'token_count': record.token_count,
                    'reason': record.reason,
                }
                for record in self.evictions
            ]
        }


@dataclass(frozen=True)
class Plan:
    """
    Finalized, provider-agnostic prompt. Only enabled blocks, in pipeline order.
    """
    blocks: Tuple[Block, ...]
    trim_report: Optional[TrimReport] = None
    warnings: Tuple[str, ...] = ()
    lore_result: Optional[Any] = None
    trace: Optional[Any] = None

    def __post_init__(self):
        object.__setattr__(self, 'blocks', tuple(block for block in self.blocks if block.enabled))
        object.__setattr__(self, 'warnings', tuple(self.warnings))

    def blocks_in_slot(self, slot: str) -> List[Block]:
        return [block for block in self.blocks if block.slot == slot]

    def __len__(self) -> int:
        return len(self.blocks)
