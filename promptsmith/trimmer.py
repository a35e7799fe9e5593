from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from promptsmith.config import BuilderConfig
from promptsmith.constants import DEFAULT_EVICTION_ORDER, BudgetGroup, MessageRole
from promptsmith.errors import ConfigurationError
from promptsmith.models import Block, EvictionRecord, TrimReport
from promptsmith.utils.tokenizers import HeuristicEstimator, TokenEstimator
from promptsmith.utils.utils import create_logger, resolve_log_level

trim_log = create_logger(__name__, entity_name='TRIMMER', level=resolve_log_level(BuilderConfig.LOG_LEVEL))

BUNDLE_KEY = 'eviction_bundle'


@dataclass
class EvictionUnit:
    indices: List[int] = field(default_factory=list)
    protected: bool = False
    bundled: bool = False
    slot_rank: int = 0
    priority_order: int = 0

    @property
    def first_index(self) -> int:
        return self.indices[0]


def block_cost(block: Block, estimator: TokenEstimator, per_message_overhead: int = 0) -> int:
    return estimator.estimate(block.content) + per_message_overhead


def estimate_blocks(blocks: Sequence[Block], estimator: TokenEstimator, per_message_overhead: int = 0) -> int:
    return sum(block_cost(block, estimator, per_message_overhead) for block in blocks if block.enabled)


def _eviction_ranking(blocks: Sequence[Block], eviction_order: Sequence[str]) -> List[str]:
    # groups missing from the ranking are evicted last, system after all others
    ranking = list(dict.fromkeys(eviction_order))
    for block in blocks:
        group = block.budget_group
        if group != BudgetGroup.SYSTEM and group not in ranking:
            ranking.append(group)
    if BudgetGroup.SYSTEM not in ranking:
        ranking.append(BudgetGroup.SYSTEM)
    return ranking


def _protected_indices(blocks: Sequence[Block], preserve_latest_user: bool) -> Set[int]:
    protected = {index for index, block in enumerate(blocks) if not block.removable}
    if preserve_latest_user:
        for index in range(len(blocks) - 1, -1, -1):
            block = blocks[index]
            if block.enabled and block.budget_group == BudgetGroup.HISTORY and block.role == MessageRole.USER:
                protected.add(index)
                break
    return protected


def _build_units(blocks: Sequence[Block], group: str, protected: Set[int],
                 slot_ranks: Dict[str, int], default_rank: int) -> List[EvictionUnit]:
    units: Dict[str, EvictionUnit] = {}
    for index, block in enumerate(blocks):
        if not block.enabled or block.budget_group != group:
            continue
        bundle = block.metadata.get(BUNDLE_KEY)
        key = f'bundle:{bundle}' if bundle is not None else f'block:{index}'
        unit = units.get(key)
        if unit is None:
            unit = EvictionUnit(
                bundled=bundle is not None,
                slot_rank=slot_ranks.get(block.slot, default_rank),
                priority_order=block.priority_order,
            )
            units[key] = unit
        unit.indices.append(index)
        unit.priority_order = max(unit.priority_order, block.priority_order)
        unit.protected = unit.protected or index in protected

    return sorted(units.values(), key=lambda u: (u.slot_rank, -u.priority_order, u.first_index))


def trim(blocks: Sequence[Block], max_tokens: int, reserve_tokens: int = 0, per_message_overhead: int = 0,
         estimator: Optional[TokenEstimator] = None, eviction_order: Sequence[str] = DEFAULT_EVICTION_ORDER,
         slot_order: Optional[Sequence[str]] = None,
         preserve_latest_user: bool = False) -> Tuple[List[Block], TrimReport]:
    """
    Disables removable blocks until the enabled blocks fit the budget.

    The budget is `max_tokens - reserve_tokens` (never below zero) and a block
    costs its estimated content tokens plus `per_message_overhead`. Groups are
    evicted in `eviction_order`; inside a group, blocks go by `slot_order`
    rank, then highest `priority_order` first, then position. Blocks sharing
    `metadata['eviction_bundle']` are evicted together.

    Only non-removable blocks are never evicted. Groups missing from
    `eviction_order` go last, the `system` group after every other one.
    When the non-removable blocks alone exceed the budget the report shows
    `final_tokens > budget_tokens`; nothing is raised.

    The input is left untouched: the returned list holds the same blocks in
    the same order, with evicted ones replaced by disabled copies.
    """
    for label, value in (('max_tokens', max_tokens), ('reserve_tokens', reserve_tokens),
                         ('per_message_overhead', per_message_overhead)):
        if value is None or int(value) < 0:
            raise ConfigurationError(f"{label} must be a non-negative integer, got {value!r}")

    estimator = estimator or HeuristicEstimator()
    budget = max(int(max_tokens) - int(reserve_tokens), 0)
    result = list(blocks)

    costs = [block_cost(block, estimator, per_message_overhead) if block.enabled else 0 for block in result]
    initial_tokens = sum(costs)
    current = initial_tokens

    if initial_tokens <= budget:
        return result, TrimReport(budget_tokens=budget, initial_tokens=initial_tokens,
                                  final_tokens=initial_tokens, eviction_count=0)

    protected = _protected_indices(result, preserve_latest_user)
    slot_ranks = {slot: rank for rank, slot in enumerate(slot_order or [])}
    default_rank = len(slot_ranks)
    evictions: List[EvictionRecord] = []

    for group in _eviction_ranking(result, eviction_order):
        if current <= budget:
            break
        for unit in _build_units(result, group, protected, slot_ranks, default_rank):
            if current <= budget:
                break
            if unit.protected:
                continue
            reason = 'bundle_evicted' if unit.bundled else 'budget_exceeded'
            for index in unit.indices:
                block = result[index]
                result[index] = block.disable()
                current -= costs[index]
                evictions.append(EvictionRecord(
                    block_id=block.id,
                    slot=block.slot,
                    budget_group=block.budget_group,
                    token_count=costs[index],
                    reason=reason,
                    index=index,
                ))

    report = TrimReport(
        budget_tokens=budget,
        initial_tokens=initial_tokens,
        final_tokens=current,
        eviction_count=len(evictions),
        evictions=tuple(evictions),
    )
    if report.over_budget:
        trim_log.warning(f"Prompt still exceeds budget after trimming: {current} > {budget} tokens")
    else:
        trim_log.debug(f"Trimmed {len(evictions)} blocks: {initial_tokens} -> {current} tokens (budget {budget})")
    return result, report
