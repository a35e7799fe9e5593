import pytest

from promptsmith.constants import BudgetGroup, MessageRole, Slot
from promptsmith.errors import ConfigurationError
from promptsmith.trimmer import trim


def enabled_ids(blocks):
    return [block.id for block in blocks if block.enabled]


def test_fitting_blocks_are_returned_unchanged(make_block, estimator):
    blocks = [make_block(5, id='a'), make_block(5, id='b')]

    result, report = trim(blocks, max_tokens=10, estimator=estimator)

    assert result == blocks
    assert report.eviction_count == 0
    assert report.initial_tokens == report.final_tokens == 10
    assert not report.over_budget


def test_groups_are_evicted_in_order(make_block, estimator):
    blocks = [
        make_block(10, budget_group=BudgetGroup.SYSTEM, role=MessageRole.SYSTEM, removable=False, id='system'),
        make_block(10, budget_group=BudgetGroup.EXAMPLES, id='example'),
        make_block(10, budget_group=BudgetGroup.HISTORY, id='history'),
        make_block(10, budget_group=BudgetGroup.INJECTIONS, id='note'),
    ]

    result, report = trim(blocks, max_tokens=25, estimator=estimator)

    assert enabled_ids(result) == ['system', 'history']
    assert [record.block_id for record in report.evictions] == ['note', 'example']
    assert report.final_tokens == 20
    assert report.budget_tokens == 25


def test_protected_blocks_survive_and_overflow_is_reported(make_block, estimator):
    blocks = [
        make_block(10, budget_group=BudgetGroup.SYSTEM, role=MessageRole.SYSTEM, removable=False, id='system'),
        make_block(10, budget_group=BudgetGroup.HISTORY, removable=False, id='pinned'),
        make_block(10, budget_group=BudgetGroup.HISTORY, id='old'),
    ]

    result, report = trim(blocks, max_tokens=5, estimator=estimator)

    assert enabled_ids(result) == ['system', 'pinned']
    assert report.over_budget
    assert report.shortfall == 15


def test_budget_is_respected_when_protected_cost_fits(make_block, estimator):
    blocks = [make_block(3, removable=False, id='keep')] + [make_block(4, id=f'h{i}') for i in range(6)]

    result, report = trim(blocks, max_tokens=12, estimator=estimator)

    assert report.final_tokens <= 12
    assert 'keep' in enabled_ids(result)


def test_reserve_and_overhead_shrink_the_budget(make_block, estimator):
    blocks = [make_block(10, id='a'), make_block(10, id='b')]

    _, report = trim(blocks, max_tokens=30, reserve_tokens=10, estimator=estimator)
    assert report.budget_tokens == 20
    assert report.eviction_count == 0

    _, report = trim(blocks, max_tokens=30, reserve_tokens=10, per_message_overhead=2, estimator=estimator)
    assert report.initial_tokens == 24
    assert report.eviction_count == 1


def test_reserve_larger_than_max_yields_zero_budget(make_block, estimator):
    _, report = trim([make_block(1, id='a')], max_tokens=5, reserve_tokens=10, estimator=estimator)

    assert report.budget_tokens == 0
    assert report.final_tokens == 0


def test_highest_priority_order_goes_first(make_block, estimator):
    blocks = [
        make_block(10, priority_order=3, id='oldest'),
        make_block(10, priority_order=2, id='older'),
        make_block(10, priority_order=1, id='newest'),
    ]

    result, _ = trim(blocks, max_tokens=20, estimator=estimator)

    assert enabled_ids(result) == ['older', 'newest']


def test_slot_order_ranks_within_a_group(make_block, estimator):
    blocks = [
        make_block(10, budget_group=BudgetGroup.INJECTIONS, slot=Slot.AUTHORS_NOTE, priority_order=5, id='note'),
        make_block(10, budget_group=BudgetGroup.INJECTIONS, slot='summary', id='summary'),
    ]

    result, _ = trim(blocks, max_tokens=10, estimator=estimator, slot_order=['summary'])

    assert enabled_ids(result) == ['note']


def test_bundles_are_evicted_together(make_block, estimator):
    blocks = [
        make_block(5, budget_group=BudgetGroup.EXAMPLES, metadata={'eviction_bundle': 'ex1'}, priority_order=1,
                   id='ex1-user'),
        make_block(5, budget_group=BudgetGroup.EXAMPLES, metadata={'eviction_bundle': 'ex1'}, priority_order=1,
                   id='ex1-char'),
        make_block(5, budget_group=BudgetGroup.EXAMPLES, metadata={'eviction_bundle': 'ex0'}, id='ex0-user'),
    ]

    result, report = trim(blocks, max_tokens=12, estimator=estimator)

    assert enabled_ids(result) == ['ex0-user']
    assert [record.reason for record in report.evictions] == ['bundle_evicted', 'bundle_evicted']


def test_latest_user_message_can_be_preserved(make_block, estimator):
    blocks = [
        make_block(10, role=MessageRole.ASSISTANT, priority_order=2, id='reply'),
        make_block(10, role=MessageRole.USER, priority_order=1, id='question'),
    ]

    result, _ = trim(blocks, max_tokens=5, estimator=estimator)
    assert enabled_ids(result) == []

    result, report = trim(blocks, max_tokens=5, estimator=estimator, preserve_latest_user=True)
    assert enabled_ids(result) == ['question']
    assert report.over_budget


def test_unranked_groups_are_evicted_last(make_block, estimator):
    blocks = [
        make_block(10, budget_group='scratchpad', id='custom'),
        make_block(10, budget_group=BudgetGroup.HISTORY, id='history'),
    ]

    result, _ = trim(blocks, max_tokens=10, estimator=estimator)

    assert enabled_ids(result) == ['custom']


def test_input_blocks_are_not_mutated(make_block, estimator):
    blocks = [make_block(10, id='a'), make_block(10, id='b')]

    result, _ = trim(blocks, max_tokens=10, estimator=estimator)

    assert all(block.enabled for block in blocks)
    assert not result[0].enabled
    assert result[0].id == 'a'


def test_disabled_copies_do_not_share_metadata(make_block, estimator):
    blocks = [make_block(10, metadata={'tag': 'old'}, id='a'), make_block(10, id='b')]

    result, _ = trim(blocks, max_tokens=10, estimator=estimator)
    result[0].metadata['tag'] = 'changed'

    assert not result[0].enabled
    assert blocks[0].metadata == {'tag': 'old'}


def test_disabled_input_blocks_cost_nothing(make_block, estimator):
    blocks = [make_block(10, id='a').disable(), make_block(10, id='b')]

    _, report = trim(blocks, max_tokens=10, estimator=estimator)

    assert report.initial_tokens == 10
    assert report.eviction_count == 0


def test_trim_is_deterministic(make_block, estimator):
    blocks = [make_block(4, priority_order=i % 3, budget_group=group, id=f'{group}{i}')
              for i, group in enumerate(['history', 'lorebook', 'examples'] * 4)]

    first = trim(blocks, max_tokens=20, estimator=estimator)
    second = trim(blocks, max_tokens=20, estimator=estimator)

    assert first == second


def test_negative_budget_values_are_rejected(make_block, estimator):
    with pytest.raises(ConfigurationError):
        trim([make_block(1)], max_tokens=-1, estimator=estimator)
    with pytest.raises(ConfigurationError):
        trim([make_block(1)], max_tokens=10, reserve_tokens=-5, estimator=estimator)


def test_removable_system_block_can_be_evicted(make_block, estimator):
    blocks = [
        make_block(10, budget_group=BudgetGroup.SYSTEM, role=MessageRole.SYSTEM, id='summary'),
        make_block(1, removable=False, id='pinned'),
    ]

    result, report = trim(blocks, max_tokens=5, estimator=estimator,
                          eviction_order=(BudgetGroup.SYSTEM, BudgetGroup.HISTORY))

    assert enabled_ids(result) == ['pinned']
    assert report.final_tokens == 1
    assert not report.over_budget


def test_unranked_system_group_goes_after_other_groups(make_block, estimator):
    blocks = [
        make_block(10, budget_group=BudgetGroup.SYSTEM, role=MessageRole.SYSTEM, id='summary'),
        make_block(10, budget_group='scratchpad', id='custom'),
        make_block(10, budget_group=BudgetGroup.HISTORY, id='history'),
    ]

    _, report = trim(blocks, max_tokens=5, estimator=estimator, eviction_order=(BudgetGroup.HISTORY,))

    assert [record.block_id for record in report.evictions] == ['history', 'custom', 'summary']


def test_report_serializes_evictions(make_block, estimator):
    blocks = [make_block(10, budget_group=BudgetGroup.INJECTIONS, slot=Slot.AUTHORS_NOTE, id='note'),
              make_block(10, id='history')]

    _, report = trim(blocks, max_tokens=10, estimator=estimator)

    assert report.to_dict() == {
        'budget_tokens': 10,
        'initial_tokens': 20,
        'final_tokens': 10,
        'eviction_count': 1,
        'over_budget': False,
        'evictions': [{
            'block_id': 'note',
            'slot': Slot.AUTHORS_NOTE,
            'budget_group': BudgetGroup.INJECTIONS,
            'token_count': 10,
            'reason': 'budget_exceeded',
        }],
    }
