import pytest

from promptsmith.constants import MAX_RECURSION_STEPS, BudgetGroup, MessageRole, Slot
from promptsmith.errors import ConfigurationError
from promptsmith.lore import LoreEngine, scan
from promptsmith.macros import MacroEnvironment
from promptsmith.models import LoreBook, LoreEntry


def test_key_match_produces_lore_block(make_book, make_entry):
    book = make_book(make_entry('dragon', ['dragon'], 'Dragons breathe fire.'))

    result = scan(["I saw a dragon"], [book])

    assert result.activated_ids == ['world.dragon']
    assert result.matched_ids == ['world.dragon']
    block = result.blocks[0]
    assert block.id == 'lore:world.dragon'
    assert block.role == MessageRole.SYSTEM
    assert block.slot == Slot.LOREBOOK
    assert block.budget_group == BudgetGroup.LOREBOOK
    assert block.content == 'Dragons breathe fire.'


def test_scan_depth_limits_the_window(make_book, make_entry):
    book = make_book(make_entry('dragon', ['dragon'], 'Dragons.'), scan_depth=1)

    assert scan(["a dragon", "nothing"], [book]).activated_ids == []
    assert scan(["nothing", "a dragon"], [book]).activated_ids == ['world.dragon']


def test_transcript_accepts_message_dicts(make_book, make_entry):
    book = make_book(make_entry('dragon', ['dragon'], 'Dragons.'))

    result = scan([{'role': 'user', 'content': 'a dragon'}], [book])

    assert result.activated_ids == ['world.dragon']


def test_constant_and_disabled_entries(make_book, make_entry):
    book = make_book(
        make_entry('always', content='Always here.', constant=True),
        make_entry('off', ['dragon'], 'Disabled.', enabled=False),
    )

    result = scan(["a dragon"], [book])

    assert result.activated_ids == ['world.always']
    assert result.matched_ids == []


def test_selective_entry_requires_secondary_key(make_book, make_entry):
    book = make_book(make_entry('lair', ['dragon'], 'The lair.', selective=True, secondary_keys=('cave',)))

    assert scan(["a dragon"], [book]).activated_ids == []
    assert scan(["a dragon in a cave"], [book]).activated_ids == ['world.lair']


def test_selective_without_secondary_keys_acts_as_plain_entry(make_book, make_entry):
    book = make_book(make_entry('lair', ['dragon'], 'The lair.', selective=True))

    assert scan(["a dragon"], [book]).activated_ids == ['world.lair']


def test_delay_gates_activation(make_book, make_entry):
    book = make_book(make_entry('late', ['dragon'], 'Late lore.', delay=3))

    assert scan(["a dragon"], [book], turn_count=2).activated_ids == []
    assert scan(["a dragon"], [book], turn_count=3).activated_ids == ['world.late']


def test_cooldown_suppresses_constant_entries(make_book, make_entry):
    book = make_book(make_entry('always', content='Always here.', constant=True, cooldown=4))
    state = {'world.always': {'cooldown': {'start_turn': 1, 'end_turn': 5, 'protected': True}}}

    assert scan(["anything"], [book], turn_count=3, timed_state=state).activated_ids == []
    assert scan(["anything"], [book], turn_count=5, timed_state=state).activated_ids == ['world.always']


def test_sticky_entry_stays_without_a_fresh_match(make_book, make_entry):
    book = make_book(make_entry('dragon', ['dragon'], 'Dragons.', sticky=2))
    state = {}

    scan(["a dragon"], [book], turn_count=10, timed_state=state)
    result = scan(["the weather"], [book], turn_count=11, timed_state=state)

    assert result.activated_ids == ['world.dragon']
    assert result.sticky_ids == ['world.dragon']
    assert result.matched_ids == []
    assert result.blocks[0].metadata['sticky'] is True

    assert scan(["the weather"], [book], turn_count=12, timed_state=state).activated_ids == []


def test_expired_sticky_starts_a_cooldown_that_blocks_key_matches(make_book, make_entry):
    book = make_book(make_entry('dragon', ['dragon'], 'Dragons.', sticky=2, cooldown=2))
    state = {}

    assert scan(["a dragon"], [book], turn_count=10, timed_state=state).activated_ids == ['world.dragon']
    assert scan(["the weather"], [book], turn_count=11, timed_state=state).sticky_ids == ['world.dragon']

    result = scan(["a dragon"], [book], turn_count=12, timed_state=state)
    assert result.activated_ids == []
    assert result.matched_ids == []
    assert state['world.dragon'] == {'cooldown': {'start_turn': 12, 'end_turn': 14, 'protected': True}}

    assert scan(["a dragon"], [book], turn_count=13, timed_state=state).activated_ids == []
    assert scan(["a dragon"], [book], turn_count=14, timed_state=state).activated_ids == ['world.dragon']
    assert state['world.dragon'] == {'sticky': {'start_turn': 14, 'end_turn': 16, 'protected': False}}


def test_recursive_scanning_follows_activated_content(make_book, make_entry):
    entries = (
        make_entry('dragon', ['dragon'], 'The dragon guards the castle.'),
        make_entry('castle', ['castle'], 'The castle is old.'),
    )

    flat = scan(["a dragon"], [make_book(*entries)])
    assert flat.activated_ids == ['world.dragon']

    recursive = scan(["a dragon"], [make_book(*entries, recursive_scanning=True)])
    assert recursive.activated_ids == ['world.dragon', 'world.castle']
    assert recursive.passes == 2


def test_recursion_terminates_on_cycles(make_book, make_entry):
    book = make_book(
        make_entry('alpha', ['alpha'], 'mentions beta'),
        make_entry('beta', ['beta'], 'mentions alpha'),
        recursive_scanning=True,
    )

    result = scan(["alpha"], [book])

    assert result.activated_ids == ['world.alpha', 'world.beta']
    assert result.passes <= 2


def test_prevent_recursion_keeps_content_out_of_the_buffer(make_book, make_entry):
    book = make_book(
        make_entry('dragon', ['dragon'], 'The dragon guards the castle.', prevent_recursion=True),
        make_entry('castle', ['castle'], 'The castle is old.'),
        recursive_scanning=True,
    )

    result = scan(["a dragon"], [book])

    assert result.activated_ids == ['world.dragon']


def test_exclude_recursion_matches_only_the_transcript(make_book, make_entry):
    entries = (
        make_entry('dragon', ['dragon'], 'The dragon guards the castle.'),
        make_entry('castle', ['castle'], 'The castle is old.', exclude_recursion=True),
    )
    book = make_book(*entries, recursive_scanning=True)

    assert scan(["a dragon"], [book]).activated_ids == ['world.dragon']
    assert scan(["a dragon at the castle"], [book]).activated_ids == ['world.dragon', 'world.castle']


def test_max_recursion_steps_caps_the_passes(make_book, make_entry):
    entries = (
        make_entry('dragon', ['dragon'], 'The dragon guards the castle.'),
        make_entry('castle', ['castle'], 'The castle hides a sword.'),
        make_entry('sword', ['sword'], 'The sword is cursed.'),
    )

    unlimited = scan(["a dragon"], [make_book(*entries, recursive_scanning=True)])
    assert unlimited.activated_ids == ['world.dragon', 'world.castle', 'world.sword']
    assert unlimited.passes == 3

    capped = scan(["a dragon"], [make_book(*entries, recursive_scanning=True, max_recursion_steps=2)])
    assert capped.activated_ids == ['world.dragon', 'world.castle']
    assert capped.passes == 2

    single = scan(["a dragon"], [make_book(*entries, recursive_scanning=True, max_recursion_steps=1)])
    assert single.activated_ids == ['world.dragon']


def test_max_recursion_steps_is_bounded():
    with pytest.raises(ConfigurationError):
        LoreBook(max_recursion_steps=MAX_RECURSION_STEPS + 1)
    with pytest.raises(ConfigurationError):
        LoreBook(max_recursion_steps=-1)


def test_budget_selection_stops_at_first_overflow(make_book, make_entry):
    book = make_book(
        make_entry('first', content='a' * 40, constant=True, insertion_order=1),
        make_entry('second', content='b' * 40, constant=True, insertion_order=2),
        make_entry('third', content='c' * 4, constant=True, insertion_order=3),
    )

    result = scan(["x"], [book], budget_tokens=15)

    assert result.activated_ids == ['world.first']
    assert result.dropped_ids == ['world.second', 'world.third']
    assert result.total_tokens == 10
    assert result.budget_overflowed


def test_output_ordered_by_insertion_order_with_stable_ties(make_book, make_entry):
    book = make_book(
        make_entry('a', content='A', constant=True, insertion_order=5),
        make_entry('b', content='B', constant=True, insertion_order=1),
        make_entry('c', content='C', constant=True, insertion_order=5),
    )

    result = scan(["x"], [book])

    assert result.activated_ids == ['world.b', 'world.a', 'world.c']
    assert [block.priority_order for block in result.blocks] == [1, 5, 5]


def test_smallest_book_budget_applies_when_none_given(make_entry):
    books = [
        LoreBook(entries=(make_entry('a', content='a' * 40, constant=True, insertion_order=1),), name='one',
                 token_budget=30),
        LoreBook(entries=(make_entry('b', content='b' * 40, constant=True, insertion_order=2),), name='two',
                 token_budget=15),
    ]

    result = scan(["x"], books)

    assert result.budget_tokens == 15
    assert result.activated_ids == ['one.a']
    assert scan(["x"], books, budget_tokens=100).activated_ids == ['one.a', 'two.b']


def test_dropped_matches_are_still_recorded(make_book, make_entry):
    book = make_book(
        make_entry('first', content='a' * 40, constant=True, insertion_order=1),
        make_entry('dragon', ['dragon'], 'b' * 40, sticky=2, insertion_order=2),
    )
    state = {}

    result = scan(["a dragon"], [book], budget_tokens=10, turn_count=1, timed_state=state)

    assert result.dropped_ids == ['world.dragon']
    assert 'world.dragon' in state


def test_entry_ids_are_namespaced():
    book = LoreBook(entries=(LoreEntry(content='Nameless.', constant=True),))

    result = scan(["x"], [book])

    assert result.activated_ids == ['book0.0']


def test_content_is_macro_expanded(make_book, make_entry):
    book = make_book(make_entry('greeting', content='{{user}} is known here.', constant=True))

    result = LoreEngine().scan(["x"], [book], environment=MacroEnvironment(user='Sam'))

    assert result.blocks[0].content == 'Sam is known here.'


def test_scan_is_deterministic(make_book, make_entry):
    book = make_book(
        make_entry('dragon', ['dragon'], 'The dragon guards the castle.', insertion_order=3),
        make_entry('castle', ['castle'], 'The castle is old.', insertion_order=1),
        make_entry('always', content='Always.', constant=True, insertion_order=3),
        recursive_scanning=True,
    )

    first = scan(["a dragon"], [book], budget_tokens=50)
    second = scan(["a dragon"], [book], budget_tokens=50)

    assert first.blocks == second.blocks
    assert first.activated_ids == second.activated_ids
