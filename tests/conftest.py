import pytest
from promptsmith.config import TestingConfig
from promptsmith.macros import create_macro_processor
from promptsmith.models import Block, LoreBook, LoreEntry
from promptsmith.services import PromptBuilder
from promptsmith.utils.tokenizers import HeuristicEstimator


@pytest.fixture(scope='module')
def estimator():
    return HeuristicEstimator()


@pytest.fixture
def builder(estimator):
    return PromptBuilder(config=TestingConfig, token_estimator=estimator,
                         macro_processor=create_macro_processor(seed=7))


@pytest.fixture
def make_book():
    def _make_book(*entries, name='world', **kwargs):
        return LoreBook(entries=tuple(entries), name=name, **kwargs)
    return _make_book


@pytest.fixture
def make_entry():
    def _make_entry(entry_id, keys=(), content='', **kwargs):
        return LoreEntry(keys=tuple(keys), content=content, id=entry_id, **kwargs)
    return _make_entry


@pytest.fixture
def make_block():
    def _make_block(tokens, budget_group='history', role='user', slot='chat_history', **kwargs):
        # heuristic estimator: four characters per token
        return Block(role=role, content='a' * (tokens * 4), slot=slot, budget_group=budget_group, **kwargs)
    return _make_block


@pytest.fixture
def request_data():
    return {
        'character': {
            'name': 'Aria',
            'description': '{{char}} is a knight.',
            'personality': 'Brave',
            'scenario': 'A castle under siege',
            'mes_example': '<START>\n{{user}}: Hi\n{{char}}: Hello there',
        },
        'user': {'name': 'Sam', 'persona': 'A traveler'},
        'history': [
            {'role': 'user', 'content': 'Hello'},
            {'role': 'assistant', 'content': 'Greetings, traveler.'},
        ],
        'user_message': 'Tell me about the dragon.',
        'preset': {'main_prompt': 'You are {{char}}.'},
        'lore_books': [
            {
                'name': 'world',
                'entries': [
                    {'id': 'dragon', 'keys': ['dragon'], 'content': 'Dragons live in the north.'},
                ],
            },
        ],
    }
