from typing import Any, Callable, Dict, List, Sequence, Union

from promptsmith.constants import MessageRole
from promptsmith.errors import ConfigurationError
from promptsmith.models import Block, Plan

Converter = Callable[..., Any]

_DIALECTS: Dict[str, Converter] = {}


def register_dialect(*names: str):
    """Registers a converter under one or more dialect names."""
    def decorator(func: Converter) -> Converter:
        for name in names:
            if name in _DIALECTS:
                raise ConfigurationError(f"Dialect '{name}' is already registered")
            _DIALECTS[name] = func
        return func
    return decorator


def available_dialects() -> List[str]:
    return sorted(_DIALECTS)


def get_dialect(name: str) -> Converter:
    converter = _DIALECTS.get((name or '').strip().lower())
    if converter is None:
        raise ConfigurationError(
            f"Unknown dialect '{name}', expected one of: {', '.join(available_dialects())}"
        )
    return converter


def plan_blocks(plan_or_blocks: Union[Plan, Sequence[Block]]) -> List[Block]:
    blocks = plan_or_blocks.blocks if isinstance(plan_or_blocks, Plan) else plan_or_blocks
    return [block for block in blocks if block.enabled]


def convert(plan_or_blocks: Union[Plan, Sequence[Block]], dialect: str, **options) -> Any:
    """
    Serializes the enabled blocks of a plan into the wire shape of `dialect`.
    Block order is kept as is.
    """
    converter = get_dialect(dialect)
    return converter(plan_blocks(plan_or_blocks), **options)


def leading_system(blocks: Sequence[Block]) -> int:
    """Number of system blocks before the first non-system block."""
    count = 0
    for block in blocks:
        if block.role != MessageRole.SYSTEM:
            break
        count += 1
    return count


def _plain_text(message: Dict[str, Any]) -> bool:
    return set(message) == {'role', 'content'} and isinstance(message['content'], str)


def squash_roles(messages: List[Dict[str, Any]], separator: str = '\n\n') -> List[Dict[str, Any]]:
    """
    Merges consecutive plain-text messages of the same role, keeping their
    order. Messages carrying anything besides role and content (names, tool
    calls, tool ids) are never merged.
    """
    squashed: List[Dict[str, Any]] = []
    for message in messages:
        if squashed and _plain_text(squashed[-1]) and _plain_text(message) \
                and squashed[-1]['role'] == message['role']:
            last = squashed[-1]
            last['content'] = separator.join(part for part in (last['content'], message['content']) if part)
        else:
            squashed.append(dict(message))
    return squashed
