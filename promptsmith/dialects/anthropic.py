import json
from typing import Any, Dict, Mapping, Sequence

from promptsmith.constants import MessageRole
from promptsmith.models import Block
from .registry import leading_system, register_dialect, squash_roles


def _text(text: str) -> Dict[str, str]:
    return {"type": "text", "text": text}


def _parse_arguments(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not isinstance(arguments, str) or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _tool_use(call: Mapping[str, Any]) -> Dict[str, Any]:
    """OpenAI-style `{"id", "function": {"name", "arguments"}}` to a tool_use block."""
    function = call.get('function') or {}
    return {
        "type": "tool_use",
        "id": str(call.get('id', '')),
        "name": str(function.get('name', '')),
        "input": _parse_arguments(function.get('arguments')),
    }


def _assistant(block: Block) -> Dict[str, Any]:
    tool_calls = block.metadata.get('tool_calls')
    if not tool_calls:
        return {"role": "assistant", "content": block.content}
    content = [_text(block.content)] if block.content else []
    content.extend(_tool_use(call) for call in tool_calls)
    return {"role": "assistant", "content": content}


@register_dialect('anthropic')
def convert_anthropic(blocks: Sequence[Block], squash: bool = False) -> Dict[str, Any]:
    """
    Messages API shape: `{"system": str, "messages": [...]}`.

    Leading system blocks are joined into `system`. Later system blocks stay
    in place as user turns. Assistant `tool_calls` become `tool_use` content
    and tool blocks carrying `tool_call_id` become `tool_result` content.
    """
    head = leading_system(blocks)
    system = '\n\n'.join(block.content for block in blocks[:head] if block.content)

    messages = []
    for block in blocks[head:]:
        if block.role == MessageRole.ASSISTANT:
            messages.append(_assistant(block))
        elif block.role == MessageRole.TOOL and block.metadata.get('tool_call_id'):
            messages.append({"role": "user", "content": [{
                "type": "tool_result",
                "tool_use_id": str(block.metadata['tool_call_id']),
                "content": block.content,
            }]})
        else:
            messages.append({"role": "user", "content": block.content})

    if squash:
        messages = squash_roles(messages)
    return {"system": system, "messages": messages}
