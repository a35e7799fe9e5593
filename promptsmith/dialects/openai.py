from typing import Any, Dict, List, Sequence

from promptsmith.constants import MessageRole
from promptsmith.models import Block
from .registry import register_dialect, squash_roles

OPENAI_ROLES = {
    MessageRole.SYSTEM: 'system',
    MessageRole.USER: 'user',
    MessageRole.ASSISTANT: 'assistant',
    MessageRole.TOOL: 'tool',
}


@register_dialect('openai', 'mistral', 'xai', 'ai21')
def convert_openai(blocks: Sequence[Block], squash: bool = False, include_names: bool = True) -> List[Dict[str, Any]]:
    """
    Chat-completions message array. System blocks keep their place and
    assistant `tool_calls` pass through; tool blocks without a `tool_call_id`
    cannot be answered and become user messages.
    """
    messages = []
    for block in blocks:
        role = OPENAI_ROLES.get(block.role, 'user')
        message: Dict[str, Any] = {"role": role, "content": block.content}
        if role == 'tool':
            tool_call_id = block.metadata.get('tool_call_id')
            if tool_call_id:
                message['tool_call_id'] = tool_call_id
            else:
                message['role'] = 'user'
        elif role == 'assistant' and block.metadata.get('tool_calls'):
            message['tool_calls'] = list(block.metadata['tool_calls'])
        if include_names and block.name:
            message['name'] = block.name
        messages.append(message)
    return squash_roles(messages) if squash else messages
