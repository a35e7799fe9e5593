from typing import Any, Dict, Sequence

from promptsmith.constants import MessageRole
from promptsmith.models import Block
from .registry import leading_system, register_dialect

GOOGLE_ROLES = {
    MessageRole.USER: 'user',
    MessageRole.ASSISTANT: 'model',
}


@register_dialect('google', 'gemini')
def convert_google(blocks: Sequence[Block], squash: bool = False) -> Dict[str, Any]:
    head = leading_system(blocks)
    system_parts = [{"text": block.content} for block in blocks[:head] if block.content]

    contents = []
    for block in blocks[head:]:
        role = GOOGLE_ROLES.get(block.role, 'user')
        if squash and contents and contents[-1]['role'] == role:
            contents[-1]['parts'].append({"text": block.content})
            continue
        contents.append({"role": role, "parts": [{"text": block.content}]})

    result: Dict[str, Any] = {"contents": contents}
    if system_parts:
        result['system_instruction'] = {"parts": system_parts}
    return result
