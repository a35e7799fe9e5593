from typing import Any, Dict, Sequence

from promptsmith.constants import MessageRole
from promptsmith.models import Block
from .registry import leading_system, register_dialect

COHERE_ROLES = {
    MessageRole.SYSTEM: 'SYSTEM',
    MessageRole.USER: 'USER',
    MessageRole.ASSISTANT: 'CHATBOT',
}


@register_dialect('cohere')
def convert_cohere(blocks: Sequence[Block]) -> Dict[str, Any]:
    """
    Chat shape with a `preamble` and the whole conversation in
    `chat_history`, so that nothing is moved out of order into `message`.
    """
    head = leading_system(blocks)
    preamble = '\n\n'.join(block.content for block in blocks[:head] if block.content)
    chat_history = [
        {"role": COHERE_ROLES.get(block.role, 'USER'), "message": block.content}
        for block in blocks[head:]
    ]
    return {"preamble": preamble, "chat_history": chat_history}
