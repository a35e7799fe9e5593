from typing import Dict, Sequence

from promptsmith.models import Block
from .registry import register_dialect


@register_dialect('text')
def convert_text(blocks: Sequence[Block], separator: str = '\n') -> Dict[str, str]:
    """Plain completion prompt: `{"prompt": str}` with block contents in order."""
    return {"prompt": separator.join(block.content for block in blocks)}
