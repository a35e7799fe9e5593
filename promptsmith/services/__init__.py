from .prompt_service import PromptBuilder
from .timed_state_registry import TimedStateRegistry

__all__ = ['PromptBuilder', 'TimedStateRegistry']
