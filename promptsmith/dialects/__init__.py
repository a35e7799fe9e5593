from .registry import available_dialects, convert, get_dialect, register_dialect
from . import anthropic, cohere, google, openai, text

__all__ = ['available_dialects', 'convert', 'get_dialect', 'register_dialect']
