import logging
import coloredlogs
from typing import Dict, Iterable, List, Union

from promptsmith.extensions import log

_component_loggers: Dict[str, str] = {}


def resolve_log_level(level: Union[str, int, None], default: int = logging.INFO) -> int:
    """
    Turns a level name ('DEBUG', 'info') or number into a logging level.
    """
    if isinstance(level, int):
        return level
    if not level:
        return default
    return logging.getLevelNamesMapping().get(str(level).upper(), default)


def create_logger(name: str, entity_name: str, level=logging.INFO):
    """Creates and configures a logger with colored output."""
    if level == logging.DEBUG:
        fmt = f'[%(asctime)s.%(msecs)03d][%(levelname)s][{entity_name}]: %(message)s'
    else:
        fmt = f'[%(asctime)s][%(levelname)s][{entity_name}]: %(message)s'
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    if not logger.handlers:
        coloredlogs.install(level=level, logger=logger, fmt=fmt)
    _component_loggers[name] = entity_name
    return logger


def set_log_level(level: Union[str, int]) -> int:
    """Applies a level to the package logger and every component logger."""
    resolved = resolve_log_level(level)
    log.setLevel(resolved)
    for name in _component_loggers:
        logger = logging.getLogger(name)
        logger.setLevel(resolved)
        for handler in logger.handlers:
            handler.setLevel(resolved)
    return resolved


def normalize_text(value) -> str:
    if value is None:
        return ''
    return value if isinstance(value, str) else str(value)


def message_texts(messages: Iterable) -> List[str]:
    """
    Reads the text out of a transcript that may hold plain strings,
    dicts with a 'content' key or message objects.
    """
    texts = []
    for message in messages or []:
        if isinstance(message, str):
            texts.append(message)
        elif isinstance(message, dict):
            texts.append(normalize_text(message.get('content')))
        else:
            texts.append(normalize_text(getattr(message, 'content', message)))
    return texts
