import os
from dotenv import load_dotenv

from promptsmith.config import BuilderConfig
from promptsmith.extensions import log
from promptsmith.services import PromptBuilder, TimedStateRegistry
from promptsmith.utils.utils import set_log_level


def create_builder(config=BuilderConfig, **kwargs) -> PromptBuilder:
    """
    Creates a PromptBuilder. Environment variables (optionally from a .env
    file) override the config: PROMPTSMITH_LOG_LEVEL, PROMPTSMITH_MODEL_GROUP
    and PROMPTSMITH_DIALECT.
    """
    load_dotenv()

    overrides = {
        'LOG_LEVEL': os.getenv('PROMPTSMITH_LOG_LEVEL'),
        'MODEL_GROUP': os.getenv('PROMPTSMITH_MODEL_GROUP'),
        'DEFAULT_DIALECT': os.getenv('PROMPTSMITH_DIALECT'),
    }
    overrides = {key: value for key, value in overrides.items() if value}
    if overrides:
        config = type(config.__name__, (config,), overrides)

    set_log_level(config.LOG_LEVEL)
    log.debug(f"Creating prompt builder (model group '{config.MODEL_GROUP}', dialect '{config.DEFAULT_DIALECT}')")
    return PromptBuilder(config=config, **kwargs)


__all__ = ['BuilderConfig', 'PromptBuilder', 'TimedStateRegistry', 'create_builder']
