from promptsmith.constants import DEFAULT_EVICTION_ORDER, HEURISTIC_MODEL_GROUP


class BuilderConfig:
    LOG_LEVEL = 'INFO'
    MODEL_GROUP = HEURISTIC_MODEL_GROUP
    DEFAULT_DIALECT = 'openai'
    EVICTION_ORDER = DEFAULT_EVICTION_ORDER
    MESSAGE_OVERHEAD_TOKENS = 0
    PRESERVE_LATEST_USER_MESSAGE = True
    STRICT = False


class TestingConfig(BuilderConfig):
    LOG_LEVEL = 'WARNING'
