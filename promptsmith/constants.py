class MessageRole:
    """
    Class for message roles
    """
    SYSTEM = 'system'
    USER = 'user'
    ASSISTANT = 'assistant'
    TOOL = 'tool'

    ALL = (SYSTEM, USER, ASSISTANT, TOOL)


class Slot:
    MAIN_PROMPT = 'main_prompt'
    CHARACTER_DESCRIPTION = 'character_description'
    CHARACTER_PERSONALITY = 'character_personality'
    SCENARIO = 'scenario'
    PERSONA_DESCRIPTION = 'persona_description'
    LOREBOOK = 'lorebook'
    CHAT_EXAMPLES = 'chat_examples'
    CHAT_HISTORY = 'chat_history'
    AUTHORS_NOTE = 'authors_note'
    POST_HISTORY_INSTRUCTIONS = 'post_history_instructions'
    USER_MESSAGE = 'user_message'

    CHARACTER_DEFINITIONS = (CHARACTER_DESCRIPTION, CHARACTER_PERSONALITY, SCENARIO)


class BudgetGroup:
    SYSTEM = 'system'
    INJECTIONS = 'injections'
    EXAMPLES = 'examples'
    LOREBOOK = 'lorebook'
    MEMORY = 'memory'
    HISTORY = 'history'


class LorePosition:
    BEFORE_CHAR = 'before_char'
    AFTER_CHAR = 'after_char'


class SelectiveLogic:
    AND_ANY = 'and_any'
    AND_ALL = 'and_all'
    NOT_ANY = 'not_any'
    NOT_ALL = 'not_all'

    ALL = (AND_ANY, AND_ALL, NOT_ANY, NOT_ALL)


# lowest priority first
DEFAULT_EVICTION_ORDER = (
    BudgetGroup.INJECTIONS,
    BudgetGroup.EXAMPLES,
    BudgetGroup.LOREBOOK,
    BudgetGroup.MEMORY,
    BudgetGroup.HISTORY,
)

DEFAULT_SCAN_DEPTH = 2
# ceiling for a book's max_recursion_steps; 0 means passes run until nothing new activates
MAX_RECURSION_STEPS = 10
DEFAULT_AUTHORS_NOTE_DEPTH = 4

EXAMPLE_SEPARATOR = '<START>'

# paths
ASSETS_PATH = './promptsmith/assets'
TOKENIZERS_PATH = ASSETS_PATH + '/tokenizers'

CLAUDE3_MODEL_GROUP = 'claude3'
GPT4_MODEL_GROUP = 'gpt-4'
HEURISTIC_MODEL_GROUP = 'heuristic'
