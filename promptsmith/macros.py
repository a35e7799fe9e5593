import random
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

OPEN = '{{'
CLOSE = '}}'


class ScopeEnum(Enum):
    PROMPT = 'prompt'
    DISPLAY = 'display'
    LOREBOOK = 'lorebook'


@dataclass
class MacroEnvironment:
    """
    Read-only view of the build inputs that macros can reference.
    `now` pins the clock for date and time macros.
    """
    char: str = ''
    user: str = ''
    persona: str = ''
    description: str = ''
    personality: str = ''
    scenario: str = ''
    last_message: str = ''
    turn: int = 0
    variables: Dict[str, Any] = field(default_factory=dict)
    now: Optional[datetime] = None

    def clock(self) -> datetime:
        return self.now or datetime.now()


def find_closing(text: str, start: int) -> int:
    """
    Returns the index just past the `}}` that closes the `{{` at `start`,
    or -1 when the macro is never closed.
    """
    depth = 0
    i = start
    while i < len(text):
        pair = text[i:i + 2]
        if pair == OPEN:
            depth += 1
            i += 2
        elif pair == CLOSE:
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return -1


def split_macro(content: str):
    """Splits 'name:args' on the first colon outside nested braces."""
    nesting = 0
    for i, char in enumerate(content):
        if char == '{':
            nesting += 1
        elif char == '}' and nesting:
            nesting -= 1
        elif char == ':' and not nesting:
            return content[:i], content[i + 1:]
    return content, None


class MacroProcessor:
    """
    Expands `{{name}}` and `{{name:args}}` macros. Arguments are expanded
    before the macro runs, so macros nest. Unknown macros stay in the text
    untouched; `{{// ...}}` is a comment and `{{trim}}` eats the whitespace
    around it.
    """

    def __init__(self, predefined_macros=None, max_depth=10, seed: Optional[int] = None):
        self.macros: Dict[str, Callable[..., str]] = dict(predefined_macros) if predefined_macros else {}
        self.max_depth = max_depth
        self.rng = random.Random(seed)

    def add_macro(self, name, func):
        self.macros[name] = func

    def expand(self, text: str, environment: Optional[MacroEnvironment] = None) -> str:
        return self.process(text, scope=ScopeEnum.PROMPT, environment=environment)

    def process(self, text, scope=ScopeEnum.PROMPT, environment: Optional[MacroEnvironment] = None):
        if not text or OPEN not in text:
            return text or ''
        return self._expand(text, scope, 0, environment or MacroEnvironment())

    def _expand(self, text, scope, depth, environment):
        if depth > self.max_depth:
            return text

        parts: List[str] = []
        position = 0
        while True:
            start = text.find(OPEN, position)
            if start < 0:
                parts.append(text[position:])
                break
            end = find_closing(text, start)
            if end < 0:
                parts.append(text[position:])
                break

            parts.append(text[position:start])
            content = text[start + 2:end - 2]
            position = end
            if content == 'trim':
                parts = [''.join(parts).rstrip()]
                while position < len(text) and text[position].isspace():
                    position += 1
                continue
            parts.append(self._call(content, text, scope, depth + 1, environment))
        return ''.join(parts)

    def _call(self, content, text, scope, depth, environment):
        if depth > self.max_depth:
            return OPEN + content + CLOSE
        if content.startswith('//'):
            return ''

        name, args = split_macro(content)
        if args is None:
            name = self._expand(name, scope, depth, environment)
            args = ''
        else:
            args = self._expand(args, scope, depth, environment)

        macro = self.macros.get(name)
        if macro is None:
            return OPEN + content + CLOSE
        return macro(macro_args=args, original_text=text, scope=scope, environment=environment, rng=self.rng)


def environment_macro(attribute: str):
    def macro(**kwargs):
        return str(getattr(kwargs['environment'], attribute))
    return macro


def var_macro(**kwargs):
    name = kwargs['macro_args'].strip()
    return str(kwargs['environment'].variables.get(name, ''))


def random_macro(**kwargs):
    return kwargs['rng'].choice(kwargs['macro_args'].split(','))


def pick_macro(**kwargs):
    """Stable choice: the same source text always picks the same option."""
    seed = int(hashlib.md5(kwargs['original_text'].encode()).hexdigest(), 16)
    return random.Random(seed).choice(kwargs['macro_args'].split(','))


def roll_macro(**kwargs):
    sides = kwargs['macro_args'].strip().lower().lstrip('d')
    if not sides.isdigit() or int(sides) < 1:
        return OPEN + 'roll:' + kwargs['macro_args'] + CLOSE
    return str(kwargs['rng'].randint(1, int(sides)))


def reverse_macro(**kwargs):
    return kwargs['macro_args'][::-1]


def scoped_macro(visible_in: ScopeEnum):
    """Shows its argument only when expanding in `visible_in` scope."""
    def macro(**kwargs):
        return kwargs['macro_args'] if kwargs['scope'] == visible_in else ''
    return macro


def clock_macro(fmt: str):
    def macro(**kwargs):
        return kwargs['environment'].clock().strftime(fmt)
    return macro


def isotime_macro(**kwargs):
    return kwargs['environment'].clock().isoformat(timespec='seconds')


def datetimeformat_macro(**kwargs):
    return kwargs['environment'].clock().strftime(kwargs['macro_args'])


def time_utc_macro(**kwargs):
    offset = int(kwargs['macro_args'] or 0)
    now = kwargs['environment'].now
    now = now.astimezone(timezone.utc) if now else datetime.now(timezone.utc)
    return (now + timedelta(hours=offset)).strftime('%H:%M:%S')


def time_diff_macro(**kwargs):
    first, second = kwargs['macro_args'].split('::')
    return str(abs(datetime.fromisoformat(first) - datetime.fromisoformat(second)))


predefined_macros = {
    'char': environment_macro('char'),
    'user': environment_macro('user'),
    'persona': environment_macro('persona'),
    'description': environment_macro('description'),
    'personality': environment_macro('personality'),
    'scenario': environment_macro('scenario'),
    'lastMessage': environment_macro('last_message'),
    'turn': environment_macro('turn'),
    'getvar': var_macro,
    'random': random_macro,
    'pick': pick_macro,
    'roll': roll_macro,
    'reverse': reverse_macro,
    'comment': scoped_macro(ScopeEnum.DISPLAY),
    'hidden_key': scoped_macro(ScopeEnum.LOREBOOK),
    'newline': lambda **kwargs: '\n',
    'time': clock_macro('%H:%M:%S'),
    'date': clock_macro('%Y-%m-%d'),
    'weekday': clock_macro('%A'),
    'isodate': clock_macro('%Y-%m-%d'),
    'isotime': isotime_macro,
    'datetimeformat': datetimeformat_macro,
    'time_UTC': time_utc_macro,
    'timeDiff': time_diff_macro,
}


def create_macro_processor(seed: Optional[int] = None) -> MacroProcessor:
    return MacroProcessor(predefined_macros, seed=seed)
