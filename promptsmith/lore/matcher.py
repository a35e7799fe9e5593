import re
from functools import lru_cache
from typing import Iterable, Optional, Pattern

from promptsmith.constants import SelectiveLogic
from promptsmith.extensions import log

# /pattern/flags, the form lorebook authors use for regex keys
REGEX_LITERAL = re.compile(r'^/(?P<source>.+)/(?P<flags>[a-z]*)$', re.DOTALL)

LITERAL_FLAGS = {
    'i': re.IGNORECASE,
    'm': re.MULTILINE,
    's': re.DOTALL,
}


@lru_cache(maxsize=512)
def compile_pattern(source: str, flags: int = 0) -> Optional[Pattern]:
    """
    Compiles a key pattern. Returns None for an unparsable pattern so that
    one broken key only disables itself.
    """
    try:
        return re.compile(source, flags)
    except re.error as e:
        log.debug(f"Ignoring malformed lore key pattern '{source}': {e}")
        return None


def parse_regex_literal(key: str) -> Optional[Pattern]:
    match = REGEX_LITERAL.match(key)
    if not match:
        return None
    flags = 0
    for flag in match.group('flags'):
        flags |= LITERAL_FLAGS.get(flag, 0)
    return compile_pattern(match.group('source'), flags)


def match_key(text: str, key: str, case_sensitive: bool = False,
              match_whole_words: bool = True, use_regex: bool = False) -> bool:
    """
    Matches one lore key against the scan text.

    Keys written as /pattern/flags are always treated as regular expressions.
    With `use_regex` a bare key is compiled as a pattern too, ignoring case
    unless `case_sensitive` is set. Plain keys match as substrings; with
    `match_whole_words` a single-word key must stand on word boundaries while
    multi-word phrases still match as substrings.
    """
    needle = (key or '').strip()
    if not needle or not text:
        return False

    if REGEX_LITERAL.match(needle):
        pattern = parse_regex_literal(needle)
        return pattern is not None and pattern.search(text) is not None

    if use_regex:
        pattern = compile_pattern(needle, 0 if case_sensitive else re.IGNORECASE)
        return pattern is not None and pattern.search(text) is not None

    haystack = text if case_sensitive else text.lower()
    needle = needle if case_sensitive else needle.lower()

    if match_whole_words and len(needle.split()) == 1:
        word_pattern = compile_pattern(rf'(?:^|\W){re.escape(needle)}(?:$|\W)')
        return word_pattern.search(haystack) is not None
    return needle in haystack


def first_match(text: str, keys: Iterable[str], **options) -> Optional[str]:
    for key in keys:
        if match_key(text, key, **options):
            return key
    return None


def match_secondary(text: str, keys: Iterable[str], logic: str = SelectiveLogic.AND_ANY, **options) -> bool:
    """
    Evaluates the secondary keys of a selective entry.
    and_any: at least one matches; and_all: every one matches;
    not_any: none matches; not_all: at least one does not match.
    """
    keys = [key for key in keys if key and key.strip()]
    if not keys:
        return False

    results = [match_key(text, key, **options) for key in keys]
    if logic == SelectiveLogic.AND_ALL:
        return all(results)
    if logic == SelectiveLogic.NOT_ANY:
        return not any(results)
    if logic == SelectiveLogic.NOT_ALL:
        return not all(results)
    return any(results)
