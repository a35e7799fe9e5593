from promptsmith.constants import SelectiveLogic
from promptsmith.lore.matcher import first_match, match_key, match_secondary


def test_plain_key_matches_case_insensitively():
    assert match_key("The Dragon sleeps", "dragon")
    assert not match_key("The Dragon sleeps", "dragon", case_sensitive=True)
    assert match_key("The Dragon sleeps", "Dragon", case_sensitive=True)


def test_whole_words():
    assert not match_key("a nest of dragons", "dragon")
    assert match_key("a nest of dragons", "dragon", match_whole_words=False)
    assert match_key("dragon!", "dragon")
    assert match_key("dragon", "dragon")


def test_multi_word_phrase_matches_as_substring():
    assert match_key("look, the red dragon flies", "red dragon")
    assert not match_key("look, the blue dragon flies", "red dragon")


def test_regex_literal_key():
    assert match_key("DRAAAGON", "/dra+gon/i")
    assert not match_key("DRAAAGON", "/dra+gon/")


def test_use_regex_compiles_bare_key():
    assert match_key("the dragonfly", r"dragon\w+", use_regex=True)
    assert not match_key("the Dragonfly", r"dragon\w+", use_regex=True, case_sensitive=True)


def test_malformed_regex_is_a_non_match():
    assert not match_key("[unclosed", "/[unclosed/")
    assert not match_key("(", "(", use_regex=True)


def test_empty_key_or_text_never_matches():
    assert not match_key("anything", "")
    assert not match_key("anything", "   ")
    assert not match_key("", "dragon")


def test_first_match_returns_first_matching_key():
    assert first_match("a castle and a dragon", ["wyvern", "dragon", "castle"]) == "dragon"
    assert first_match("nothing here", ["wyvern"]) is None


def test_secondary_logic():
    text = "a sword and a shield"
    keys = ["sword", "bow"]
    assert match_secondary(text, keys, SelectiveLogic.AND_ANY)
    assert not match_secondary(text, keys, SelectiveLogic.AND_ALL)
    assert not match_secondary(text, keys, SelectiveLogic.NOT_ANY)
    assert match_secondary(text, keys, SelectiveLogic.NOT_ALL)
    assert match_secondary(text, ["sword", "shield"], SelectiveLogic.AND_ALL)
    assert match_secondary(text, ["bow", "axe"], SelectiveLogic.NOT_ANY)
