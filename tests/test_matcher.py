"""Tests for keyword trigger matching: substring/whole-word search, case handling,
secondary-key logic, regex keys, and book-default fallback."""

from tavern_context.matcher import KeyMatch, clean_keys, find_match, key_in_text, match_entry
from tavern_context.models import WorldBookEntry, WorldBookSettings


# ── key_in_text ─────────────────────────────────────────────


def test_substring_match():
    assert key_in_text("dragon", "The dragonfire burns")


def test_case_insensitive_by_default():
    assert key_in_text("Dragon", "I see a DRAGON")


def test_case_sensitive():
    assert not key_in_text("Dragon", "I see a dragon", case_sensitive=True)
    assert key_in_text("Dragon", "I see a Dragon", case_sensitive=True)


def test_whole_words_rejects_partial():
    assert not key_in_text("dragon", "The dragonfire burns", whole_words=True)
    assert key_in_text("dragon", "A dragon, sleeping", whole_words=True)


def test_whole_words_with_punctuation_key():
    assert key_in_text("Mr.", "Ask Mr. Smith", whole_words=True)
    assert not key_in_text("Mr.", "Ask Mr.Smith", whole_words=True)


def test_whole_words_case_insensitive():
    assert key_in_text("elf", "An ELF appears", whole_words=True)
    assert not key_in_text("elf", "An ELF appears", whole_words=True, case_sensitive=True)


def test_key_special_characters_are_literal():
    assert key_in_text("c++", "I write c++ daily", whole_words=True)
    assert not key_in_text("a.c", "abc")


def test_regex_key():
    assert key_in_text("/drag(on|oon)s?/", "The DRAGOONS march")


def test_regex_key_explicit_flags_override_case():
    # explicit flags given: no implicit IGNORECASE
    assert not key_in_text("/dragon/m", "DRAGON")
    assert key_in_text("/dragon/i", "DRAGON", case_sensitive=True)


def test_invalid_regex_never_matches():
    assert not key_in_text("/drag(on/", "dragon")


# ── clean_keys ──────────────────────────────────────────────


def test_clean_keys_drops_blank_and_trims():
    assert clean_keys(["  dragon ", "", "   ", "elf"]) == ["dragon", "elf"]


# ── find_match ──────────────────────────────────────────────


def test_empty_primary_keys_never_match():
    assert find_match([], [], "anything at all") is None


def test_whitespace_only_keys_ignored():
    assert find_match(["   "], [], "   spaces   ") is None


def test_empty_text_never_matches():
    assert find_match(["dragon"], [], "") is None


def test_primary_hit_reports_first_matching_key():
    match = find_match(["wyrm", "dragon", "fire"], [], "the dragon breathes fire")
    assert match == KeyMatch("dragon")


def test_secondary_and_any():
    assert find_match(["dragon"], ["fire", "ice"], "dragon of ice") == KeyMatch("dragon", ("ice",))
    assert find_match(["dragon"], ["fire", "ice"], "a dragon sleeps") is None


def test_secondary_requires_primary():
    assert find_match(["dragon"], ["fire"], "fire everywhere") is None


def test_secondary_and_all():
    assert find_match(["dragon"], ["fire", "ice"], "dragon of fire", logic="and_all") is None
    match = find_match(["dragon"], ["fire", "ice"], "dragon of fire and ice", logic="and_all")
    assert match == KeyMatch("dragon", ("fire", "ice"))


def test_secondary_not_any():
    assert find_match(["dragon"], ["tame"], "a wild dragon", logic="not_any") == KeyMatch("dragon")
    assert find_match(["dragon"], ["tame"], "a tame dragon", logic="not_any") is None


def test_secondary_not_all():
    text = "dragon and fire"
    assert find_match(["dragon"], ["fire", "ice"], text, logic="not_all") == KeyMatch("dragon")
    assert find_match(["dragon"], ["fire", "ice"], text + " and ice", logic="not_all") is None


def test_blank_secondary_keys_mean_no_refinement():
    assert find_match(["dragon"], [" ", ""], "dragon") == KeyMatch("dragon")


def test_describe():
    assert KeyMatch("dragon").describe() == "keyword 'dragon'"
    assert KeyMatch("dragon", ("fire", "ice")).describe() == "keyword 'dragon' + 'fire', 'ice'"


# ── match_entry ─────────────────────────────────────────────


def test_entry_falls_back_to_book_defaults():
    entry = WorldBookEntry(id="e", primary_keys=["Dragon"])
    strict = WorldBookSettings(case_sensitive=True)
    assert match_entry(entry, "a dragon", WorldBookSettings()) is not None
    assert match_entry(entry, "a dragon", strict) is None


def test_entry_flags_override_book_defaults():
    entry = WorldBookEntry(id="e", primary_keys=["dragon"], match_whole_words=False)
    settings = WorldBookSettings(match_whole_words=True)
    assert match_entry(entry, "dragonfire", settings) is not None

    strict_entry = WorldBookEntry(id="e", primary_keys=["dragon"], match_whole_words=True)
    assert match_entry(strict_entry, "dragonfire", WorldBookSettings()) is None
