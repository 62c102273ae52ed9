"""Keyword trigger matching for world-book entries.

A primary key hit is required; secondary keys then refine the hit according
to the entry's selective logic (default "and_any": at least one secondary key
must also appear). Keys may be plain text or /regex/flags.

All functions are pure: they look at a text window and report which keys
matched, nothing else.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import NamedTuple

from tavern_context.models import SelectiveLogic, WorldBookEntry, WorldBookSettings

logger = logging.getLogger(__name__)

_REGEX_KEY = re.compile(r"^/(.+)/([a-z]*)$", re.DOTALL)
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


class KeyMatch(NamedTuple):
    """The keys that caused an entry to match."""

    primary: str
    secondary: tuple[str, ...] = ()

    def describe(self) -> str:
        reason = f"keyword '{self.primary}'"
        if self.secondary:
            reason += " + " + ", ".join(f"'{key}'" for key in self.secondary)
        return reason


def clean_keys(keys: Iterable[str]) -> list[str]:
    """Trim keys and drop blank ones."""
    return [key.strip() for key in keys if key and key.strip()]


def _regex_search(pattern: str, flag_chars: str, text: str, case_sensitive: bool) -> bool:
    flags = 0
    for char in flag_chars:
        flags |= _REGEX_FLAGS.get(char, 0)
    if not flag_chars and not case_sensitive:
        flags |= re.IGNORECASE
    try:
        return re.search(pattern, text, flags) is not None
    except re.error as e:
        logger.warning("Invalid regex key /%s/%s: %s", pattern, flag_chars, e)
        return False


def key_in_text(key: str, text: str, *, case_sensitive: bool = False, whole_words: bool = False) -> bool:
    """Return True if a single key occurs in text."""
    regex = _REGEX_KEY.match(key)
    if regex:
        return _regex_search(regex.group(1), regex.group(2), text, case_sensitive)

    if whole_words:
        # Lookarounds instead of \b so keys ending in punctuation still match.
        pattern = rf"(?<!\w){re.escape(key)}(?!\w)"
        flags = 0 if case_sensitive else re.IGNORECASE
        return re.search(pattern, text, flags) is not None

    if case_sensitive:
        return key in text
    return key.casefold() in text.casefold()


def find_match(
    primary_keys: Iterable[str],
    secondary_keys: Iterable[str],
    text: str,
    *,
    case_sensitive: bool = False,
    whole_words: bool = False,
    logic: SelectiveLogic = "and_any",
) -> KeyMatch | None:
    """Test a primary/secondary key set against text.

    Returns the matching keys, or None if the trigger condition is not met.
    An empty primary key list never matches.
    """
    primary = clean_keys(primary_keys)
    if not primary or not text:
        return None

    def found(key: str) -> bool:
        return key_in_text(key, text, case_sensitive=case_sensitive, whole_words=whole_words)

    hit = next((key for key in primary if found(key)), None)
    if hit is None:
        return None

    secondary = clean_keys(secondary_keys)
    if not secondary:
        return KeyMatch(hit)

    present = tuple(key for key in secondary if found(key))
    if logic == "and_any":
        ok = bool(present)
    elif logic == "and_all":
        ok = len(present) == len(secondary)
    elif logic == "not_any":
        ok = not present
    else:  # not_all
        ok = len(present) < len(secondary)

    if not ok:
        return None
    if logic in ("and_any", "and_all"):
        return KeyMatch(hit, present)
    return KeyMatch(hit)


def match_entry(entry: WorldBookEntry, text: str, settings: WorldBookSettings) -> KeyMatch | None:
    """Match an entry against a scan window, applying book defaults for unset flags."""
    case_sensitive = settings.case_sensitive if entry.case_sensitive is None else entry.case_sensitive
    whole_words = settings.match_whole_words if entry.match_whole_words is None else entry.match_whole_words
    return find_match(
        entry.primary_keys,
        entry.secondary_keys,
        text,
        case_sensitive=case_sensitive,
        whole_words=whole_words,
        logic=entry.selective_logic,
    )
