"""Handlebars rendering for the inline chat-history transcript."""

from collections.abc import Callable, Sequence
from typing import Any

import pybars

from tavern_context.models import DEFAULT_HISTORY_TEMPLATE, ChatMessage

_compiler = pybars.Compiler()


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}}: iterate over the first N items."""
    result = []
    for item in list(items)[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    n = int(count)
    for item in (list(items)[-n:] if n > 0 else []):
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context."""
    try:
        compiled = _compiler.compile(template_str)
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def _speaker(msg: ChatMessage, user_name: str, char_name: str) -> str:
    if msg.name:
        return msg.name
    if msg.role == "user":
        return user_name or "User"
    if msg.role == "assistant":
        return char_name or "Assistant"
    return "System"


def history_context(
    messages: Sequence[ChatMessage],
    user_name: str = "",
    char_name: str = "",
) -> dict[str, Any]:
    """Assemble template variables for a chat-history transcript.

    Each entry of `msgs` carries role, content, speaker and the is_user /
    is_assistant / is_system flags for {{#if}} blocks.
    """
    msgs = [
        {
            "role": msg.role,
            "content": msg.content,
            "speaker": _speaker(msg, user_name, char_name),
            "is_user": msg.role == "user",
            "is_assistant": msg.role == "assistant",
            "is_system": msg.role == "system",
        }
        for msg in messages
    ]
    return {"msgs": msgs, "user": user_name, "char": char_name}


def render_history(
    messages: Sequence[ChatMessage],
    template_str: str = DEFAULT_HISTORY_TEMPLATE,
    user_name: str = "",
    char_name: str = "",
) -> str:
    """Render messages as a transcript; surrounding whitespace is stripped."""
    if not messages:
        return ""
    return render_prompt(template_str, history_context(messages, user_name, char_name)).strip()
