"""Depth-based interleaving of preset fragments with chat history.

Depth counts turns back from the newest message: depth 0 lands after the
newest message, depth 1 just before it, and so on. Depths beyond the start
of the history collapse onto the very beginning, deeper ones first.

Fragments positioned "before"/"after" skip depth placement and frame the
whole sequence. Within one placement slot, fragments are taken in
injection_order; fragments sharing an order are grouped by role (system,
user, assistant) and each group becomes one message with contents joined
by a blank line.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from itertools import groupby

from tavern_context.models import ROLES, ChatMessage, PromptPresetItem

logger = logging.getLogger(__name__)


def sort_fragments(fragments: Sequence[PromptPresetItem]) -> list[PromptPresetItem]:
    """Order fragments by (injection_depth, injection_order), stable on ties."""
    return sorted(fragments, key=lambda f: (f.injection_depth, f.injection_order))


def group_by_role(fragments: Sequence[PromptPresetItem]) -> list[ChatMessage]:
    """Collapse fragments into one message per role, system first."""
    groups: dict[str, list[str]] = {}
    for fragment in fragments:
        groups.setdefault(fragment.role, []).append(fragment.content.strip())
    return [
        ChatMessage(role=role, content="\n\n".join(groups[role]))
        for role in ROLES
        if role in groups
    ]


def _slot_messages(fragments: Sequence[PromptPresetItem]) -> list[ChatMessage]:
    # fragments arrive sorted; groupby keeps them in injection_order
    messages: list[ChatMessage] = []
    for _, same_order in groupby(fragments, key=lambda f: f.injection_order):
        messages.extend(group_by_role(list(same_order)))
    return messages


def inject_prompts(
    fragments: Sequence[PromptPresetItem],
    history: Sequence[ChatMessage],
) -> list[ChatMessage]:
    """Interleave resolved fragments into the history.

    Disabled and blank fragments never produce a message. The result may
    still contain adjacent same-role messages; see merge_messages().
    """
    usable = [f for f in fragments if f.enabled and f.content.strip()]
    ordered = sort_fragments(usable)

    # framing fragments ignore depth, so only injection_order sorts them
    by_order = sorted(usable, key=lambda f: f.injection_order)
    head = [f for f in by_order if f.injection_position == "before"]
    tail = [f for f in by_order if f.injection_position == "after"]
    by_depth: dict[int, list[PromptPresetItem]] = {}
    for fragment in ordered:
        if fragment.injection_position == "relative":
            by_depth.setdefault(fragment.injection_depth, []).append(fragment)

    # slot k sits just before history[k]; slot len(history) is the end
    count = len(history)
    slots: dict[int, list[ChatMessage]] = {}
    for depth in sorted(by_depth, reverse=True):
        slot = max(count - depth, 0)
        slots.setdefault(slot, []).extend(_slot_messages(by_depth[depth]))

    sequence = _slot_messages(head)
    for index, message in enumerate(history):
        sequence.extend(slots.get(index, []))
        sequence.append(message)
    sequence.extend(slots.get(count, []))
    sequence.extend(_slot_messages(tail))

    logger.debug(
        "injection fragments=%d history=%d depths=%s result=%d",
        len(usable), count, sorted(by_depth), len(sequence),
    )
    return sequence
