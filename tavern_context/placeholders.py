"""Placeholder resolution for preset fragments.

Placeholder items carry no authored content; their text is computed per
turn. Each placeholder type maps to one variant of a closed set:

    ChatHistoryPlaceholder  chatHistory
    ProfilePlaceholder      charDescription, personaDescription,
                            charPersonality, scenario, dialogueExamples
    WorldInfoPlaceholder    worldInfoBefore, worldInfoAfter
    UnimplementedPlaceholder  anything else, or implemented=False

Each variant carries the data it needs and renders itself. Unimplemented
and empty placeholders are dropped and noted in the trace. Non-placeholder
fragments get speaker-name macro substitution instead.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import Literal, Union

from pydantic import BaseModel, Field

from tavern_context.macros import substitute_macros
from tavern_context.models import (
    DEFAULT_HISTORY_TEMPLATE,
    CharacterProfile,
    ChatMessage,
    ContextTrace,
    PersonaProfile,
    PromptPresetItem,
    WorldInfo,
)
from tavern_context.templates import PromptError, render_history

logger = logging.getLogger(__name__)

ProfileKind = Literal[
    "charDescription",
    "personaDescription",
    "charPersonality",
    "scenario",
    "dialogueExamples",
]


class ChatHistoryPlaceholder(BaseModel):
    kind: Literal["chatHistory"] = "chatHistory"
    messages: list[ChatMessage] = Field(default_factory=list)
    inline: bool = False
    template: str = DEFAULT_HISTORY_TEMPLATE
    user_name: str = ""
    char_name: str = ""

    def render(self) -> str:
        # Outside inline mode the history travels as real messages.
        if not self.inline:
            return ""
        return render_history(self.messages, self.template, self.user_name, self.char_name)


class ProfilePlaceholder(BaseModel):
    kind: ProfileKind
    text: str = ""

    def render(self) -> str:
        return self.text


class WorldInfoPlaceholder(BaseModel):
    kind: Literal["worldInfoBefore", "worldInfoAfter"]
    text: str = ""

    def render(self) -> str:
        return self.text


class UnimplementedPlaceholder(BaseModel):
    kind: Literal["unimplemented"] = "unimplemented"
    requested: str = ""

    def render(self) -> str:
        return ""


Placeholder = Union[
    ChatHistoryPlaceholder,
    ProfilePlaceholder,
    WorldInfoPlaceholder,
    UnimplementedPlaceholder,
]


class ResolutionContext(BaseModel):
    """Everything placeholders can draw from for one turn."""

    history: list[ChatMessage] = Field(default_factory=list)
    world_info: WorldInfo = Field(default_factory=WorldInfo)
    character: CharacterProfile = Field(default_factory=CharacterProfile)
    persona: PersonaProfile = Field(default_factory=PersonaProfile)
    inline_history: bool = False
    history_template: str = DEFAULT_HISTORY_TEMPLATE


def placeholder_for(item: PromptPresetItem, ctx: ResolutionContext) -> Placeholder:
    """Build the placeholder variant for a placeholder preset item."""
    kind = item.placeholder_type or item.identifier
    if not item.implemented:
        return UnimplementedPlaceholder(requested=kind)

    if kind == "chatHistory":
        return ChatHistoryPlaceholder(
            messages=ctx.history,
            inline=ctx.inline_history,
            template=ctx.history_template,
            user_name=ctx.persona.name,
            char_name=ctx.character.name,
        )
    if kind == "worldInfoBefore":
        return WorldInfoPlaceholder(kind=kind, text=ctx.world_info.before)
    if kind == "worldInfoAfter":
        return WorldInfoPlaceholder(kind=kind, text=ctx.world_info.after)

    profile_text = {
        "charDescription": ctx.character.description,
        "personaDescription": ctx.persona.description,
        "charPersonality": ctx.character.personality,
        "scenario": ctx.character.scenario,
        "dialogueExamples": ctx.character.dialogue_examples,
    }
    if kind in profile_text:
        return ProfilePlaceholder(kind=kind, text=profile_text[kind])
    return UnimplementedPlaceholder(requested=kind)


def _resolve_placeholder(item: PromptPresetItem, ctx: ResolutionContext) -> tuple[str | None, str]:
    """Return the rendered content (None to drop the item) and a trace note."""
    placeholder = placeholder_for(item, ctx)
    if isinstance(placeholder, UnimplementedPlaceholder):
        return None, f"unimplemented placeholder '{placeholder.requested}'"
    if isinstance(placeholder, ChatHistoryPlaceholder) and not placeholder.inline:
        return None, "chatHistory carried as messages"

    try:
        content = placeholder.render()
    except PromptError as e:
        logger.warning("Placeholder %s failed to render: %s", item.identifier, e)
        return None, f"render failed: {e}"

    if not content.strip():
        return None, f"{placeholder.kind} is empty"
    return content, f"resolved {placeholder.kind}"


def _trace_keys(items: Sequence[PromptPresetItem]) -> list[str]:
    counts = Counter(item.identifier for item in items)
    return [
        item.identifier if counts[item.identifier] == 1 else f"{item.identifier}#{index}"
        for index, item in enumerate(items)
    ]


def resolve_fragments(
    items: Sequence[PromptPresetItem],
    ctx: ResolutionContext,
    trace: ContextTrace,
) -> list[PromptPresetItem]:
    """Return copies of the enabled items with their final literal content.

    Items that end up empty are left out. The source items are not modified.
    """
    resolved: list[PromptPresetItem] = []
    for key, item in zip(_trace_keys(items), items):
        if not item.enabled:
            trace.fragments[key] = "disabled"
            continue

        if item.is_placeholder:
            content, note = _resolve_placeholder(item, ctx)
            trace.fragments[key] = note
            if content is None:
                continue
        else:
            content = substitute_macros(item.content, ctx.persona.name, ctx.character.name)
            if not content.strip():
                trace.fragments[key] = "empty content"
                continue

        resolved.append(item.model_copy(update={"content": content}))
    return resolved


def apply_system_prompt_override(
    items: Sequence[PromptPresetItem],
    override: str | None,
    trace: ContextTrace,
) -> list[PromptPresetItem]:
    """Apply a character's system prompt override to a preset.

    The override replaces the "main" item's content unless that item
    forbids overrides. Without a "main" item it becomes a system fragment
    at depth 0, order 0, ahead of everything else.
    """
    items = list(items)
    if not override or not override.strip():
        return items

    for index, item in enumerate(items):
        if item.identifier != "main":
            continue
        if item.forbid_overrides:
            trace.fragments["system-override"] = "ignored: main forbids overrides"
            return items
        items[index] = item.model_copy(update={"content": override})
        trace.fragments["system-override"] = "replaced main"
        return items

    trace.fragments["system-override"] = "added at depth 0"
    items.insert(0, PromptPresetItem(
        identifier="system-override",
        name="System prompt override",
        content=override,
        role="system",
        injection_depth=0,
        injection_order=0,
    ))
    return items
