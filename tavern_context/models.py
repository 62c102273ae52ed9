"""Core domain models.

Every stage of the context pipeline consumes and produces these types.
Pydantic validates at the data boundary; world books and presets exported
by the chat client use camelCase keys, which are accepted alongside the
snake_case field names.

Malformed ordering fields on preset items (missing, negative or
non-numeric depth/order, unknown role/position) are coerced to neutral
defaults instead of failing validation, so one broken fragment never
blocks a turn.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["system", "user", "assistant"]
Strategy = Literal["constant", "selective", "vectorized"]
EntryPosition = Literal["before", "after"]
SelectiveLogic = Literal["and_any", "and_all", "not_any", "not_all"]
InjectionPosition = Literal["relative", "before", "after"]

ROLES: tuple[str, ...] = ("system", "user", "assistant")

DEFAULT_INJECTION_DEPTH = 0
DEFAULT_INJECTION_ORDER = 100

# Placeholder types this pipeline knows how to fill.
IMPLEMENTED_PLACEHOLDERS: frozenset[str] = frozenset({
    "chatHistory",
    "charDescription",
    "personaDescription",
    "charPersonality",
    "scenario",
    "dialogueExamples",
    "worldInfoBefore",
    "worldInfoAfter",
})

# SillyTavern marks these as markers but they carry authored content.
STATIC_MARKERS: frozenset[str] = frozenset({"main", "jailbreak", "nsfw", "enhanceDefinitions"})

DEFAULT_HISTORY_TEMPLATE = "{{#each msgs}}{{{speaker}}}: {{{content}}}\n\n{{/each}}"

_SELECTIVE_LOGIC_ALIASES = {
    "andAny": "and_any",
    "andAll": "and_all",
    "notAny": "not_any",
    "notAll": "not_all",
}


def _coerce_int(value: Any, default: int, minimum: int | None = None) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and number < minimum:
        return default
    return number


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# World book
# ---------------------------------------------------------------------------

class WorldBookEntry(_CamelModel):
    """A conditional lore snippet."""

    id: str
    title: str = ""
    content: str = ""
    strategy: Strategy = "selective"
    primary_keys: list[str] = Field(default_factory=list)
    secondary_keys: list[str] = Field(default_factory=list)
    selective_logic: SelectiveLogic = "and_any"
    position: EntryPosition = "before"
    case_sensitive: bool | None = None  # None → book default
    match_whole_words: bool | None = None  # None → book default
    enabled: bool = True
    probability: int = Field(default=100, ge=0, le=100)
    scan_depth: int | None = Field(default=None, ge=0)
    exclude_recursion: bool = False
    prevent_recursion: bool = False
    delay_until_recursion: bool = False
    recursion_level: int = Field(default=1, ge=1)

    @field_validator("selective_logic", mode="before")
    @classmethod
    def _normalise_logic(cls, value: Any) -> Any:
        return _SELECTIVE_LOGIC_ALIASES.get(value, value)


class WorldBookSettings(_CamelModel):
    """Book-level scan settings; entry flags override the matching defaults."""

    scan_depth: int = Field(default=2, ge=0)
    max_recursion_steps: int = Field(default=2, ge=0)
    include_names: bool = False
    case_sensitive: bool = False
    match_whole_words: bool = False


class WorldBook(_CamelModel):
    id: str = ""
    name: str = ""
    enabled: bool = True
    entries: list[WorldBookEntry] = Field(default_factory=list)
    settings: WorldBookSettings = Field(default_factory=WorldBookSettings)


# ---------------------------------------------------------------------------
# Prompt preset
# ---------------------------------------------------------------------------

class PromptPresetItem(BaseModel):
    """One instruction fragment of a preset.

    Ordering is decided by (injection_depth, injection_order) alone; list
    position only breaks ties.
    """

    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    name: str = ""
    content: str = ""
    enabled: bool = True
    is_placeholder: bool = Field(default=False, alias="isPlaceholder")
    placeholder_type: str | None = Field(default=None, alias="placeholderType")
    implemented: bool | None = None
    injection_depth: int = DEFAULT_INJECTION_DEPTH
    injection_order: int = DEFAULT_INJECTION_ORDER
    injection_position: InjectionPosition = "relative"
    role: Role = "system"
    forbid_overrides: bool = False
    marker: bool = False

    @field_validator("content", mode="before")
    @classmethod
    def _content_or_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("injection_depth", mode="before")
    @classmethod
    def _coerce_depth(cls, value: Any) -> int:
        return _coerce_int(value, DEFAULT_INJECTION_DEPTH, minimum=0)

    @field_validator("injection_order", mode="before")
    @classmethod
    def _coerce_order(cls, value: Any) -> int:
        return _coerce_int(value, DEFAULT_INJECTION_ORDER)

    @field_validator("injection_position", mode="before")
    @classmethod
    def _coerce_position(cls, value: Any) -> str:
        # SillyTavern stores integers here; both mean depth-based placement.
        if value in ("before", "after"):
            return value
        return "relative"

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> str:
        return value if value in ROLES else "system"

    @model_validator(mode="after")
    def _resolve_marker(self) -> PromptPresetItem:
        if self.marker and not self.is_placeholder and self.identifier not in STATIC_MARKERS:
            self.is_placeholder = True
        if self.is_placeholder and not self.placeholder_type:
            self.placeholder_type = self.identifier
        if self.implemented is None:
            self.implemented = (
                self.placeholder_type in IMPLEMENTED_PLACEHOLDERS
                if self.is_placeholder else True
            )
        return self


class PromptPreset(BaseModel):
    id: str = ""
    name: str = ""
    prompts: list[PromptPresetItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Conversation and profiles
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    """A wire-level chat turn."""

    role: Role
    content: str
    timestamp: datetime | None = None
    name: str | None = None  # speaker name, scanned when include_names is set


class CharacterProfile(BaseModel):
    name: str = ""
    description: str = ""
    personality: str = ""
    scenario: str = ""
    dialogue_examples: str = ""


class PersonaProfile(BaseModel):
    name: str = ""
    description: str = ""


class PipelineOptions(BaseModel):
    """Per-call knobs for build_context()."""

    history_window: int | None = Field(default=None, ge=0)
    inline_history: bool = False
    history_template: str = DEFAULT_HISTORY_TEMPLATE
    system_prompt_override: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class ActivationResult(BaseModel):
    """Entries activated for one turn, with the reason each one fired.

    `indices` are positions in the source entry list, so entries sharing an
    id stay distinct. Trace keys are the entry id, or "id#index" when the
    id appears more than once in the book.
    """

    entries: list[WorldBookEntry] = Field(default_factory=list)
    indices: list[int] = Field(default_factory=list)
    reasons: dict[str, str] = Field(default_factory=dict)
    skipped: dict[str, str] = Field(default_factory=dict)


class WorldInfo(BaseModel):
    before: str = ""
    after: str = ""


class ContextTrace(BaseModel):
    """Diagnostics produced alongside the message list.

    Keys are entry ids and preset identifiers; a duplicated id or identifier
    is keyed "name#index" by its position in the source list.
    """

    entries: dict[str, str] = Field(default_factory=dict)
    skipped_entries: dict[str, str] = Field(default_factory=dict)
    fragments: dict[str, str] = Field(default_factory=dict)


class ContextResult(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    world_info_before: str = ""
    world_info_after: str = ""
    trace: ContextTrace = Field(default_factory=ContextTrace)
