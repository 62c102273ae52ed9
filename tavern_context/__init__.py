"""Context assembly for a roleplay chat client.

For every outgoing turn, decides which world-book lore and preset
instruction fragments reach the model, where, and in what shape.

    from tavern_context import build_context
    result = await build_context(history=..., preset=..., world_book=...)
    result.messages  # ordered, merged ChatMessage list
    result.trace     # why each entry/fragment was used or dropped
"""

from tavern_context.models import (  # noqa: F401
    CharacterProfile,
    ChatMessage,
    ContextResult,
    ContextTrace,
    PersonaProfile,
    PipelineOptions,
    PromptPreset,
    PromptPresetItem,
    WorldBook,
    WorldBookEntry,
    WorldBookSettings,
)
from tavern_context.pipeline import build_context  # noqa: F401
