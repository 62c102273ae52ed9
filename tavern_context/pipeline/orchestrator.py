"""Pipeline orchestrator: assembles the model context for one turn.

Turn flow:
  1. Activate world-book entries against the recent history (keywords,
     constants, similarity scorer, recursion).
  2. Assemble activated entries into the worldInfoBefore/After blocks.
  3. Apply the system prompt override to the preset, if any.
  4. Resolve placeholders and speaker-name macros in every fragment.
  5. Interleave fragments with the (windowed) history by depth.
  6. Merge into the final message list: no blanks, no adjacent same roles.

Nothing here is stored between calls and the inputs are never mutated;
every turn starts from scratch. The only await is the similarity scorer.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from tavern_context.models import (
    CharacterProfile,
    ChatMessage,
    ContextResult,
    ContextTrace,
    PersonaProfile,
    PipelineOptions,
    PromptPreset,
    WorldBook,
    WorldInfo,
)
from tavern_context.placeholders import (
    ResolutionContext,
    apply_system_prompt_override,
    resolve_fragments,
)
from tavern_context.scorer import SimilarityScorer
from tavern_context.worldbook import activate_entries, assemble_world_info

from .injector import inject_prompts
from .merger import merge_messages

logger = logging.getLogger(__name__)


def window_history(history: Sequence[ChatMessage], size: int | None) -> list[ChatMessage]:
    """Return the last `size` messages, or all of them when size is None."""
    if size is None:
        return list(history)
    if size <= 0:
        return []
    return list(history[-size:])


async def build_context(
    *,
    history: Sequence[ChatMessage],
    preset: PromptPreset,
    world_book: WorldBook | None = None,
    character: CharacterProfile | None = None,
    persona: PersonaProfile | None = None,
    scorer: SimilarityScorer | None = None,
    options: PipelineOptions | None = None,
    rng: random.Random | None = None,
) -> ContextResult:
    """Build the ordered message list to send to the model for this turn."""
    options = options or PipelineOptions()
    character = character or CharacterProfile()
    persona = persona or PersonaProfile()
    trace = ContextTrace()

    # 1–2. World info
    world_info = WorldInfo()
    if world_book is not None:
        activation = await activate_entries(
            world_book,
            history,
            character_name=character.name,
            persona_name=persona.name,
            scorer=scorer,
            rng=rng,
        )
        trace.entries.update(activation.reasons)
        trace.skipped_entries.update(activation.skipped)
        world_info = assemble_world_info(world_book, activation)

    # 3. System prompt override
    items = apply_system_prompt_override(preset.prompts, options.system_prompt_override, trace)

    # 4. Placeholders + macros
    windowed = window_history(history, options.history_window)
    ctx = ResolutionContext(
        history=windowed,
        world_info=world_info,
        character=character,
        persona=persona,
        inline_history=options.inline_history,
        history_template=options.history_template,
    )
    fragments = resolve_fragments(items, ctx, trace)

    # 5–6. Injection + merge
    live_history = [] if options.inline_history else windowed
    messages = merge_messages(inject_prompts(fragments, live_history))

    logger.debug(
        "context built preset=%s history=%d fragments=%d entries=%d messages=%d",
        preset.id, len(history), len(fragments), len(trace.entries), len(messages),
    )
    return ContextResult(
        messages=messages,
        world_info_before=world_info.before,
        world_info_after=world_info.after,
        trace=trace,
    )
