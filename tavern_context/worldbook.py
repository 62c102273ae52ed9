"""World-info activation and assembly.

Activation runs once per turn over a world book:

  1. Enabled "constant" entries activate unconditionally.
  2. Enabled "selective" entries are matched against the scan window
     (the last scan_depth messages, optionally prefixed with speaker names).
  3. "vectorized" entries are handed to the injected similarity scorer.
  4. Recursion: content of newly activated entries is appended to the scan
     window and steps 2–3 repeat, up to max_recursion_steps passes or until
     a pass activates nothing new and no delayed entry is still waiting.

Activation is monotonic: an entry fires at most once and is never
re-evaluated. Assembly then splits the activated entries by position,
keeping source-list order, into the worldInfoBefore/After blocks.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from collections.abc import Sequence

from tavern_context.macros import substitute_macros
from tavern_context.matcher import match_entry
from tavern_context.models import (
    ActivationResult,
    ChatMessage,
    WorldBook,
    WorldBookEntry,
    WorldInfo,
)
from tavern_context.scorer import SimilarityScorer

logger = logging.getLogger(__name__)


def build_scan_text(
    history: Sequence[ChatMessage],
    depth: int,
    *,
    include_names: bool = False,
    character_name: str = "",
    persona_name: str = "",
) -> str:
    """Join the last `depth` messages into one scannable string."""
    if depth <= 0:
        return ""
    parts: list[str] = []
    for msg in history[-depth:]:
        text = msg.content
        if include_names:
            speaker = msg.name or (persona_name if msg.role == "user" else character_name)
            if speaker:
                text = f"{speaker}: {text}"
        parts.append(text)
    return substitute_macros(
        "\n\n".join(parts),
        persona_name or None,
        character_name or None,
    )


def _join(*blocks: str) -> str:
    return "\n\n".join(b for b in blocks if b)


def _trace_keys(entries: Sequence[WorldBookEntry]) -> list[str]:
    """Trace key per entry: its id, or "id#index" when the id is not unique."""
    counts = Counter(entry.id for entry in entries)
    return [
        entry.id if counts[entry.id] == 1 else f"{entry.id}#{index}"
        for index, entry in enumerate(entries)
    ]


def _passes_probability(entry: WorldBookEntry, rng: random.Random | None) -> bool:
    if entry.probability >= 100:
        return True
    roll = (rng or random).random() * 100
    return roll < entry.probability


class _Activation:
    """Mutable state for one activation run. Never outlives the call."""

    def __init__(
        self,
        world_book: WorldBook,
        history: Sequence[ChatMessage],
        character_name: str,
        persona_name: str,
        scorer: SimilarityScorer | None,
        rng: random.Random | None,
    ) -> None:
        self.book = world_book
        self.settings = world_book.settings
        self.history = history
        self.character_name = character_name
        self.persona_name = persona_name
        self.scorer = scorer
        self.rng = rng
        # index into world_book.entries → reason
        self.active: dict[int, str] = {}
        self.rolled_out: set[int] = set()
        # index → note, for entries that were eligible but did not fire
        self.skipped: dict[int, str] = {}
        self._windows: dict[int, str] = {}

    def window(self, depth: int) -> str:
        if depth not in self._windows:
            self._windows[depth] = build_scan_text(
                self.history,
                depth,
                include_names=self.settings.include_names,
                character_name=self.character_name,
                persona_name=self.persona_name,
            )
        return self._windows[depth]

    def entry_window(self, entry: WorldBookEntry) -> str:
        depth = self.settings.scan_depth if entry.scan_depth is None else entry.scan_depth
        return self.window(depth)

    def activate(self, index: int, reason: str) -> bool:
        entry = self.book.entries[index]
        if not _passes_probability(entry, self.rng):
            self.skipped[index] = "probability roll failed"
            self.rolled_out.add(index)
            return False
        self.active[index] = reason
        return True

    def eligible(self, step: int) -> list[int]:
        """Indices of non-constant entries that may be tested on this pass."""
        indices: list[int] = []
        for index, entry in enumerate(self.book.entries):
            if not entry.enabled or entry.strategy == "constant":
                continue
            if index in self.active or index in self.rolled_out:
                continue
            if step == 0 and entry.delay_until_recursion:
                continue
            if step > 0:
                if entry.exclude_recursion:
                    continue
                if entry.delay_until_recursion and entry.recursion_level > step:
                    continue
            indices.append(index)
        return indices

    def has_delayed(self, step: int) -> bool:
        """True while some entry still waits for a deeper recursion level."""
        return any(
            entry.enabled
            and entry.delay_until_recursion
            and not entry.exclude_recursion
            and entry.recursion_level > step
            and index not in self.active
            and index not in self.rolled_out
            for index, entry in enumerate(self.book.entries)
        )

    async def scan(self, step: int, recursion_text: str) -> list[int]:
        """Run one matching pass; return the indices it activated."""
        suffix = f" (recursion step {step})" if step else ""
        newly: list[int] = []
        vector_candidates: list[int] = []

        for index in self.eligible(step):
            entry = self.book.entries[index]
            if entry.strategy == "vectorized":
                vector_candidates.append(index)
                continue
            text = _join(self.entry_window(entry), recursion_text)
            match = match_entry(entry, text, self.settings)
            if match and self.activate(index, match.describe() + suffix):
                newly.append(index)

        if vector_candidates:
            query = _join(self.window(self.settings.scan_depth), recursion_text)
            newly.extend(await self.score(vector_candidates, query, suffix))
        return newly

    async def score(self, candidates: list[int], query: str, suffix: str) -> list[int]:
        entries = [self.book.entries[i] for i in candidates]
        if self.scorer is None:
            for index in candidates:
                self.skipped.setdefault(index, "no similarity scorer configured")
            return []
        if not query:
            return []
        try:
            ids = set(await self.scorer(query, entries))
        except Exception as e:
            logger.warning("Similarity scorer failed: %s", e)
            for index in candidates:
                self.skipped[index] = f"similarity scorer failed: {e}"
            return []

        newly: list[int] = []
        for index, entry in zip(candidates, entries):
            if entry.id in ids and self.activate(index, "vector match" + suffix):
                newly.append(index)
        return newly


async def activate_entries(
    world_book: WorldBook,
    history: Sequence[ChatMessage],
    *,
    character_name: str = "",
    persona_name: str = "",
    scorer: SimilarityScorer | None = None,
    rng: random.Random | None = None,
) -> ActivationResult:
    """Decide which entries of a world book are active for this turn.

    Returns the activated entries in activation order, a reason per
    activated entry id, and notes for eligible entries that did not fire
    because of a failed probability roll or a missing/failing scorer.
    """
    if not world_book.enabled:
        return ActivationResult()

    run = _Activation(world_book, history, character_name, persona_name, scorer, rng)

    for index, entry in enumerate(world_book.entries):
        if entry.enabled and entry.strategy == "constant":
            run.activate(index, "constant")

    await run.scan(0, "")

    max_steps = world_book.settings.max_recursion_steps
    pending = list(run.active)
    recursion_text = ""
    step = 0
    while step < max_steps:
        step += 1
        added = [
            world_book.entries[i].content
            for i in pending
            if not world_book.entries[i].prevent_recursion
        ]
        recursion_text = _join(recursion_text, *added)
        pending = await run.scan(step, recursion_text)
        if not pending and not run.has_delayed(step):
            break

    logger.debug(
        "activation book=%s entries=%d active=%d steps=%d",
        world_book.id, len(world_book.entries), len(run.active), step,
    )

    keys = _trace_keys(world_book.entries)
    return ActivationResult(
        entries=[world_book.entries[i] for i in run.active],
        indices=list(run.active),
        reasons={keys[i]: reason for i, reason in run.active.items()},
        skipped={keys[i]: note for i, note in run.skipped.items() if i not in run.active},
    )


def assemble_world_info(world_book: WorldBook, activation: ActivationResult) -> WorldInfo:
    """Render activated entries into the before/after text blocks.

    Entries keep their source-list order within each position; blank
    contents are skipped. No activated entries yields empty strings.
    """
    active = set(activation.indices)
    before: list[str] = []
    after: list[str] = []
    for index, entry in enumerate(world_book.entries):
        if index not in active:
            continue
        content = entry.content.strip()
        if not content:
            continue
        (before if entry.position == "before" else after).append(content)
    return WorldInfo(before="\n\n".join(before), after="\n\n".join(after))
