"""Tests for world-info activation (constants, keywords, scorer, recursion,
probability) and assembly into before/after blocks."""

import random
from unittest.mock import AsyncMock

from tavern_context.models import ChatMessage, WorldBook, WorldBookEntry, WorldBookSettings
from tavern_context.worldbook import activate_entries, assemble_world_info, build_scan_text


# ── Helpers ──────────────────────────────────────────────


def _book(*entries: WorldBookEntry, **settings) -> WorldBook:
    return WorldBook(id="book", entries=list(entries), settings=WorldBookSettings(**settings))


def _history(*contents: str) -> list[ChatMessage]:
    roles = ("user", "assistant")
    return [ChatMessage(role=roles[i % 2], content=c) for i, c in enumerate(contents)]


class StubScorer:
    """Returns a fixed id list and records the queries it was given."""

    def __init__(self, ids):
        self.ids = list(ids)
        self.calls = []  # (query, [entry ids])

    async def __call__(self, query, entries):
        self.calls.append((query, [e.id for e in entries]))
        return self.ids


# ── build_scan_text ──────────────────────────────────────


def test_scan_text_uses_last_n_messages():
    history = _history("one", "two", "three")
    assert build_scan_text(history, 2) == "two\n\nthree"


def test_scan_text_depth_zero_is_empty():
    assert build_scan_text(_history("one"), 0) == ""


def test_scan_text_include_names():
    history = [
        ChatMessage(role="user", content="hello"),
        ChatMessage(role="assistant", content="hi"),
        ChatMessage(role="assistant", content="psst", name="Whisper"),
    ]
    text = build_scan_text(history, 3, include_names=True, character_name="Gareth", persona_name="Aldric")
    assert text == "Aldric: hello\n\nGareth: hi\n\nWhisper: psst"


def test_scan_text_substitutes_name_macros():
    history = _history("{{char}} greets <user>")
    text = build_scan_text(history, 1, character_name="Gareth", persona_name="Aldric")
    assert text == "Gareth greets Aldric"


def test_scan_text_leaves_macros_without_names():
    assert build_scan_text(_history("{{char}} waves"), 1) == "{{char}} waves"


# ── activate_entries: basics ─────────────────────────────


async def test_constant_and_keyword_scenario(medieval_book, dragon_history):
    result = await activate_entries(medieval_book, dragon_history)
    assert [e.id for e in result.entries] == ["setting", "dragons"]
    assert result.reasons == {"setting": "constant", "dragons": "keyword 'dragon'"}

    info = assemble_world_info(medieval_book, result)
    assert info.before == "Setting: A medieval kingdom\n\nDragons are feared here"
    assert info.after == ""


async def test_disabled_entries_never_activate():
    book = _book(
        WorldBookEntry(id="c", strategy="constant", content="x", enabled=False),
        WorldBookEntry(id="k", primary_keys=["dragon"], content="y", enabled=False),
    )
    result = await activate_entries(book, _history("dragon"))
    assert result.entries == []


async def test_disabled_book_activates_nothing(medieval_book, dragon_history):
    book = medieval_book.model_copy(update={"enabled": False})
    result = await activate_entries(book, dragon_history)
    assert result.entries == []
    assert result.reasons == {}


async def test_constant_ignores_keys():
    book = _book(WorldBookEntry(id="c", strategy="constant", primary_keys=["never"], content="x"))
    result = await activate_entries(book, _history("nothing relevant"))
    assert result.reasons == {"c": "constant"}


async def test_selective_without_keys_never_activates():
    book = _book(WorldBookEntry(id="k", content="anything"))
    result = await activate_entries(book, _history("anything"))
    assert result.entries == []


async def test_scan_depth_limits_window():
    book = _book(WorldBookEntry(id="k", primary_keys=["dragon"], content="lore"), scan_depth=1)
    result = await activate_entries(book, _history("a dragon!", "ok", "moving on"))
    assert result.entries == []


async def test_entry_scan_depth_override():
    book = _book(
        WorldBookEntry(id="deep", primary_keys=["dragon"], scan_depth=3, content="lore"),
        WorldBookEntry(id="never", primary_keys=["dragon"], scan_depth=0, content="lore"),
        scan_depth=1,
        max_recursion_steps=0,
    )
    result = await activate_entries(book, _history("a dragon!", "ok", "moving on"))
    assert list(result.reasons) == ["deep"]


async def test_does_not_mutate_world_book(medieval_book, dragon_history):
    before = medieval_book.model_dump()
    await activate_entries(medieval_book, dragon_history)
    assert medieval_book.model_dump() == before


# ── recursion ────────────────────────────────────────────


async def test_recursion_activates_from_entry_content():
    book = _book(
        WorldBookEntry(id="castle", primary_keys=["castle"], content="The castle is guarded by a dragon."),
        WorldBookEntry(id="dragon", primary_keys=["dragon"], content="Dragons hoard gold."),
        max_recursion_steps=1,
    )
    result = await activate_entries(book, _history("We reach the castle"))
    assert result.reasons == {
        "castle": "keyword 'castle'",
        "dragon": "keyword 'dragon' (recursion step 1)",
    }


async def test_recursion_disabled_with_zero_steps():
    book = _book(
        WorldBookEntry(id="castle", primary_keys=["castle"], content="guarded by a dragon"),
        WorldBookEntry(id="dragon", primary_keys=["dragon"], content="gold"),
        max_recursion_steps=0,
    )
    result = await activate_entries(book, _history("We reach the castle"))
    assert list(result.reasons) == ["castle"]


async def test_recursion_respects_step_budget():
    book = _book(
        WorldBookEntry(id="a", primary_keys=["start"], content="mentions bravo"),
        WorldBookEntry(id="b", primary_keys=["bravo"], content="mentions charlie"),
        WorldBookEntry(id="c", primary_keys=["charlie"], content="mentions delta"),
        WorldBookEntry(id="d", primary_keys=["delta"], content="the end"),
        max_recursion_steps=2,
    )
    result = await activate_entries(book, _history("start"))
    assert list(result.reasons) == ["a", "b", "c"]


async def test_recursion_cycle_terminates():
    book = _book(
        WorldBookEntry(id="a", primary_keys=["beta"], content="alpha lore"),
        WorldBookEntry(id="b", primary_keys=["alpha"], content="beta lore"),
        max_recursion_steps=2,
    )
    result = await activate_entries(book, _history("tell me about alpha"))
    assert set(result.reasons) == {"a", "b"}
    assert result.reasons["b"] == "keyword 'alpha'"
    assert result.reasons["a"] == "keyword 'beta' (recursion step 1)"


async def test_recursion_cycle_terminates_with_large_budget():
    book = _book(
        WorldBookEntry(id="a", primary_keys=["beta"], content="alpha"),
        WorldBookEntry(id="b", primary_keys=["alpha"], content="beta"),
        max_recursion_steps=10_000,
    )
    result = await activate_entries(book, _history("alpha"))
    assert set(result.reasons) == {"a", "b"}


async def test_constant_content_feeds_recursion():
    book = _book(
        WorldBookEntry(id="c", strategy="constant", content="A dragon rules the land."),
        WorldBookEntry(id="k", primary_keys=["dragon"], content="lore"),
    )
    result = await activate_entries(book, _history("hello"))
    assert result.reasons["k"] == "keyword 'dragon' (recursion step 1)"


async def test_prevent_recursion_hides_content():
    book = _book(
        WorldBookEntry(id="c", strategy="constant", prevent_recursion=True, content="A dragon."),
        WorldBookEntry(id="k", primary_keys=["dragon"], content="lore"),
    )
    result = await activate_entries(book, _history("hello"))
    assert list(result.reasons) == ["c"]


async def test_exclude_recursion_only_initial_pass():
    book = _book(
        WorldBookEntry(id="c", strategy="constant", content="A dragon."),
        WorldBookEntry(id="k", primary_keys=["dragon"], exclude_recursion=True, content="lore"),
    )
    result = await activate_entries(book, _history("hello"))
    assert list(result.reasons) == ["c"]

    result = await activate_entries(book, _history("a dragon"))
    assert result.reasons["k"] == "keyword 'dragon'"


async def test_delay_until_recursion():
    book = _book(
        WorldBookEntry(id="c", strategy="constant", content="nothing"),
        WorldBookEntry(id="late", primary_keys=["dragon"], delay_until_recursion=True,
                       recursion_level=2, content="lore"),
        max_recursion_steps=3,
    )
    result = await activate_entries(book, _history("a dragon"))
    assert result.reasons["late"] == "keyword 'dragon' (recursion step 2)"


# ── probability ──────────────────────────────────────────


async def test_probability_zero_never_activates():
    book = _book(WorldBookEntry(id="k", primary_keys=["dragon"], probability=0, content="x"),
                 max_recursion_steps=0)
    result = await activate_entries(book, _history("dragon"), rng=random.Random(1))
    assert result.entries == []
    assert result.skipped == {"k": "probability roll failed"}


async def test_probability_seeded_rng_is_deterministic():
    book = _book(*[
        WorldBookEntry(id=f"k{i}", primary_keys=["dragon"], probability=50, content="x")
        for i in range(10)
    ], max_recursion_steps=0)
    first = await activate_entries(book, _history("dragon"), rng=random.Random(7))
    second = await activate_entries(book, _history("dragon"), rng=random.Random(7))
    assert first.reasons == second.reasons


# ── vectorized entries ───────────────────────────────────


async def test_vectorized_uses_scorer():
    book = _book(
        WorldBookEntry(id="v1", strategy="vectorized", content="Ancient wyrms"),
        WorldBookEntry(id="v2", strategy="vectorized", content="Fishing"),
        max_recursion_steps=0,
    )
    scorer = StubScorer(["v1", "unknown"])
    result = await activate_entries(book, _history("tell me of old serpents"), scorer=scorer)
    assert result.reasons == {"v1": "vector match"}
    assert scorer.calls == [("tell me of old serpents", ["v1", "v2"])]


async def test_vectorized_without_scorer_is_traced():
    book = _book(WorldBookEntry(id="v", strategy="vectorized", content="x"))
    result = await activate_entries(book, _history("anything"))
    assert result.entries == []
    assert result.skipped == {"v": "no similarity scorer configured"}


async def test_scorer_failure_is_recoverable(medieval_book, dragon_history):
    book = medieval_book.model_copy(update={
        "entries": medieval_book.entries + [WorldBookEntry(id="v", strategy="vectorized", content="x")],
    })
    scorer = AsyncMock(side_effect=RuntimeError("boom"))
    result = await activate_entries(book, dragon_history, scorer=scorer)
    assert set(result.reasons) == {"setting", "dragons"}
    assert result.skipped["v"] == "similarity scorer failed: boom"


async def test_vectorized_recursion_query_includes_activated_content():
    book = _book(
        WorldBookEntry(id="k", primary_keys=["castle"], content="A wyrm sleeps below."),
        WorldBookEntry(id="v", strategy="vectorized", content="Wyrm lore"),
        max_recursion_steps=1,
    )

    class WyrmScorer(StubScorer):
        async def __call__(self, query, entries):
            self.calls.append((query, [e.id for e in entries]))
            return ["v"] if "wyrm" in query else []

    scorer = WyrmScorer([])
    result = await activate_entries(book, _history("the castle"), scorer=scorer)
    assert result.reasons["v"] == "vector match (recursion step 1)"
    assert len(scorer.calls) == 2


# ── assemble_world_info ──────────────────────────────────


async def test_assembly_keeps_source_order_per_position():
    book = _book(
        WorldBookEntry(id="a", primary_keys=["zeta"], content="A", position="after"),
        WorldBookEntry(id="b", primary_keys=["alpha"], content="B"),
        WorldBookEntry(id="c", strategy="constant", content="C", position="after"),
        WorldBookEntry(id="d", primary_keys=["alpha"], content="D"),
        max_recursion_steps=0,
    )
    result = await activate_entries(book, _history("alpha zeta"))
    info = assemble_world_info(book, result)
    assert info.before == "B\n\nD"
    assert info.after == "A\n\nC"


async def test_assembly_empty_is_empty_string():
    book = _book(WorldBookEntry(id="k", primary_keys=["dragon"], content="x"))
    result = await activate_entries(book, _history("nothing"))
    info = assemble_world_info(book, result)
    assert info.before == ""
    assert info.after == ""


async def test_assembly_skips_blank_content():
    book = _book(
        WorldBookEntry(id="a", strategy="constant", content="   "),
        WorldBookEntry(id="b", strategy="constant", content="  B  "),
    )
    result = await activate_entries(book, [])
    assert assemble_world_info(book, result).before == "B"


async def test_duplicate_ids_assembled_by_position():
    book = _book(
        WorldBookEntry(id="x", primary_keys=["dragon"], content="A"),
        WorldBookEntry(id="x", primary_keys=["zzz"], content="B"),
    )
    result = await activate_entries(book, _history("dragon"))
    assert result.indices == [0]
    assert result.reasons == {"x#0": "keyword 'dragon'"}
    assert assemble_world_info(book, result).before == "A"


async def test_duplicate_ids_keep_separate_reasons():
    book = _book(
        WorldBookEntry(id="x", strategy="constant", content="A"),
        WorldBookEntry(id="x", primary_keys=["dragon"], content="B"),
        WorldBookEntry(id="y", primary_keys=["dragon"], probability=0, content="C"),
        max_recursion_steps=0,
    )
    result = await activate_entries(book, _history("dragon"))
    assert result.reasons == {"x#0": "constant", "x#1": "keyword 'dragon'"}
    assert result.skipped == {"y": "probability roll failed"}
    assert assemble_world_info(book, result).before == "A\n\nB"
