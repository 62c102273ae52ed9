import os

import pytest

from tavern_context.models import ChatMessage, WorldBook, WorldBookEntry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TAVERN_* variables from the developer's shell out of every test."""
    for var in list(os.environ):
        if var.startswith("TAVERN_"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def medieval_book() -> WorldBook:
    """One constant entry plus one dragon-keyed entry."""
    return WorldBook(
        id="kingdom",
        name="Kingdom",
        entries=[
            WorldBookEntry(id="setting", strategy="constant", content="Setting: A medieval kingdom"),
            WorldBookEntry(id="dragons", primary_keys=["dragon"], content="Dragons are feared here"),
        ],
    )


@pytest.fixture
def dragon_history() -> list[ChatMessage]:
    return [ChatMessage(role="user", content="Tell me about dragons")]
