"""FastAPI diagnostic endpoints under /api.

  GET  /api/health               liveness
  POST /api/worldbooks/activate  which entries fire for a history, and why
  POST /api/context/preview      the full message list for a turn, no model call

Both POST endpoints are stateless: every request carries its own world
book, preset and history.
"""

from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from pydantic import BaseModel, Field

from tavern_context.config import (
    build_scorer,
    default_pipeline_options,
    default_world_book_settings,
    get_config,
)
from tavern_context.logging import setup_logging
from tavern_context.models import (
    CharacterProfile,
    ChatMessage,
    ContextResult,
    ContextTrace,
    PersonaProfile,
    PipelineOptions,
    PromptPreset,
    WorldBook,
)
from tavern_context.pipeline import build_context
from tavern_context.worldbook import activate_entries, assemble_world_info

router = APIRouter()


class ActivateBody(BaseModel):
    world_book: WorldBook
    history: list[ChatMessage] = Field(default_factory=list)
    character_name: str = ""
    persona_name: str = ""


class ActivateResponse(BaseModel):
    before: str
    after: str
    trace: ContextTrace


class PreviewBody(BaseModel):
    history: list[ChatMessage] = Field(default_factory=list)
    preset: PromptPreset
    world_book: WorldBook | None = None
    character: CharacterProfile = Field(default_factory=CharacterProfile)
    persona: PersonaProfile = Field(default_factory=PersonaProfile)
    options: PipelineOptions | None = None


def _with_default_settings(book: WorldBook, config: dict[str, Any]) -> WorldBook:
    if "settings" in book.model_fields_set:
        return book
    return book.model_copy(update={"settings": default_world_book_settings(config)})


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/worldbooks/activate", response_model=ActivateResponse)
async def activate_world_book(body: ActivateBody, request: Request):
    """Run world-info activation only and report the reasons."""
    book = _with_default_settings(body.world_book, request.app.state.config)
    activation = await activate_entries(
        book,
        body.history,
        character_name=body.character_name,
        persona_name=body.persona_name,
        scorer=request.app.state.scorer,
    )
    info = assemble_world_info(book, activation)
    trace = ContextTrace(entries=activation.reasons, skipped_entries=activation.skipped)
    return ActivateResponse(before=info.before, after=info.after, trace=trace)


@router.post("/context/preview", response_model=ContextResult)
async def preview_context(body: PreviewBody, request: Request):
    """Build the message list the model would receive for this turn."""
    config = request.app.state.config
    book = _with_default_settings(body.world_book, config) if body.world_book else None
    return await build_context(
        history=body.history,
        preset=body.preset,
        world_book=book,
        character=body.character,
        persona=body.persona,
        scorer=request.app.state.scorer,
        options=body.options or default_pipeline_options(config),
    )


def create_app(config: dict[str, Any] | None = None, config_path: Path | None = None) -> FastAPI:
    config = config or get_config(config_path)
    setup_logging(config["log_level"])

    app = FastAPI(title="Tavern Context")
    app.state.config = config
    app.state.scorer = build_scorer(config)
    app.include_router(router, prefix="/api")
    return app
