"""Runtime configuration (log level, world-book defaults, history window, scorer).

Sources, lowest priority first:
  1. Built-in defaults below.
  2. A JSON file named by TAVERN_CONFIG (or passed explicitly), merged
     section by section.
  3. TAVERN_* environment variables (a .env file in the repo root is loaded).
"""

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from tavern_context.models import PipelineOptions, WorldBookSettings
from tavern_context.scorer import HttpScorer

load_dotenv(Path(__file__).parent.parent / ".env")

_CONFIG_DEFAULTS: dict[str, Any] = {
    "log_level": "INFO",
    "world_book": {
        "scan_depth": 2,
        "max_recursion_steps": 2,
        "include_names": False,
        "case_sensitive": False,
        "match_whole_words": False,
    },
    "pipeline": {
        "history_window": None,
        "inline_history": False,
    },
    "scorer": {
        "url": "",
        "api_key": "",
        "threshold": 0.75,
        "timeout": 30.0,
    },
}

# env var → (section or None, key, parser)
_ENV_OVERRIDES: dict[str, tuple[str | None, str, Any]] = {
    "TAVERN_LOG_LEVEL": (None, "log_level", str),
    "TAVERN_SCAN_DEPTH": ("world_book", "scan_depth", int),
    "TAVERN_MAX_RECURSION_STEPS": ("world_book", "max_recursion_steps", int),
    "TAVERN_HISTORY_WINDOW": ("pipeline", "history_window", int),
    "TAVERN_SCORER_URL": ("scorer", "url", str),
    "TAVERN_SCORER_API_KEY": ("scorer", "api_key", str),
    "TAVERN_SCORER_THRESHOLD": ("scorer", "threshold", float),
}


def get_config(path: Path | None = None) -> dict[str, Any]:
    """Return defaults merged with the JSON config file and environment."""
    config: dict[str, Any] = json.loads(json.dumps(_CONFIG_DEFAULTS))

    if path is None and os.getenv("TAVERN_CONFIG"):
        path = Path(os.environ["TAVERN_CONFIG"])
    if path is not None and path.is_file():
        stored = json.loads(path.read_text())
        if "log_level" in stored:
            config["log_level"] = stored["log_level"]
        for section in ("world_book", "pipeline", "scorer"):
            if isinstance(stored.get(section), dict):
                config[section].update(stored[section])

    for var, (section, key, parse) in _ENV_OVERRIDES.items():
        raw = os.getenv(var)
        if raw is None or raw == "":
            continue
        try:
            value = parse(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from e
        target = config if section is None else config[section]
        target[key] = value
    return config


def default_world_book_settings(config: dict[str, Any] | None = None) -> WorldBookSettings:
    """World-book settings used when a book arrives without its own."""
    config = config or get_config()
    return WorldBookSettings.model_validate(config["world_book"])


def default_pipeline_options(config: dict[str, Any] | None = None) -> PipelineOptions:
    config = config or get_config()
    return PipelineOptions.model_validate(config["pipeline"])


def build_scorer(config: dict[str, Any] | None = None) -> HttpScorer | None:
    """Construct the HTTP scorer, or None when no service URL is configured."""
    config = config or get_config()
    scorer = config["scorer"]
    if not scorer.get("url"):
        return None
    return HttpScorer(
        service_url=scorer["url"],
        api_key=scorer.get("api_key", ""),
        threshold=float(scorer.get("threshold", 0.75)),
        timeout=float(scorer.get("timeout", 30.0)),
    )
