"""Similarity scorer: activation for "vectorized" world-book entries.

The activator injects a scorer callable matching the protocol:

    async def __call__(self, query: str, entries: list[WorldBookEntry]) -> list[str]: ...

`query` is the current scan window; the scorer returns the ids of the
entries it judges similar enough to activate. Embedding computation lives
behind this boundary, never in the pipeline.

HttpScorer is the production implementation: it delegates to an external
similarity service. Tests use small stub scorers instead.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from tavern_context.models import WorldBookEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every scorer implementation must match this signature
# ---------------------------------------------------------------------------

class SimilarityScorer(Protocol):
    async def __call__(self, query: str, entries: list[WorldBookEntry]) -> list[str]: ...


# ---------------------------------------------------------------------------
# HttpScorer: delegates to a similarity service
# ---------------------------------------------------------------------------

class HttpScorer:
    """Async HTTP client for an external similarity service.

    Request:   POST {service_url}/v1/similarity
               {"query": ..., "threshold": ..., "entries": [{"id", "content"}]}
    Response:  {"ids": ["..."]}                 ids already filtered, or
               {"scores": {"<id>": 0.83, ...}}  filtered here by threshold

    Args:
        service_url: Base URL of the service, e.g. "http://localhost:8100".
        api_key:     Bearer token, or empty string if not required.
        threshold:   Minimum score (exclusive) for an entry to activate.
        timeout:     HTTP timeout in seconds. Defaults to 30.
    """

    def __init__(
        self,
        service_url: str,
        api_key: str = "",
        threshold: float = 0.75,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = service_url.rstrip("/")
        self._api_key = api_key
        self._threshold = threshold
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _parse_response(self, data: dict) -> list[str]:
        """Extract activated ids from the response body."""
        if isinstance(data.get("ids"), list):
            return [str(i) for i in data["ids"]]
        scores = data.get("scores")
        if isinstance(scores, dict):
            try:
                return [str(i) for i, score in scores.items() if float(score) > self._threshold]
            except (TypeError, ValueError) as e:
                raise ScorerError(f"Non-numeric score from similarity service: {e}") from e
        raise ScorerError("Unexpected response format from similarity service")

    async def __call__(self, query: str, entries: list[WorldBookEntry]) -> list[str]:
        if not entries:
            return []
        url = f"{self._base_url}/v1/similarity"
        body = {
            "query": query,
            "threshold": self._threshold,
            "entries": [{"id": e.id, "content": e.content} for e in entries],
        }
        logger.debug("scorer call url=%s entries=%d query_len=%d", url, len(entries), len(query))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ScorerError(f"Cannot connect to similarity service at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise ScorerError(
                f"Similarity service returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise ScorerError(f"Similarity service timed out after {self._timeout}s") from e

        ids = self._parse_response(resp.json())
        logger.debug("scorer response ids=%d", len(ids))
        return ids


# ---------------------------------------------------------------------------
# ScorerError: raised by HttpScorer for all connection and protocol failures
# ---------------------------------------------------------------------------

class ScorerError(RuntimeError):
    """Raised when the similarity service cannot be reached or returns an error."""
