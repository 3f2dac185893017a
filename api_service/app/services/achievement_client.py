"""HTTP client for the external achievement/goal tracker with circuit breaker and retry."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from circuitbreaker import circuit
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import get_settings

logger = structlog.get_logger()

_client: httpx.AsyncClient | None = None


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = httpx.AsyncClient(
            base_url=settings.achievement_tracker_url or "",
            timeout=httpx.Timeout(settings.achievement_tracker_timeout_seconds, connect=2.0),
        )
    return _client


@circuit(failure_threshold=5, recovery_timeout=30)
@retry(
    retry=retry_if_exception_type(httpx.HTTPError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    reraise=True,
)
async def _post_event(payload: dict[str, Any]) -> None:
    client = await _get_client()
    response = await client.post("/events", json=payload)
    response.raise_for_status()


async def send_event(payload: dict[str, Any]) -> bool:
    """Deliver one event. Returns False when no tracker is configured."""
    if not get_settings().achievement_tracker_url:
        logger.debug("achievement_tracker_disabled", event=payload.get("event"))
        return False
    await _post_event(payload)
    logger.info(
        "achievement_event_sent",
        event=payload.get("event"),
        user_id=payload.get("user_id"),
        book_id=payload.get("book_id"),
    )
    return True


async def close_client() -> None:
    global _client
    if _client:
        await _client.aclose()
        _client = None
