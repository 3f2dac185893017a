"""Domain events emitted by the shelf engine and their delivery to collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

import structlog

from app.metrics import ACHIEVEMENT_EVENTS
from app.services.achievement_client import send_event

logger = structlog.get_logger()

BOOK_FINISHED = "book_finished"


@dataclass(frozen=True)
class ShelfEvent:
    user_id: int
    book_id: int
    event: str
    timestamp: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "event": self.event,
            "book_id": self.book_id,
            "timestamp": self.timestamp.isoformat(),
        }


class AchievementEventPublisher:
    """
    Forwards committed shelf events to the achievement/goal tracker.
    Delivery failures are logged; they never undo the shelf change.
    """

    async def publish(self, events: Iterable[ShelfEvent]) -> None:
        for event in events:
            try:
                delivered = await send_event(event.to_payload())
            except Exception as e:
                ACHIEVEMENT_EVENTS.labels(outcome="failed").inc()
                logger.error(
                    "achievement_event_failed",
                    error=str(e),
                    user_id=event.user_id,
                    book_id=event.book_id,
                    event=event.event,
                )
                continue
            ACHIEVEMENT_EVENTS.labels(outcome="sent" if delivered else "skipped").inc()


_publisher = AchievementEventPublisher()


def get_event_publisher() -> AchievementEventPublisher:
    return _publisher
