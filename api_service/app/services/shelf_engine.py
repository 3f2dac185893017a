"""
Shelf transition engine: the state machine for a user's (book, shelf) record.

Rules enforced here:
- one ShelfRecord per (user, book); changing shelves rewrites it in place
- `finished` / `unfinished` only ever live on `history`
- leaving `currently_reading` drops the personal note
- entering `currently_reading` from another shelf starts a fresh attempt
  (re-stamps `added_at`)
- repeating a transition the record already reflects changes nothing and
  emits nothing

Queue membership changes are delegated to QueueOrderingService so positions
stay contiguous. The engine flushes but never commits; the request
transaction (`get_db`) owns the commit, and events are published only after it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import flush_or_conflict
from app.errors import InvalidTransition, NotFound
from app.metrics import SHELF_TRANSITIONS
from app.models.book import Book
from app.models.enums import MediaType, ReadingStatus, Shelf
from app.models.shelf import ShelfRecord, utcnow
from app.models.user import User
from app.schemas.shelf import normalize_comment
from app.services.events import BOOK_FINISHED, ShelfEvent
from app.services.queue_service import QueueOrderingService
from app.services.transitions import resolve_target

logger = structlog.get_logger()


@dataclass
class TransitionResult:
    record: ShelfRecord
    changed: bool
    events: list[ShelfEvent] = field(default_factory=list)


class ShelfTransitionEngine:
    def __init__(
        self,
        db: AsyncSession,
        queue: Optional[QueueOrderingService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.queue = queue or QueueOrderingService(db)
        self.clock = clock

    # ── Lookups ──

    async def _require_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFound("User not found")
        return user

    async def require_book(self, book_id: int) -> Book:
        book = await self.db.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found")
        return book

    async def get_record(self, user_id: int, book_id: int) -> Optional[ShelfRecord]:
        result = await self.db.execute(
            select(ShelfRecord).where(
                ShelfRecord.user_id == user_id,
                ShelfRecord.book_id == book_id,
            )
        )
        return result.scalar_one_or_none()

    async def require_record(self, user_id: int, book_id: int) -> ShelfRecord:
        record = await self.get_record(user_id, book_id)
        if record is None:
            raise NotFound("Book is not on any of your shelves")
        return record

    async def list_shelf(
        self, user_id: int, shelf: Optional[Shelf] = None
    ) -> list[tuple[ShelfRecord, Book]]:
        """Records with their books; the queue in position order, other shelves newest first."""
        query = (
            select(ShelfRecord, Book)
            .join(Book, Book.id == ShelfRecord.book_id)
            .where(ShelfRecord.user_id == user_id)
        )
        if shelf is not None:
            query = query.where(ShelfRecord.shelf == shelf)
        if shelf == Shelf.QUEUE:
            query = query.order_by(ShelfRecord.queue_position, ShelfRecord.id)
        else:
            query = query.order_by(
                ShelfRecord.shelf,
                ShelfRecord.queue_position,
                ShelfRecord.added_at.desc(),
                ShelfRecord.id,
            )
        result = await self.db.execute(query)
        return [(record, book) for record, book in result.all()]

    # ── Mutations ──

    async def transition(
        self,
        user_id: int,
        book_id: int,
        target_shelf: Shelf,
        target_status: Optional[ReadingStatus] = None,
    ) -> TransitionResult:
        await self._require_user(user_id)
        await self.require_book(book_id)

        record = await self.get_record(user_id, book_id)
        shelf, status = resolve_target(target_shelf, target_status, record)

        if record is not None and record.shelf == shelf and record.status == status:
            logger.debug(
                "shelf_transition_noop",
                user_id=user_id,
                book_id=book_id,
                shelf=shelf.value,
            )
            return TransitionResult(record=record, changed=False)

        now = self.clock()
        from_shelf = record.shelf if record is not None else None

        if record is None:
            record = ShelfRecord(
                user_id=user_id,
                book_id=book_id,
                shelf=shelf,
                status=status,
                media_type=MediaType.PHYSICAL_BOOK,
                added_at=now,
            )
            if shelf == Shelf.QUEUE:
                await self.queue.append(user_id, record)
            self.db.add(record)
        else:
            if from_shelf == Shelf.QUEUE and shelf != Shelf.QUEUE:
                await self.queue.detach(user_id, record)
            if shelf == Shelf.QUEUE and from_shelf != Shelf.QUEUE:
                await self.queue.append(user_id, record)
            if from_shelf == Shelf.CURRENTLY_READING and shelf != Shelf.CURRENTLY_READING:
                record.comment = None
            if shelf == Shelf.CURRENTLY_READING and from_shelf != Shelf.CURRENTLY_READING:
                record.added_at = now
            record.shelf = shelf
            record.status = status

        await flush_or_conflict(self.db)

        events = []
        # (history, finished) was not the prior state, or this would be a no-op
        if status == ReadingStatus.FINISHED:
            events.append(
                ShelfEvent(user_id=user_id, book_id=book_id, event=BOOK_FINISHED, timestamp=now)
            )

        SHELF_TRANSITIONS.labels(
            from_shelf=from_shelf.value if from_shelf else "none",
            to_shelf=shelf.value,
        ).inc()
        logger.info(
            "shelf_transition",
            user_id=user_id,
            book_id=book_id,
            from_shelf=from_shelf.value if from_shelf else None,
            to_shelf=shelf.value,
            status=status.value if status else None,
            queue_position=record.queue_position,
        )
        return TransitionResult(record=record, changed=True, events=events)

    async def remove(self, user_id: int, book_id: int, shelf: Optional[Shelf] = None) -> None:
        """Delete the record entirely. Favorites are kept."""
        record = await self.require_record(user_id, book_id)
        if shelf is not None and record.shelf != shelf:
            raise NotFound(f"Book is not on your {shelf.value} shelf")

        removed_from = record.shelf
        if removed_from == Shelf.QUEUE:
            await self.queue.remove(user_id, book_id)
        else:
            await self.db.delete(record)
            await flush_or_conflict(self.db)

        SHELF_TRANSITIONS.labels(from_shelf=removed_from.value, to_shelf="none").inc()
        logger.info("shelf_record_removed", user_id=user_id, book_id=book_id, shelf=removed_from.value)

    async def set_comment(self, user_id: int, book_id: int, comment: Optional[str]) -> ShelfRecord:
        record = await self.require_record(user_id, book_id)
        if record.shelf != Shelf.CURRENTLY_READING:
            raise InvalidTransition("Notes can only be added to books you are currently reading")

        try:
            comment = normalize_comment(comment)
        except ValueError as e:
            raise InvalidTransition(str(e)) from None

        if record.comment != comment:
            record.comment = comment
            await flush_or_conflict(self.db)
            logger.info("shelf_comment_updated", user_id=user_id, book_id=book_id)
        return record

    async def set_media_type(self, user_id: int, book_id: int, media_type: MediaType) -> ShelfRecord:
        record = await self.require_record(user_id, book_id)
        if record.media_type != media_type:
            record.media_type = media_type
            await flush_or_conflict(self.db)
            logger.info(
                "shelf_media_type_updated",
                user_id=user_id,
                book_id=book_id,
                media_type=media_type.value,
            )
        return record
