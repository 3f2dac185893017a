"""
Queue ordering: keeps a user's `queue` shelf positions contiguous from 1.

Order is a plain integer column, so reads are ORDER BY queue_position and a
reorder is one rewrite of every queued row inside the request transaction.
Queues are small (tens of books) and reorders are user-initiated.

Every write path first claims the user's ReadingQueue row. On Postgres the
claim is a row lock, so a second tab waits and then reads the fresh queue.
Everywhere else the revision bump makes the later of two overlapping
writers fail its flush with Conflict.
"""

from __future__ import annotations

from typing import Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import flush_or_conflict
from app.errors import InvalidReorder, NotFound
from app.metrics import QUEUE_REORDERS
from app.models.enums import Shelf
from app.models.queue import ReadingQueue
from app.models.shelf import ShelfRecord

logger = structlog.get_logger()


class QueueOrderingService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self._claimed: dict[int, ReadingQueue] = {}

    async def claim(self, user_id: int) -> ReadingQueue:
        """Lock the user's queue for this transaction and bump its revision."""
        head = self._claimed.get(user_id)
        if head is None or head not in self.db:
            result = await self.db.execute(
                select(ReadingQueue)
                .where(ReadingQueue.user_id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            head = result.scalar_one_or_none()
            if head is None:
                # two first-ever writers collide on the primary key instead
                head = ReadingQueue(user_id=user_id, revision=0)
                self.db.add(head)
            self._claimed[user_id] = head
        head.revision += 1
        return head

    async def list(self, user_id: int) -> list[ShelfRecord]:
        """Queued records in position order, reflecting unflushed in-session moves."""
        with self.db.no_autoflush:
            result = await self.db.execute(
                select(ShelfRecord)
                .where(ShelfRecord.user_id == user_id, ShelfRecord.shelf == Shelf.QUEUE)
                .order_by(ShelfRecord.queue_position, ShelfRecord.id)
            )
            records = result.scalars().all()
        return [r for r in records if r.shelf == Shelf.QUEUE]

    async def append(self, user_id: int, record: ShelfRecord) -> int:
        """Put `record` at the tail of the queue and return its position."""
        await self.claim(user_id)
        records = await self.list(user_id)
        position = max(
            (r.queue_position or 0 for r in records if r.book_id != record.book_id),
            default=0,
        ) + 1
        record.queue_position = position
        return position

    async def detach(self, user_id: int, record: ShelfRecord) -> None:
        """Take `record` out of the order and close the gap it leaves."""
        await self.claim(user_id)
        record.queue_position = None
        await self.repack(user_id, exclude_book_id=record.book_id)

    async def repack(self, user_id: int, exclude_book_id: Optional[int] = None) -> None:
        records = [r for r in await self.list(user_id) if r.book_id != exclude_book_id]
        for index, record in enumerate(records, start=1):
            if record.queue_position != index:
                record.queue_position = index

    async def remove(self, user_id: int, book_id: int) -> None:
        await self.claim(user_id)
        records = await self.list(user_id)
        record = next((r for r in records if r.book_id == book_id), None)
        if record is None:
            raise NotFound("Book is not in your queue")
        await self.db.delete(record)
        await self.repack(user_id, exclude_book_id=book_id)
        await flush_or_conflict(self.db)
        logger.info("queue_book_removed", user_id=user_id, book_id=book_id)

    async def reorder(self, user_id: int, ordered_book_ids: Sequence[int]) -> list[int]:
        """
        Rewrite positions to follow `ordered_book_ids`.

        The list must be exactly the current queue membership. A client that
        raced an add/remove from another tab gets InvalidReorder and the
        queue is left as it was.
        """
        await self.claim(user_id)
        records = await self.list(user_id)
        current = [r.book_id for r in records]
        requested = list(ordered_book_ids)

        if len(requested) != len(set(requested)) or set(requested) != set(current):
            QUEUE_REORDERS.labels(outcome="rejected").inc()
            logger.info(
                "queue_reorder_rejected",
                user_id=user_id,
                requested=requested,
                current=current,
            )
            raise InvalidReorder(
                "Queue changed since it was loaded, refresh and try again"
            )

        by_book = {r.book_id: r for r in records}
        for index, book_id in enumerate(requested, start=1):
            by_book[book_id].queue_position = index

        await flush_or_conflict(self.db)
        QUEUE_REORDERS.labels(outcome="applied").inc()
        logger.info("queue_reordered", user_id=user_id, book_ids=requested)
        return requested
