"""
ShelfSyncClient: the UI-facing facade over the shelf API.

Every mutation goes through OptimisticMutation so the local view updates
at once and is either confirmed by the server's record or rolled back.
Keys are book ids, except reorders, which share the "queue" key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from app.models.enums import MediaType, ReadingStatus, Shelf
from app.schemas.shelf import ShelfRecordResponse
from app.sync.api import ShelfApiClient
from app.sync.optimistic import MutationOutcome, NoticeHandler, OptimisticMutation
from app.sync.state import LocalRecord, LocalShelfState, LocalSnapshot, PendingMutations

logger = structlog.get_logger()

QUEUE_KEY = "queue"


class ShelfSyncClient:
    def __init__(
        self,
        api: ShelfApiClient,
        on_notice: Optional[NoticeHandler] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.api = api
        self.state = LocalShelfState()
        self.pending = PendingMutations()
        self.mutation = OptimisticMutation(self.state, self.pending, on_notice, resync=self.refresh)
        self.clock = clock

    # ── Fetching ──

    async def refresh(self) -> None:
        """Load every shelf and the favorites set from the server."""
        entries = await self.api.list_shelf()
        favorites = await self.api.favorites()
        self.state.replace([LocalRecord.from_response(e) for e in entries], favorites)
        logger.debug("shelf_state_refreshed", records=len(entries), favorites=len(favorites))

    async def refresh_queue(self) -> None:
        entries = await self.api.get_queue()
        self.state.replace_queue([LocalRecord.from_response(e) for e in entries])

    def _reconcile_record(self, record: ShelfRecordResponse) -> None:
        self.state.upsert(LocalRecord.from_response(record))
        self.state.set_favorite(record.book_id, record.is_favorite)

    def _confirm_order(self, book_ids: list[int]) -> None:
        self.state.apply_reorder(book_ids)
        for record in self.state.shelf(Shelf.QUEUE):
            record.tentative = False

    # ── Mutations ──

    async def set_shelf(
        self,
        book_id: int,
        shelf: Shelf,
        status: Optional[ReadingStatus] = None,
    ) -> MutationOutcome:
        return await self.mutation.run(
            book_id,
            apply=lambda: self.state.apply_transition(book_id, shelf, status, self.clock()),
            call=lambda: self.api.set_shelf(book_id, shelf, status),
            reconcile=self._reconcile_record,
            records=[book_id],
            queue=True,
        )

    async def set_status(self, book_id: int, status: ReadingStatus) -> MutationOutcome:
        """Change status on a book being read; finished/unfinished moves it to history."""
        return await self.set_shelf(book_id, Shelf.CURRENTLY_READING, status)

    async def remove(self, book_id: int, shelf: Optional[Shelf] = None) -> MutationOutcome:
        return await self.mutation.run(
            book_id,
            apply=lambda: self.state.apply_remove(book_id),
            call=lambda: self.api.remove(book_id, shelf),
            records=[book_id],
            queue=True,
        )

    async def reorder(self, book_ids: list[int]) -> MutationOutcome:
        """
        Drag-and-drop reorder. Never retried: a rejection means membership
        moved under us, so the rollback re-fetches the queue instead of
        restoring an order the server no longer agrees with.
        """
        order = list(book_ids)

        async def rollback(snapshot: LocalSnapshot) -> None:
            self.state.restore(snapshot)
            await self.refresh_queue()

        return await self.mutation.run(
            QUEUE_KEY,
            apply=lambda: self.state.apply_reorder(order),
            call=lambda: self.api.reorder(order),
            reconcile=self._confirm_order,
            rollback=rollback,
            queue=True,
        )

    async def toggle_favorite(self, book_id: int) -> MutationOutcome:
        return await self.mutation.run(
            book_id,
            apply=lambda: self.state.apply_favorite_toggle(book_id),
            call=lambda: self.api.toggle_favorite(book_id),
            reconcile=lambda is_favorite: self.state.set_favorite(book_id, is_favorite),
            favorites=[book_id],
        )

    async def set_comment(self, book_id: int, comment: Optional[str]) -> MutationOutcome:
        return await self.mutation.run(
            book_id,
            apply=lambda: self.state.apply_comment(book_id, comment),
            call=lambda: self.api.set_comment(book_id, comment),
            reconcile=self._reconcile_record,
            records=[book_id],
        )

    async def set_media_type(self, book_id: int, media_type: MediaType) -> MutationOutcome:
        return await self.mutation.run(
            book_id,
            apply=lambda: self.state.apply_media_type(book_id, media_type),
            call=lambda: self.api.set_media_type(book_id, media_type),
            reconcile=self._reconcile_record,
            records=[book_id],
        )
