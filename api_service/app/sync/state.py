"""
Client-side shelf state: the local mirror a UI renders from, plus per-key
in-flight tracking.

Tentative edits follow the same rules as the server engine (target
resolution is shared) so the optimistic view rarely differs from what the
server returns; reconciliation overwrites it with the canonical record.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Hashable, Iterable, Optional

from app.models.enums import MediaType, ReadingStatus, Shelf
from app.services.transitions import resolve_target


@dataclass
class LocalRecord:
    book_id: int
    shelf: Shelf
    status: Optional[ReadingStatus] = None
    media_type: MediaType = MediaType.PHYSICAL_BOOK
    comment: Optional[str] = None
    queue_position: Optional[int] = None
    added_at: Optional[datetime] = None
    tentative: bool = False

    @classmethod
    def from_response(cls, record) -> "LocalRecord":
        return cls(
            book_id=record.book_id,
            shelf=record.shelf,
            status=record.status,
            media_type=record.media_type,
            comment=record.comment,
            queue_position=record.queue_position,
            added_at=record.added_at,
        )


@dataclass
class LocalSnapshot:
    """
    The slice of local state one mutation may touch: its books' records
    (None when absent) and favorite flags, plus queue slots when the
    mutation can move other queued books.
    """

    records: dict[int, Optional[LocalRecord]] = field(default_factory=dict)
    favorites: dict[int, bool] = field(default_factory=dict)
    queue: Optional[dict[int, tuple[Optional[int], bool]]] = None


class LocalShelfState:
    def __init__(self):
        self.records: dict[int, LocalRecord] = {}
        self.favorites: set[int] = set()
        # set when a mutation ended without a trustworthy result (e.g. cancelled)
        self.stale = False
        # bumped each time a mutation settles, so a failing one can tell
        # whether others landed while it was in flight
        self.settled = 0

    # ── Snapshots ──

    def snapshot(
        self,
        records: Iterable[int] = (),
        favorites: Iterable[int] = (),
        queue: bool = False,
    ) -> LocalSnapshot:
        snapshot = LocalSnapshot(
            records={b: copy.deepcopy(self.records.get(b)) for b in records},
            favorites={b: b in self.favorites for b in favorites},
        )
        if queue:
            snapshot.queue = {
                r.book_id: (r.queue_position, r.tentative) for r in self.shelf(Shelf.QUEUE)
            }
        return snapshot

    def restore(self, snapshot: LocalSnapshot) -> None:
        """Put back only what the snapshot covers; other books keep their current state."""
        for book_id, record in snapshot.records.items():
            if record is None:
                self.records.pop(book_id, None)
            else:
                self.records[book_id] = copy.deepcopy(record)
        for book_id, is_favorite in snapshot.favorites.items():
            self.set_favorite(book_id, is_favorite)
        if snapshot.queue is not None:
            for book_id, (position, tentative) in snapshot.queue.items():
                record = self.records.get(book_id)
                if book_id in snapshot.records or record is None or record.shelf != Shelf.QUEUE:
                    continue
                record.queue_position = position
                record.tentative = tentative
            self._repack_queue()

    # ── Reads ──

    def get(self, book_id: int) -> Optional[LocalRecord]:
        return self.records.get(book_id)

    def shelf(self, shelf: Shelf) -> list[LocalRecord]:
        records = [r for r in self.records.values() if r.shelf == shelf]
        if shelf == Shelf.QUEUE:
            return sorted(records, key=lambda r: (r.queue_position or 0, r.book_id))
        return sorted(records, key=lambda r: r.added_at or datetime.min, reverse=True)

    def queue_order(self) -> list[int]:
        return [r.book_id for r in self.shelf(Shelf.QUEUE)]

    def is_favorite(self, book_id: int) -> bool:
        return book_id in self.favorites

    # ── Canonical updates ──

    def replace(self, records: Iterable[LocalRecord], favorites: Optional[Iterable[int]] = None) -> None:
        self.records = {r.book_id: r for r in records}
        if favorites is not None:
            self.favorites = set(favorites)
        self.stale = False

    def replace_queue(self, records: Iterable[LocalRecord]) -> None:
        """Swap in the server's queue; books we thought were queued but aren't get dropped."""
        fresh = {r.book_id: r for r in records}
        dropped = [
            book_id
            for book_id, r in self.records.items()
            if r.shelf == Shelf.QUEUE and book_id not in fresh
        ]
        for book_id in dropped:
            del self.records[book_id]
        self.records.update(fresh)
        if dropped:
            # they may live on another shelf now; only a full refresh knows
            self.stale = True

    def upsert(self, record: LocalRecord) -> None:
        self.records[record.book_id] = record

    def set_favorite(self, book_id: int, is_favorite: bool) -> None:
        if is_favorite:
            self.favorites.add(book_id)
        else:
            self.favorites.discard(book_id)

    # ── Tentative edits ──

    def _repack_queue(self) -> None:
        for index, record in enumerate(self.shelf(Shelf.QUEUE), start=1):
            record.queue_position = index

    def apply_transition(
        self,
        book_id: int,
        target_shelf: Shelf,
        target_status: Optional[ReadingStatus],
        now: datetime,
    ) -> None:
        current = self.records.get(book_id)
        shelf, status = resolve_target(target_shelf, target_status, current)
        if current is not None and current.shelf == shelf and current.status == status:
            return

        tail = len(self.queue_order()) + 1
        if current is None:
            self.records[book_id] = LocalRecord(
                book_id=book_id,
                shelf=shelf,
                status=status,
                queue_position=tail if shelf == Shelf.QUEUE else None,
                added_at=now,
                tentative=True,
            )
            return

        leaving_queue = current.shelf == Shelf.QUEUE and shelf != Shelf.QUEUE
        if current.shelf == Shelf.CURRENTLY_READING and shelf != Shelf.CURRENTLY_READING:
            current.comment = None
        if shelf == Shelf.CURRENTLY_READING and current.shelf != Shelf.CURRENTLY_READING:
            current.added_at = now
        if shelf != Shelf.QUEUE:
            current.queue_position = None
        elif current.shelf != Shelf.QUEUE:
            current.queue_position = tail
        current.shelf = shelf
        current.status = status
        current.tentative = True
        if leaving_queue:
            self._repack_queue()

    def apply_remove(self, book_id: int) -> None:
        record = self.records.pop(book_id, None)
        if record is not None and record.shelf == Shelf.QUEUE:
            self._repack_queue()

    def apply_reorder(self, book_ids: list[int]) -> None:
        for index, book_id in enumerate(book_ids, start=1):
            record = self.records.get(book_id)
            if record is not None and record.shelf == Shelf.QUEUE:
                record.queue_position = index
                record.tentative = True

    def apply_comment(self, book_id: int, comment: Optional[str]) -> None:
        record = self.records.get(book_id)
        if record is not None:
            record.comment = (comment or "").strip() or None
            record.tentative = True

    def apply_media_type(self, book_id: int, media_type: MediaType) -> None:
        record = self.records.get(book_id)
        if record is not None:
            record.media_type = media_type
            record.tentative = True

    def apply_favorite_toggle(self, book_id: int) -> bool:
        is_favorite = book_id not in self.favorites
        self.set_favorite(book_id, is_favorite)
        return is_favorite


@dataclass
class MutationState:
    is_loading: bool = False
    message: Optional[str] = None


@dataclass
class PendingMutations:
    """In-flight flags per key (a book id, or "queue" for reorders) for loading indicators."""

    states: dict[Hashable, MutationState] = field(default_factory=dict)

    def begin(self, key: Hashable) -> None:
        self.states[key] = MutationState(is_loading=True)

    def finish(self, key: Hashable, message: Optional[str] = None) -> None:
        if message is None:
            self.states.pop(key, None)
        else:
            self.states[key] = MutationState(is_loading=False, message=message)

    def dismiss(self, key: Hashable) -> Optional[str]:
        """Take the notice left for `key` once the UI has shown it."""
        state = self.states.get(key)
        if state is None or state.is_loading:
            return None
        del self.states[key]
        return state.message

    def is_pending(self, key: Hashable) -> bool:
        state = self.states.get(key)
        return state is not None and state.is_loading

    def get(self, key: Hashable) -> MutationState:
        return self.states.get(key, MutationState())

    @property
    def in_flight(self) -> set[Hashable]:
        return {key for key, state in self.states.items() if state.is_loading}
