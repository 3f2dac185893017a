"""Unit tests for target resolution and the shelf transition engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.errors import Conflict, InvalidTransition, NotFound
from app.models.enums import MediaType, ReadingStatus, Shelf
from app.services.shelf_engine import ShelfTransitionEngine
from app.services.transitions import resolve_target


class TickingClock:
    """Returns a new instant each call, one minute apart."""

    def __init__(self):
        self.now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


class TestResolveTarget:
    @pytest.mark.parametrize(
        "target, status, current, expected",
        [
            (Shelf.QUEUE, None, None, (Shelf.QUEUE, None)),
            (Shelf.CURRENTLY_READING, None, None, (Shelf.CURRENTLY_READING, ReadingStatus.IN_PROGRESS)),
            (
                Shelf.CURRENTLY_READING,
                ReadingStatus.FINISHED,
                None,
                (Shelf.HISTORY, ReadingStatus.FINISHED),
            ),
            (
                Shelf.CURRENTLY_READING,
                ReadingStatus.UNFINISHED,
                (Shelf.CURRENTLY_READING, ReadingStatus.ALMOST_DONE),
                (Shelf.HISTORY, ReadingStatus.UNFINISHED),
            ),
            (
                Shelf.CURRENTLY_READING,
                None,
                (Shelf.CURRENTLY_READING, ReadingStatus.ALMOST_DONE),
                (Shelf.CURRENTLY_READING, ReadingStatus.ALMOST_DONE),
            ),
            (
                Shelf.CURRENTLY_READING,
                None,
                (Shelf.HISTORY, ReadingStatus.FINISHED),
                (Shelf.CURRENTLY_READING, ReadingStatus.IN_PROGRESS),
            ),
            (Shelf.HISTORY, None, None, (Shelf.HISTORY, ReadingStatus.FINISHED)),
            (
                Shelf.HISTORY,
                None,
                (Shelf.HISTORY, ReadingStatus.UNFINISHED),
                (Shelf.HISTORY, ReadingStatus.UNFINISHED),
            ),
        ],
    )
    def test_resolution(self, target, status, current, expected):
        if current is not None:
            current = SimpleNamespace(shelf=current[0], status=current[1])
        assert resolve_target(target, status, current) == expected

    @pytest.mark.parametrize(
        "target, status",
        [
            (Shelf.QUEUE, ReadingStatus.IN_PROGRESS),
            (Shelf.QUEUE, ReadingStatus.FINISHED),
            (Shelf.HISTORY, ReadingStatus.IN_PROGRESS),
            (Shelf.HISTORY, ReadingStatus.ALMOST_DONE),
        ],
    )
    def test_rejected(self, target, status):
        with pytest.raises(InvalidTransition):
            resolve_target(target, status)


class TestShelfTransitionEngine:
    @pytest.mark.asyncio
    async def test_new_record_defaults(self, seeded, session_factory):
        clock = TickingClock()
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session, clock=clock)
            result = await engine.transition(seeded.alice, seeded.books[0], Shelf.CURRENTLY_READING)

            assert result.changed
            record = result.record
            assert record.status == ReadingStatus.IN_PROGRESS
            assert record.media_type == MediaType.PHYSICAL_BOOK
            assert record.added_at == clock.now
            assert record.queue_position is None
            assert result.events == []

    @pytest.mark.asyncio
    async def test_reentering_currently_reading_restamps_added_at(self, seeded, session_factory):
        clock = TickingClock()
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session, clock=clock)
            book_id = seeded.books[0]

            first = (await engine.transition(seeded.alice, book_id, Shelf.QUEUE)).record
            queued_at = first.added_at

            # lateral move to history keeps added_at
            await engine.transition(seeded.alice, book_id, Shelf.HISTORY, ReadingStatus.UNFINISHED)
            record = await engine.require_record(seeded.alice, book_id)
            assert record.added_at == queued_at

            await engine.transition(seeded.alice, book_id, Shelf.CURRENTLY_READING)
            assert record.added_at == clock.now
            assert record.added_at > queued_at

    @pytest.mark.asyncio
    async def test_status_change_inside_currently_reading_keeps_added_at(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session, clock=TickingClock())
            book_id = seeded.books[0]
            record = (await engine.transition(seeded.alice, book_id, Shelf.CURRENTLY_READING)).record
            started = record.added_at

            await engine.transition(
                seeded.alice, book_id, Shelf.CURRENTLY_READING, ReadingStatus.ALMOST_DONE
            )
            assert record.added_at == started

    @pytest.mark.asyncio
    async def test_finishing_emits_once(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session)
            book_id = seeded.books[0]
            await engine.transition(seeded.alice, book_id, Shelf.CURRENTLY_READING)

            finished = await engine.transition(
                seeded.alice, book_id, Shelf.CURRENTLY_READING, ReadingStatus.FINISHED
            )
            again = await engine.transition(seeded.alice, book_id, Shelf.HISTORY, ReadingStatus.FINISHED)

            assert finished.record.shelf == Shelf.HISTORY
            assert [e.event for e in finished.events] == ["book_finished"]
            assert not again.changed
            assert again.events == []

    @pytest.mark.asyncio
    async def test_unfinished_emits_nothing(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session)
            result = await engine.transition(
                seeded.alice, seeded.books[0], Shelf.HISTORY, ReadingStatus.UNFINISHED
            )
            assert result.changed
            assert result.events == []

    @pytest.mark.asyncio
    async def test_unknown_user_and_book(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session)
            with pytest.raises(NotFound):
                await engine.transition(9999, seeded.books[0], Shelf.QUEUE)
            with pytest.raises(NotFound):
                await engine.transition(seeded.alice, 9999, Shelf.QUEUE)
            with pytest.raises(NotFound):
                await engine.transition(seeded.inactive, seeded.books[0], Shelf.QUEUE)

    @pytest.mark.asyncio
    async def test_list_shelf_newest_first(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session, clock=TickingClock())
            b1, b2, b3 = seeded.books[:3]
            for book_id in (b1, b2, b3):
                await engine.transition(seeded.alice, book_id, Shelf.HISTORY)

            rows = await engine.list_shelf(seeded.alice, Shelf.HISTORY)
            assert [record.book_id for record, _ in rows] == [b3, b2, b1]
            assert rows[0][1].title == "Book 3"

    @pytest.mark.asyncio
    async def test_set_comment_rules(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session)
            book_id = seeded.books[0]
            await engine.transition(seeded.alice, book_id, Shelf.CURRENTLY_READING)

            record = await engine.set_comment(seeded.alice, book_id, " loving it ")
            assert record.comment == "loving it"

            with pytest.raises(InvalidTransition):
                await engine.set_comment(seeded.alice, book_id, "y" * 40)

            record = await engine.set_comment(seeded.alice, book_id, "   " + "z" * 32 + "   ")
            assert record.comment == "z" * 32

            await engine.transition(seeded.alice, book_id, Shelf.HISTORY)
            assert record.comment is None
            with pytest.raises(InvalidTransition):
                await engine.set_comment(seeded.alice, book_id, "done")

    @pytest.mark.asyncio
    async def test_remove_keeps_nothing_behind(self, seeded, session_factory):
        async with session_factory() as session:
            engine = ShelfTransitionEngine(session)
            book_id = seeded.books[0]
            await engine.transition(seeded.alice, book_id, Shelf.CURRENTLY_READING)

            with pytest.raises(NotFound):
                await engine.remove(seeded.alice, book_id, Shelf.QUEUE)

            await engine.remove(seeded.alice, book_id)
            assert await engine.get_record(seeded.alice, book_id) is None

    @pytest.mark.asyncio
    async def test_concurrent_write_is_a_conflict(self, seeded, session_factory):
        book_id = seeded.books[0]
        async with session_factory() as session:
            await ShelfTransitionEngine(session).transition(seeded.alice, book_id, Shelf.CURRENTLY_READING)
            await session.commit()

        async with session_factory() as tab_a, session_factory() as tab_b:
            engine_a = ShelfTransitionEngine(tab_a)
            engine_b = ShelfTransitionEngine(tab_b)
            # both tabs load the same version
            await engine_b.require_record(seeded.alice, book_id)

            await engine_a.set_media_type(seeded.alice, book_id, MediaType.AUDIO_BOOK)
            await tab_a.commit()

            with pytest.raises(Conflict):
                await engine_b.set_media_type(seeded.alice, book_id, MediaType.E_READER)

        async with session_factory() as session:
            record = await ShelfTransitionEngine(session).require_record(seeded.alice, book_id)
            assert record.media_type == MediaType.AUDIO_BOOK
