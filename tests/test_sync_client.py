"""
Optimistic sync client: tentative edits, reconciliation, rollback and
retry policy. End-to-end cases run against the ASGI app; failure modes
use a scripted httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from app.errors import Conflict, InvalidReorder, InvalidTransition, NotFound
from app.models.enums import MediaType, ReadingStatus, Shelf
from app.sync.api import ShelfApiClient
from app.sync.client import QUEUE_KEY, ShelfSyncClient
from app.sync.optimistic import OFFLINE_NOTICE, notice_for
from app.sync.state import LocalRecord

STAMP = "2024-05-01T09:00:00+00:00"


def record_json(book_id, shelf, status=None, queue_position=None, **extra):
    data = {
        "user_id": 1,
        "book_id": book_id,
        "shelf": shelf,
        "status": status,
        "media_type": "physical_book",
        "comment": None,
        "queue_position": queue_position,
        "is_favorite": False,
        "added_at": STAMP,
        "updated_at": STAMP,
    }
    data.update(extra)
    return data


def entry_json(book_id, shelf, **kwargs):
    data = record_json(book_id, shelf, **kwargs)
    data["book"] = {"id": book_id, "title": f"Book {book_id}", "author": "A", "cover_url": None}
    return data


def error_response(error_cls):
    error = error_cls()
    return httpx.Response(error.status_code, json=error.to_payload())


class ScriptedServer:
    """Replays queued responses per (method, path) and records every request."""

    def __init__(self):
        self.script = {}
        self.calls = []

    def on(self, method, path, *responses):
        self.script.setdefault((method, path), []).extend(responses)

    def count(self, method, path):
        return sum(1 for m, p in self.calls if (m, p) == (method, path))

    async def __call__(self, request: httpx.Request):
        key = (request.method, request.url.path)
        self.calls.append(key)
        queued = self.script.get(key)
        if not queued:
            return httpx.Response(500, json={"detail": "unscripted"})
        response = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return await response(request)
        return response


@pytest_asyncio.fixture
async def scripted():
    server = ScriptedServer()
    notices = []
    api = ShelfApiClient("http://test", "token", transport=httpx.MockTransport(server))
    sync = ShelfSyncClient(api, on_notice=notices.append)
    sync.notices = notices
    yield server, sync
    await api.aclose()


def seed_local(sync, *records):
    sync.state.replace(records)


class TestEndToEnd:
    @pytest_asyncio.fixture
    async def sync(self, transport, seeded, headers_for):
        token = headers_for(seeded.alice)["Authorization"].split(" ", 1)[1]
        notices = []
        async with ShelfApiClient("http://test", token, transport=transport) as api:
            client = ShelfSyncClient(api, on_notice=notices.append)
            client.notices = notices
            yield client

    @pytest.mark.asyncio
    async def test_queue_and_reorder(self, sync, seeded):
        b1, b2, b3 = seeded.books[:3]
        for book_id in (b1, b2, b3):
            outcome = await sync.set_shelf(book_id, Shelf.QUEUE)
            assert outcome.ok
        assert sync.state.queue_order() == [b1, b2, b3]

        outcome = await sync.reorder([b3, b1, b2])
        assert outcome.ok
        assert sync.state.queue_order() == [b3, b1, b2]
        assert not any(r.tentative for r in sync.state.records.values())

        await sync.refresh()
        assert sync.state.queue_order() == [b3, b1, b2]

    @pytest.mark.asyncio
    async def test_finish_moves_to_history(self, sync, seeded):
        book_id = seeded.books[0]
        await sync.set_shelf(book_id, Shelf.CURRENTLY_READING)
        await sync.set_comment(book_id, "great so far")
        assert sync.state.get(book_id).comment == "great so far"

        outcome = await sync.set_status(book_id, ReadingStatus.FINISHED)
        assert outcome.ok
        record = sync.state.get(book_id)
        assert (record.shelf, record.status, record.comment) == (
            Shelf.HISTORY,
            ReadingStatus.FINISHED,
            None,
        )

    @pytest.mark.asyncio
    async def test_stale_reorder_refetches_queue(self, sync, seeded, transport, headers_for):
        b1, b2, b3, b4 = seeded.books[:4]
        for book_id in (b1, b2, b3):
            await sync.set_shelf(book_id, Shelf.QUEUE)

        # a second tab adds a book behind this client's back
        async with httpx.AsyncClient(
            transport=transport, base_url="http://test", headers=headers_for(seeded.alice)
        ) as other_tab:
            await other_tab.post("/shelf", json={"book_id": b4, "shelf": "queue"})

        outcome = await sync.reorder([b3, b2, b1])
        assert not outcome.ok
        assert isinstance(outcome.error, InvalidReorder)
        assert sync.state.queue_order() == [b1, b2, b3, b4]
        assert sync.notices == [notice_for(InvalidReorder())]

    @pytest.mark.asyncio
    async def test_server_rejection_rolls_back(self, sync, seeded):
        book_id = seeded.books[0]
        await sync.set_shelf(book_id, Shelf.QUEUE)

        outcome = await sync.set_comment(book_id, "not yet")
        assert not outcome.ok
        assert isinstance(outcome.error, InvalidTransition)
        assert sync.state.get(book_id).comment is None
        assert not sync.pending.is_pending(book_id)

    @pytest.mark.asyncio
    async def test_favorite_and_media_type(self, sync, seeded):
        book_id = seeded.books[0]
        await sync.set_shelf(book_id, Shelf.HISTORY)

        assert (await sync.toggle_favorite(book_id)).ok
        assert sync.state.is_favorite(book_id)

        assert (await sync.set_media_type(book_id, MediaType.AUDIO_BOOK)).ok
        assert sync.state.get(book_id).media_type == MediaType.AUDIO_BOOK

        assert (await sync.remove(book_id)).ok
        assert sync.state.get(book_id) is None
        await sync.refresh()
        assert sync.state.is_favorite(book_id)


class TestOptimisticRollback:
    @pytest.mark.asyncio
    async def test_tentative_state_visible_while_in_flight(self, scripted):
        server, sync = scripted
        seen = {}

        async def respond(request):
            seen["shelf"] = sync.state.get(7).shelf
            seen["pending"] = sync.pending.is_pending(7)
            return httpx.Response(200, json=record_json(7, "queue", queue_position=1))

        server.on("POST", "/shelf", respond)
        outcome = await sync.set_shelf(7, Shelf.QUEUE)

        assert outcome.ok
        assert seen == {"shelf": Shelf.QUEUE, "pending": True}
        assert not sync.pending.is_pending(7)
        assert sync.state.get(7).tentative is False

    @pytest.mark.asyncio
    async def test_not_found_restores_snapshot(self, scripted):
        server, sync = scripted
        seed_local(sync, LocalRecord(book_id=7, shelf=Shelf.QUEUE, queue_position=1))
        server.on("POST", "/shelf", error_response(NotFound))

        outcome = await sync.set_shelf(7, Shelf.CURRENTLY_READING)

        assert not outcome.ok
        assert sync.state.get(7).shelf == Shelf.QUEUE
        assert sync.state.get(7).queue_position == 1
        assert server.count("POST", "/shelf") == 1
        assert sync.notices == [notice_for(NotFound())]
        assert sync.pending.get(7).message == sync.notices[0]

    @pytest.mark.asyncio
    async def test_set_shelf_retries_conflict(self, scripted):
        server, sync = scripted
        server.on(
            "POST",
            "/shelf",
            error_response(Conflict),
            httpx.Response(200, json=record_json(7, "history", "finished")),
        )

        outcome = await sync.set_shelf(7, Shelf.HISTORY, ReadingStatus.FINISHED)

        assert outcome.ok
        assert server.count("POST", "/shelf") == 2
        assert sync.notices == []

    @pytest.mark.asyncio
    async def test_reorder_is_never_retried(self, scripted):
        server, sync = scripted
        seed_local(
            sync,
            LocalRecord(book_id=1, shelf=Shelf.QUEUE, queue_position=1),
            LocalRecord(book_id=2, shelf=Shelf.QUEUE, queue_position=2),
        )
        server.on("POST", "/queue/reorder", error_response(Conflict))
        server.on(
            "GET",
            "/queue",
            httpx.Response(
                200,
                json=[
                    entry_json(1, "queue", queue_position=1),
                    entry_json(2, "queue", queue_position=2),
                ],
            ),
        )

        outcome = await sync.reorder([2, 1])

        assert not outcome.ok
        assert server.count("POST", "/queue/reorder") == 1
        assert server.count("GET", "/queue") == 1
        assert sync.state.queue_order() == [1, 2]
        assert not sync.pending.is_pending(QUEUE_KEY)

    @pytest.mark.asyncio
    async def test_failed_refetch_falls_back_to_snapshot(self, scripted):
        server, sync = scripted
        seed_local(
            sync,
            LocalRecord(book_id=1, shelf=Shelf.QUEUE, queue_position=1),
            LocalRecord(book_id=2, shelf=Shelf.QUEUE, queue_position=2),
        )
        server.on("POST", "/queue/reorder", error_response(InvalidReorder))
        server.on("GET", "/queue", httpx.ConnectError("offline"))

        outcome = await sync.reorder([2, 1])

        assert not outcome.ok
        assert sync.state.queue_order() == [1, 2]
        assert sync.state.stale

    @pytest.mark.asyncio
    async def test_offline_remove_rolls_back(self, scripted):
        server, sync = scripted
        seed_local(
            sync,
            LocalRecord(book_id=1, shelf=Shelf.QUEUE, queue_position=1),
            LocalRecord(book_id=2, shelf=Shelf.QUEUE, queue_position=2),
        )
        server.on("DELETE", "/shelf/1", httpx.ConnectError("offline"))

        outcome = await sync.remove(1)

        assert not outcome.ok
        assert server.count("DELETE", "/shelf/1") == 1
        assert sync.state.queue_order() == [1, 2]
        assert sync.notices == [OFFLINE_NOTICE]

    @pytest.mark.asyncio
    async def test_favorite_toggle_rolls_back(self, scripted):
        server, sync = scripted
        server.on("POST", "/books/7/favorite", httpx.Response(500, text="boom"))

        outcome = await sync.toggle_favorite(7)

        assert not outcome.ok
        assert isinstance(outcome.error, httpx.HTTPStatusError)
        assert not sync.state.is_favorite(7)
        assert server.count("POST", "/books/7/favorite") == 1

    @pytest.mark.asyncio
    async def test_locally_invalid_move_never_reaches_server(self, scripted):
        server, sync = scripted

        outcome = await sync.set_shelf(7, Shelf.QUEUE, ReadingStatus.IN_PROGRESS)

        assert not outcome.ok
        assert isinstance(outcome.error, InvalidTransition)
        assert server.calls == []
        assert sync.state.get(7) is None

    @pytest.mark.asyncio
    async def test_cancelled_mutation_restores_and_marks_stale(self, scripted):
        server, sync = scripted
        seed_local(sync, LocalRecord(book_id=7, shelf=Shelf.QUEUE, queue_position=1))
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.Event().wait()

        server.on("POST", "/shelf", hang)
        task = asyncio.create_task(sync.set_shelf(7, Shelf.HISTORY))
        await started.wait()
        assert sync.state.get(7).shelf == Shelf.HISTORY

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert sync.state.get(7).shelf == Shelf.QUEUE
        assert sync.state.stale
        assert not sync.pending.is_pending(7)

    @pytest.mark.asyncio
    async def test_request_body(self, scripted):
        server, sync = scripted
        bodies = []

        async def capture(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=record_json(7, "currently_reading", "almost_done"))

        server.on("POST", "/shelf", capture)
        await sync.set_status(7, ReadingStatus.ALMOST_DONE)

        assert bodies == [{"book_id": 7, "shelf": "currently_reading", "status": "almost_done"}]


class TestInterleavedMutations:
    @pytest.mark.asyncio
    async def test_failed_move_keeps_favorite_settled_meanwhile(self, scripted):
        server, sync = scripted
        seed_local(sync, LocalRecord(book_id=1, shelf=Shelf.QUEUE, queue_position=1))
        started = asyncio.Event()
        release = asyncio.Event()

        async def held_then_not_found(request):
            started.set()
            await release.wait()
            return error_response(NotFound)

        server.on("POST", "/shelf", held_then_not_found)
        server.on("POST", "/books/2/favorite", httpx.Response(200, json={"book_id": 2, "is_favorite": True}))
        server.on("GET", "/shelf", httpx.Response(200, json=[entry_json(1, "queue", queue_position=1)]))
        server.on("GET", "/books/favorites", httpx.Response(200, json={"book_ids": [2]}))

        move = asyncio.create_task(sync.set_shelf(1, Shelf.CURRENTLY_READING))
        await started.wait()
        assert (await sync.toggle_favorite(2)).ok
        release.set()
        outcome = await move

        assert not outcome.ok
        assert sync.state.is_favorite(2)
        assert sync.state.get(1).shelf == Shelf.QUEUE
        assert sync.state.get(1).queue_position == 1
        assert server.count("GET", "/shelf") == 1
        assert not sync.state.stale

    @pytest.mark.asyncio
    async def test_failed_resync_marks_state_stale(self, scripted):
        server, sync = scripted
        seed_local(
            sync,
            LocalRecord(book_id=1, shelf=Shelf.QUEUE, queue_position=1),
            LocalRecord(book_id=2, shelf=Shelf.CURRENTLY_READING),
        )
        started = asyncio.Event()
        release = asyncio.Event()

        async def held_then_offline(request):
            started.set()
            await release.wait()
            raise httpx.ConnectError("offline")

        server.on("DELETE", "/shelf/1", held_then_offline)
        server.on(
            "PATCH",
            "/shelf/2/media-type",
            httpx.Response(200, json=record_json(2, "currently_reading", media_type="audio_book")),
        )
        server.on("GET", "/shelf", httpx.ConnectError("offline"))

        removal = asyncio.create_task(sync.remove(1))
        await started.wait()
        assert sync.state.get(1) is None
        assert (await sync.set_media_type(2, MediaType.AUDIO_BOOK)).ok
        release.set()
        outcome = await removal

        assert not outcome.ok
        assert sync.state.queue_order() == [1]
        assert sync.state.get(2).media_type == MediaType.AUDIO_BOOK
        assert sync.state.stale

    @pytest.mark.asyncio
    async def test_lone_failure_does_not_refetch(self, scripted):
        server, sync = scripted
        seed_local(sync, LocalRecord(book_id=1, shelf=Shelf.QUEUE, queue_position=1))
        server.on("POST", "/shelf", error_response(NotFound))

        await sync.set_shelf(1, Shelf.HISTORY)

        assert server.count("GET", "/shelf") == 0
        assert not sync.state.stale


class TestPendingMutations:
    @pytest.mark.asyncio
    async def test_settled_keys_are_dropped(self, scripted):
        server, sync = scripted
        server.on("POST", "/books/7/favorite", httpx.Response(200, json={"book_id": 7, "is_favorite": True}))

        for _ in range(3):
            await sync.toggle_favorite(7)

        assert sync.pending.states == {}
        assert sync.pending.get(7).message is None

    @pytest.mark.asyncio
    async def test_failure_notice_kept_until_dismissed(self, scripted):
        server, sync = scripted
        server.on("POST", "/books/7/favorite", httpx.Response(500, text="boom"))

        await sync.toggle_favorite(7)

        assert sync.pending.get(7).message == sync.notices[0]
        assert sync.pending.dismiss(7) == sync.notices[0]
        assert 7 not in sync.pending.states
        assert sync.pending.dismiss(7) is None
