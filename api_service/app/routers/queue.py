"""Reading queue routes: ordered listing and drag-and-drop reorder."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.database import get_db
from app.models.enums import Shelf
from app.routers.deps import (
    finish_mutation,
    get_favorites_service,
    get_queue_service,
    get_shelf_engine,
)
from app.routers.shelf import list_entries
from app.schemas.shelf import ReorderRequest, ReorderResponse, ShelfEntryResponse
from app.services.events import AchievementEventPublisher, get_event_publisher
from app.services.favorites import FavoritesService
from app.services.queue_service import QueueOrderingService
from app.services.shelf_engine import ShelfTransitionEngine

router = APIRouter(prefix="/queue", tags=["Queue"])


@router.get("", response_model=list[ShelfEntryResponse])
async def get_queue(
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    current_user: dict = Depends(get_current_user),
):
    """The caller's queue in read-next order."""
    return await list_entries(engine, favorites, current_user["user_id"], Shelf.QUEUE)


@router.post("/reorder", response_model=ReorderResponse)
async def reorder_queue(
    data: ReorderRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    queue: QueueOrderingService = Depends(get_queue_service),
    publisher: AchievementEventPublisher = Depends(get_event_publisher),
    current_user: dict = Depends(get_current_user),
):
    """
    Apply a full new order for the queue.

    `book_ids` must list every queued book exactly once; anything else
    (stale tab, concurrent add/remove) is rejected with InvalidReorder and
    nothing changes. Clients should re-fetch the queue before trying again.
    """
    user_id = current_user["user_id"]
    book_ids = await queue.reorder(user_id, data.book_ids)
    await finish_mutation(db, user_id, background_tasks, publisher)
    return ReorderResponse(book_ids=book_ids)
