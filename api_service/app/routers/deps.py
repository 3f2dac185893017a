"""Shared router dependencies and the post-mutation commit sequence."""

from __future__ import annotations

from typing import Sequence

from fastapi import BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import commit_or_conflict, get_db
from app.services.cache import invalidate_user_shelves
from app.services.events import AchievementEventPublisher, ShelfEvent
from app.services.favorites import FavoritesService
from app.services.queue_service import QueueOrderingService
from app.services.shelf_engine import ShelfTransitionEngine


def get_queue_service(db: AsyncSession = Depends(get_db)) -> QueueOrderingService:
    return QueueOrderingService(db)


def get_shelf_engine(
    db: AsyncSession = Depends(get_db),
    queue: QueueOrderingService = Depends(get_queue_service),
) -> ShelfTransitionEngine:
    return ShelfTransitionEngine(db, queue)


def get_favorites_service(db: AsyncSession = Depends(get_db)) -> FavoritesService:
    return FavoritesService(db)


async def finish_mutation(
    db: AsyncSession,
    user_id: int,
    background_tasks: BackgroundTasks,
    publisher: AchievementEventPublisher,
    events: Sequence[ShelfEvent] = (),
) -> None:
    """
    Commit, then move the user to a fresh listing generation, then queue
    event delivery.
    Committing first means neither a re-cached listing nor an event can
    describe a change that later rolled back.
    """
    await commit_or_conflict(db)
    await invalidate_user_shelves(user_id)
    if events:
        background_tasks.add_task(publisher.publish, list(events))
