"""Shelf routes: move books between shelves, annotate, remove, list."""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.database import get_db
from app.models.enums import Shelf
from app.routers.deps import finish_mutation, get_favorites_service, get_shelf_engine
from app.schemas.book import BookSummary
from app.schemas.shelf import (
    CommentUpdate,
    MediaTypeUpdate,
    OkResponse,
    ShelfEntryResponse,
    ShelfRecordResponse,
    ShelfSetRequest,
)
from app.services.cache import get_cached, get_generation, set_cached, shelf_cache_key
from app.services.events import AchievementEventPublisher, get_event_publisher
from app.services.favorites import FavoritesService
from app.services.shelf_engine import ShelfTransitionEngine

logger = structlog.get_logger()
router = APIRouter(prefix="/shelf", tags=["Shelf"])


async def list_entries(
    engine: ShelfTransitionEngine,
    favorites: FavoritesService,
    user_id: int,
    shelf: Optional[Shelf],
) -> list[dict]:
    """Shelf listing with book summaries, served from the per-user cache when warm."""
    generation = await get_generation(user_id)
    if generation is None:
        return await load_entries(engine, favorites, user_id, shelf)

    cache_key = shelf_cache_key(user_id, shelf.value if shelf else "all", generation)
    cached = await get_cached(cache_key)
    if cached is not None:
        logger.debug("shelf_cache_hit", user_id=user_id, view=cache_key)
        return cached

    entries = await load_entries(engine, favorites, user_id, shelf)
    await set_cached(cache_key, entries)
    return entries


async def load_entries(
    engine: ShelfTransitionEngine,
    favorites: FavoritesService,
    user_id: int,
    shelf: Optional[Shelf],
) -> list[dict]:
    rows = await engine.list_shelf(user_id, shelf)
    favorite_ids = await favorites.favorite_ids(user_id, [record.book_id for record, _ in rows])
    entries = [
        ShelfEntryResponse(
            **ShelfRecordResponse.from_record(record, record.book_id in favorite_ids).model_dump(),
            book=BookSummary.model_validate(book),
        ).model_dump(mode="json")
        for record, book in rows
    ]
    return entries


@router.post("", response_model=ShelfRecordResponse)
async def set_shelf(
    data: ShelfSetRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    publisher: AchievementEventPublisher = Depends(get_event_publisher),
    current_user: dict = Depends(get_current_user),
):
    """
    Put a book on a shelf (or change its reading status).

    Repeating a request the record already reflects returns it unchanged.
    Marking a book finished moves it to history and notifies the
    achievement tracker once the change is committed.
    """
    user_id = current_user["user_id"]
    result = await engine.transition(user_id, data.book_id, data.shelf, data.status)
    response = ShelfRecordResponse.from_record(
        result.record, await favorites.is_favorite(user_id, data.book_id)
    )
    if result.changed:
        await finish_mutation(db, user_id, background_tasks, publisher, result.events)
    return response


@router.get("", response_model=list[ShelfEntryResponse])
async def list_shelf(
    shelf: Optional[Shelf] = Query(None),
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    current_user: dict = Depends(get_current_user),
):
    """List the caller's shelf records; all shelves when `shelf` is omitted."""
    return await list_entries(engine, favorites, current_user["user_id"], shelf)


@router.get("/{book_id}", response_model=ShelfRecordResponse)
async def get_shelf_record(
    book_id: int,
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    current_user: dict = Depends(get_current_user),
):
    user_id = current_user["user_id"]
    record = await engine.require_record(user_id, book_id)
    return ShelfRecordResponse.from_record(record, await favorites.is_favorite(user_id, book_id))


@router.delete("/{book_id}", response_model=OkResponse)
async def remove_from_shelf(
    book_id: int,
    background_tasks: BackgroundTasks,
    shelf: Optional[Shelf] = Query(None),
    db: AsyncSession = Depends(get_db),
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    publisher: AchievementEventPublisher = Depends(get_event_publisher),
    current_user: dict = Depends(get_current_user),
):
    """Remove a book from the caller's shelves. The favorite flag is kept."""
    user_id = current_user["user_id"]
    await engine.remove(user_id, book_id, shelf)
    await finish_mutation(db, user_id, background_tasks, publisher)
    return OkResponse()


@router.patch("/{book_id}/comment", response_model=ShelfRecordResponse)
async def update_comment(
    book_id: int,
    data: CommentUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    publisher: AchievementEventPublisher = Depends(get_event_publisher),
    current_user: dict = Depends(get_current_user),
):
    """Set or clear (null) the note on a book being read."""
    user_id = current_user["user_id"]
    record = await engine.set_comment(user_id, book_id, data.comment)
    response = ShelfRecordResponse.from_record(record, await favorites.is_favorite(user_id, book_id))
    await finish_mutation(db, user_id, background_tasks, publisher)
    return response


@router.patch("/{book_id}/media-type", response_model=ShelfRecordResponse)
async def update_media_type(
    book_id: int,
    data: MediaTypeUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    publisher: AchievementEventPublisher = Depends(get_event_publisher),
    current_user: dict = Depends(get_current_user),
):
    user_id = current_user["user_id"]
    record = await engine.set_media_type(user_id, book_id, data.media_type)
    response = ShelfRecordResponse.from_record(record, await favorites.is_favorite(user_id, book_id))
    await finish_mutation(db, user_id, background_tasks, publisher)
    return response
