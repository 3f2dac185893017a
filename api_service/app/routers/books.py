"""Book routes: the caller's view of a book and the favorite toggle."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.database import get_db
from app.routers.deps import finish_mutation, get_favorites_service, get_shelf_engine
from app.schemas.book import FavoriteResponse, FavoritesResponse
from app.schemas.shelf import BookDetailResponse, ShelfRecordResponse
from app.services.events import AchievementEventPublisher, get_event_publisher
from app.services.favorites import FavoritesService
from app.services.shelf_engine import ShelfTransitionEngine

router = APIRouter(prefix="/books", tags=["Books"])


@router.get("/favorites", response_model=FavoritesResponse)
async def list_favorites(
    favorites: FavoritesService = Depends(get_favorites_service),
    current_user: dict = Depends(get_current_user),
):
    book_ids = await favorites.favorite_ids(current_user["user_id"])
    return FavoritesResponse(book_ids=sorted(book_ids))


@router.get("/{book_id}", response_model=BookDetailResponse)
async def get_book(
    book_id: int,
    engine: ShelfTransitionEngine = Depends(get_shelf_engine),
    favorites: FavoritesService = Depends(get_favorites_service),
    current_user: dict = Depends(get_current_user),
):
    """Get a single book with the caller's shelf record and favorite flag."""
    user_id = current_user["user_id"]
    book = await engine.require_book(book_id)
    is_favorite = await favorites.is_favorite(user_id, book_id)
    record = await engine.get_record(user_id, book_id)

    response = BookDetailResponse.model_validate(book)
    response.is_favorite = is_favorite
    if record is not None:
        response.shelf_record = ShelfRecordResponse.from_record(record, is_favorite)
    return response


@router.post("/{book_id}/favorite", response_model=FavoriteResponse)
async def toggle_favorite(
    book_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    favorites: FavoritesService = Depends(get_favorites_service),
    publisher: AchievementEventPublisher = Depends(get_event_publisher),
    current_user: dict = Depends(get_current_user),
):
    """Toggle the favorite flag. Works whether or not the book is on a shelf."""
    user_id = current_user["user_id"]
    is_favorite = await favorites.toggle(user_id, book_id)
    await finish_mutation(db, user_id, background_tasks, publisher)
    return FavoriteResponse(book_id=book_id, is_favorite=is_favorite)
