"""Favorites: a per-(user, book) flag kept apart from shelf membership."""

from __future__ import annotations

from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import flush_or_conflict
from app.errors import NotFound
from app.models.book import Book
from app.models.favorite import FavoriteBook

logger = structlog.get_logger()


class FavoritesService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, user_id: int, book_id: int) -> Optional[FavoriteBook]:
        result = await self.db.execute(
            select(FavoriteBook).where(
                FavoriteBook.user_id == user_id,
                FavoriteBook.book_id == book_id,
            )
        )
        return result.scalar_one_or_none()

    async def is_favorite(self, user_id: int, book_id: int) -> bool:
        return await self._get(user_id, book_id) is not None

    async def favorite_ids(self, user_id: int, book_ids: Optional[Iterable[int]] = None) -> set[int]:
        query = select(FavoriteBook.book_id).where(FavoriteBook.user_id == user_id)
        if book_ids is not None:
            query = query.where(FavoriteBook.book_id.in_(list(book_ids)))
        result = await self.db.execute(query)
        return set(result.scalars().all())

    async def toggle(self, user_id: int, book_id: int) -> bool:
        """Flip the favorite flag and return the new value."""
        if await self.db.get(Book, book_id) is None:
            raise NotFound("Book not found")

        existing = await self._get(user_id, book_id)
        if existing is not None:
            await self.db.delete(existing)
            is_favorite = False
        else:
            self.db.add(FavoriteBook(user_id=user_id, book_id=book_id))
            is_favorite = True

        await flush_or_conflict(self.db)
        logger.info("favorite_toggled", user_id=user_id, book_id=book_id, is_favorite=is_favorite)
        return is_favorite
