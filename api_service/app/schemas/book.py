"""Book schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class BookSummary(BaseModel):
    id: int
    title: str
    author: str
    cover_url: Optional[str] = None

    model_config = {"from_attributes": True}


class BookResponse(BaseModel):
    id: int
    title: str
    author: str
    pages: Optional[int]
    genres: list[str] = Field(default_factory=list)
    cover_url: Optional[str]
    description: Optional[str]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FavoriteResponse(BaseModel):
    book_id: int
    is_favorite: bool


class FavoritesResponse(BaseModel):
    book_ids: list[int]
