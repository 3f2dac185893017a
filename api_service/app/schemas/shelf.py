"""Shelf and queue request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from app.models.enums import MediaType, ReadingStatus, Shelf
from app.schemas.book import BookResponse, BookSummary

COMMENT_MAX_LENGTH = 32

_MEDIA_TYPE_ALIASES = {
    "e_reader": MediaType.E_READER,
    "ereader": MediaType.E_READER,
    "digital": MediaType.E_READER,
    "audio_book": MediaType.AUDIO_BOOK,
    "audiobook": MediaType.AUDIO_BOOK,
    "audio": MediaType.AUDIO_BOOK,
    "physical_book": MediaType.PHYSICAL_BOOK,
    "physical": MediaType.PHYSICAL_BOOK,
    "paper": MediaType.PHYSICAL_BOOK,
}


def parse_media_type(value: Any) -> Any:
    """Accept the spellings clients send ("audiobook", "e-reader", "Paper")."""
    if isinstance(value, MediaType) or not isinstance(value, str):
        return value
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return _MEDIA_TYPE_ALIASES[normalized]
    except KeyError:
        raise ValueError(
            f"Invalid media type: {value}. Valid options: e_reader, audio_book, physical_book"
        ) from None


def normalize_comment(value: Optional[str]) -> Optional[str]:
    """Trim a reading note; blank becomes None. Raises ValueError when it is too long."""
    comment = (value or "").strip() or None
    if comment is not None and len(comment) > COMMENT_MAX_LENGTH:
        raise ValueError(f"Notes are limited to {COMMENT_MAX_LENGTH} characters")
    return comment


class ShelfSetRequest(BaseModel):
    book_id: int
    shelf: Shelf
    status: Optional[ReadingStatus] = None


class CommentUpdate(BaseModel):
    comment: Optional[str] = None

    @field_validator("comment")
    @classmethod
    def _normalize(cls, value: Optional[str]) -> Optional[str]:
        return normalize_comment(value)


class MediaTypeUpdate(BaseModel):
    media_type: MediaType

    @field_validator("media_type", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return parse_media_type(value)


class ReorderRequest(BaseModel):
    book_ids: list[int]


class ShelfRecordResponse(BaseModel):
    user_id: int
    book_id: int
    shelf: Shelf
    status: Optional[ReadingStatus] = None
    media_type: MediaType = MediaType.PHYSICAL_BOOK
    comment: Optional[str] = None
    queue_position: Optional[int] = None
    is_favorite: bool = False
    added_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_record(cls, record: Any, is_favorite: bool = False) -> "ShelfRecordResponse":
        return cls.model_validate(record).model_copy(update={"is_favorite": is_favorite})


class ShelfEntryResponse(ShelfRecordResponse):
    book: BookSummary


class ReorderResponse(BaseModel):
    ok: bool = True
    book_ids: list[int]


class OkResponse(BaseModel):
    ok: bool = True


class BookDetailResponse(BookResponse):
    """A book as seen by the caller: favorite flag plus their shelf record, if any."""

    is_favorite: bool = False
    shelf_record: Optional[ShelfRecordResponse] = None
