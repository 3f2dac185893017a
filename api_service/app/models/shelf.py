"""ShelfRecord ORM model: one row per (user, book) association."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.enums import MediaType, ReadingStatus, Shelf


def _enum_values(e):
    return [x.value for x in e]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShelfRecord(Base):
    __tablename__ = "shelf_records"
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_shelf_records_user_book"),
        Index("ix_shelf_records_user_shelf_position", "user_id", "shelf", "queue_position"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    book_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True
    )
    shelf: Mapped[Shelf] = mapped_column(
        Enum(Shelf, name="shelftype", values_callable=_enum_values), nullable=False
    )
    status: Mapped[Optional[ReadingStatus]] = mapped_column(
        Enum(ReadingStatus, name="readingstatus", values_callable=_enum_values), nullable=True
    )
    media_type: Mapped[MediaType] = mapped_column(
        Enum(MediaType, name="mediatype", values_callable=_enum_values),
        default=MediaType.PHYSICAL_BOOK,
        server_default=MediaType.PHYSICAL_BOOK.value,
        nullable=False,
    )
    comment: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    queue_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Stale writers get StaleDataError on flush, surfaced as Conflict
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ShelfRecord user={self.user_id} book={self.book_id} "
            f"shelf={self.shelf} position={self.queue_position}>"
        )
