"""ReadingQueue ORM model: one row per user whose queue has ever been touched."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.shelf import utcnow


class ReadingQueue(Base):
    """
    Revision counter for a user's queue. Every change to queue membership or
    order bumps `revision`, so two transactions that read the same queue
    cannot both write it: the second flush matches no row and fails.
    """

    __tablename__ = "reading_queues"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # revision is bumped by QueueOrderingService, not by the mapper
    __mapper_args__ = {"version_id_col": revision, "version_id_generator": False}

    def __repr__(self) -> str:
        return f"<ReadingQueue user={self.user_id} revision={self.revision}>"
