"""
Target resolution for shelf transitions.

Kept free of database imports so the sync client can validate a move
locally with exactly the rules the engine applies.
"""

from __future__ import annotations

from typing import Optional, Protocol

from app.errors import InvalidTransition
from app.models.enums import ReadingStatus, Shelf


class HasShelfState(Protocol):
    shelf: Shelf
    status: Optional[ReadingStatus]


def resolve_target(
    target_shelf: Shelf,
    target_status: Optional[ReadingStatus],
    current: Optional[HasShelfState] = None,
) -> tuple[Shelf, Optional[ReadingStatus]]:
    """Work out the (shelf, status) a request actually asks for."""
    if target_shelf == Shelf.QUEUE:
        if target_status is not None:
            raise InvalidTransition("Queued books do not have a reading status")
        return Shelf.QUEUE, None

    if target_shelf == Shelf.CURRENTLY_READING:
        if target_status is not None and target_status.is_terminal:
            # Finishing (or abandoning) a book is a move to history
            return Shelf.HISTORY, target_status
        if target_status is not None:
            return Shelf.CURRENTLY_READING, target_status
        if current is not None and current.shelf == Shelf.CURRENTLY_READING:
            return Shelf.CURRENTLY_READING, current.status
        return Shelf.CURRENTLY_READING, ReadingStatus.IN_PROGRESS

    if target_shelf == Shelf.HISTORY:
        if target_status is not None and not target_status.is_terminal:
            raise InvalidTransition("Books in history must be finished or unfinished")
        if target_status is not None:
            return Shelf.HISTORY, target_status
        if current is not None and current.shelf == Shelf.HISTORY:
            return Shelf.HISTORY, current.status
        return Shelf.HISTORY, ReadingStatus.FINISHED

    raise InvalidTransition(f"Unknown shelf: {target_shelf}")
