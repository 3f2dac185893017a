"""Shelf enums shared by the ORM, the API schemas and the sync client."""

from __future__ import annotations

import enum


class Shelf(str, enum.Enum):
    CURRENTLY_READING = "currently_reading"
    QUEUE = "queue"
    HISTORY = "history"


class ReadingStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    ALMOST_DONE = "almost_done"
    FINISHED = "finished"
    UNFINISHED = "unfinished"

    @property
    def is_terminal(self) -> bool:
        return self in (ReadingStatus.FINISHED, ReadingStatus.UNFINISHED)


class MediaType(str, enum.Enum):
    E_READER = "e_reader"
    AUDIO_BOOK = "audio_book"
    PHYSICAL_BOOK = "physical_book"
