"""
Demo data: a small catalogue, three readers and shelves built through the engine.
Usage (from api_service/): python -m app.seed
"""

from __future__ import annotations

import asyncio
import random

from sqlalchemy import select

from app.auth.jwt_handler import create_access_token
from app.config import get_settings
from app.database import Base, async_session, engine
from app.logging_config import setup_logging
from app.models.book import Book
from app.models.enums import ReadingStatus, Shelf
from app.models.user import User
from app.services.favorites import FavoritesService
from app.services.shelf_engine import ShelfTransitionEngine

# (title, author, pages, genres)
SAMPLE_BOOKS = [
    ("Middlemarch", "George Eliot", 880, ["Classic"]),
    ("The Left Hand of Darkness", "Ursula K. Le Guin", 304, ["Science Fiction"]),
    ("Beloved", "Toni Morrison", 324, ["Literary Fiction"]),
    ("The Name of the Rose", "Umberto Eco", 536, ["Mystery", "Historical"]),
    ("Piranesi", "Susanna Clarke", 272, ["Fantasy"]),
    ("Never Let Me Go", "Kazuo Ishiguro", 288, ["Literary Fiction", "Science Fiction"]),
    ("The Master and Margarita", "Mikhail Bulgakov", 448, ["Classic", "Fantasy"]),
    ("A Wizard of Earthsea", "Ursula K. Le Guin", 183, ["Fantasy"]),
    ("Station Eleven", "Emily St. John Mandel", 333, ["Science Fiction"]),
    ("The Remains of the Day", "Kazuo Ishiguro", 245, ["Literary Fiction"]),
    ("Rebecca", "Daphne du Maurier", 416, ["Mystery", "Classic"]),
    ("Hyperion", "Dan Simmons", 482, ["Science Fiction"]),
]

SAMPLE_USERS = [
    {"email": "alice@example.com", "username": "alice"},
    {"email": "bob@example.com", "username": "bob"},
    {"email": "carol@example.com", "username": "carol"},
]


async def seed():
    """Seed the database with sample data."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        result = await session.execute(select(User).limit(1))
        if result.scalar_one_or_none():
            print("Database already seeded. Skipping.")
            return

        users = [User(**u) for u in SAMPLE_USERS]
        session.add_all(users)
        books = [
            Book(title=title, author=author, pages=pages, genres=genres)
            for title, author, pages, genres in SAMPLE_BOOKS
        ]
        session.add_all(books)
        await session.flush()
        print(f"Created {len(users)} users and {len(books)} books")

        # Shelves go through the engine so queue positions and statuses are valid
        shelf_engine = ShelfTransitionEngine(session)
        favorites = FavoritesService(session)
        for user in users:
            sampled = random.sample(books, 7)
            for book in sampled[:3]:
                await shelf_engine.transition(user.id, book.id, Shelf.QUEUE)
            await shelf_engine.transition(user.id, sampled[3].id, Shelf.CURRENTLY_READING)
            await shelf_engine.transition(
                user.id, sampled[4].id, Shelf.CURRENTLY_READING, ReadingStatus.ALMOST_DONE
            )
            await shelf_engine.transition(user.id, sampled[5].id, Shelf.HISTORY, ReadingStatus.FINISHED)
            await shelf_engine.transition(user.id, sampled[6].id, Shelf.HISTORY, ReadingStatus.UNFINISHED)
            await favorites.toggle(user.id, sampled[5].id)

        await session.commit()
        print("Seeding complete!")
        for user in users:
            print(f"{user.username}: Bearer {create_access_token(user.id)}")


if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    asyncio.run(seed())
