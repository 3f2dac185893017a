"""Initial migration: create users, books, shelf records and favorites tables.

Revision ID: 001
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users table (rows are provisioned by the auth service)
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Books table
    op.create_table(
        "books",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("author", sa.String(255), nullable=False),
        sa.Column("pages", sa.Integer(), nullable=True),
        sa.Column("genres", sa.JSON(), nullable=True),
        sa.Column("cover_url", sa.String(1000), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_books_title", "books", ["title"])
    op.create_index("ix_books_author", "books", ["author"])

    # Shelf records: one row per (user, book)
    op.create_table(
        "shelf_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("book_id", sa.Integer(), nullable=False),
        sa.Column(
            "shelf",
            sa.Enum("currently_reading", "queue", "history", name="shelftype"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("in_progress", "almost_done", "finished", "unfinished", name="readingstatus"),
            nullable=True,
        ),
        sa.Column(
            "media_type",
            sa.Enum("e_reader", "audio_book", "physical_book", name="mediatype"),
            server_default="physical_book",
            nullable=False,
        ),
        sa.Column("comment", sa.String(32), nullable=True),
        sa.Column("queue_position", sa.Integer(), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "book_id", name="uq_shelf_records_user_book"),
    )
    op.create_index("ix_shelf_records_user_id", "shelf_records", ["user_id"])
    op.create_index("ix_shelf_records_book_id", "shelf_records", ["book_id"])
    op.create_index(
        "ix_shelf_records_user_shelf_position",
        "shelf_records",
        ["user_id", "shelf", "queue_position"],
    )

    # Favorites, independent of shelf membership
    op.create_table(
        "favorite_books",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("book_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "book_id", name="uq_favorite_books_user_book"),
    )
    op.create_index("ix_favorite_books_user_id", "favorite_books", ["user_id"])
    op.create_index("ix_favorite_books_book_id", "favorite_books", ["book_id"])


def downgrade() -> None:
    op.drop_table("favorite_books")
    op.drop_table("shelf_records")
    op.drop_table("books")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS shelftype")
    op.execute("DROP TYPE IF EXISTS readingstatus")
    op.execute("DROP TYPE IF EXISTS mediatype")
