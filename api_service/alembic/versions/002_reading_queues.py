"""Add reading_queues: per-user queue revision used to serialize queue writes.

Revision ID: 002
"""

from alembic import op
import sqlalchemy as sa

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reading_queues",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    # users who already have a queue start at revision 0
    op.execute(
        "INSERT INTO reading_queues (user_id, revision, updated_at) "
        "SELECT DISTINCT user_id, 0, CURRENT_TIMESTAMP FROM shelf_records WHERE shelf = 'queue'"
    )


def downgrade() -> None:
    op.drop_table("reading_queues")
