"""Initial leaderboard schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tables for seasons, ranking entries, and user history."""

    op.create_table(
        "seasons",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("season_number", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("season_number"),
    )

    op.create_table(
        "ranking_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("display_name", sa.String(length=20), nullable=False),
        sa.Column("decibel", sa.Float(), nullable=False),
        sa.Column("audio_key", sa.String(length=128), nullable=True),
        sa.Column("audio_mimetype", sa.String(length=64), nullable=True),
        sa.Column("owner_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("season_number", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "decibel >= 0 AND decibel <= 200", name="ck_ranking_entries_decibel"
        ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_ranking_entries_owner_id", "ranking_entries", ["owner_id"], unique=False
    )
    op.create_index(
        "ix_ranking_entries_season_order",
        "ranking_entries",
        ["season_number", "decibel"],
        unique=False,
    )

    op.create_table(
        "user_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("ranking_entry_id", sa.Integer(), nullable=True),
        sa.Column("display_name", sa.String(length=20), nullable=False),
        sa.Column("decibel", sa.Float(), nullable=False),
        sa.Column("audio_key", sa.String(length=128), nullable=True),
        sa.Column("audio_mimetype", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("season_number", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["ranking_entry_id"], ["ranking_entries.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_user_history_owner_id", "user_history", ["owner_id"], unique=False
    )


def downgrade() -> None:
    """Drop all ShoutRank tables."""

    op.drop_index("ix_user_history_owner_id", table_name="user_history")
    op.drop_table("user_history")
    op.drop_index("ix_ranking_entries_season_order", table_name="ranking_entries")
    op.drop_index("ix_ranking_entries_owner_id", table_name="ranking_entries")
    op.drop_table("ranking_entries")
    op.drop_table("seasons")
