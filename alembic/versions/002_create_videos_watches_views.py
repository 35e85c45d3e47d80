"""create videos, watches (one session per user), views (unique per session)

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "videos",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("creator_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("name", sa.String(256), nullable=False, server_default="Untitled"),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("visibility", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0", index=True),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("duration_secs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "watches",
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), primary_key=True, autoincrement=False),
        sa.Column("video_id", sa.BigInteger(), sa.ForeignKey("videos.id"), nullable=False),
        sa.Column("view_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("bytes_streamed", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "views",
        sa.Column("view_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("video_id", sa.BigInteger(), sa.ForeignKey("videos.id"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("views")
    op.drop_table("watches")
    op.drop_table("videos")
