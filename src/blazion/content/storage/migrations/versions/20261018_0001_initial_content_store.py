"""Initial content store: posts, sync run log, and pack bindings."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "posts",
        sa.Column("post_id", sa.String(), nullable=False),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("author_name", sa.String(), nullable=True),
        sa.Column("author_email", sa.String(), nullable=True),
        sa.Column("author_avatar_url", sa.String(), nullable=True),
        sa.Column("tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("segment", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("banner_image_url", sa.Text(), nullable=True),
        sa.Column("read_time_minutes", sa.Integer(), nullable=True),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("related_source_ids_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("post_id"),
        sa.UniqueConstraint("source_id", name="uq_posts_source_id"),
        sa.UniqueConstraint("slug", name="uq_posts_slug"),
    )
    op.create_index("ix_posts_status", "posts", ["status"])

    op.create_table(
        "sync_runs",
        sa.Column("run_id", sa.Integer(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False, server_default="full"),
        sa.Column("pack_name", sa.String(), nullable=True),
        sa.Column("synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("removed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_sync_runs_mode", "sync_runs", ["mode"])
    op.create_index("ix_sync_runs_pack_name", "sync_runs", ["pack_name"])

    op.create_table(
        "pack_bindings",
        sa.Column("pack_name", sa.String(), nullable=False),
        sa.Column("database_id", sa.String(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("pack_name"),
    )


def downgrade() -> None:
    op.drop_table("pack_bindings")
    op.drop_index("ix_sync_runs_pack_name", table_name="sync_runs")
    op.drop_index("ix_sync_runs_mode", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("ix_posts_status", table_name="posts")
    op.drop_table("posts")
