"""add statuses and query view attributes

Revision ID: 0002_statuses_query_views
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_statuses_query_views"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "statuses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("position", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_statuses_is_closed", "statuses", ["is_closed"])

    op.add_column(
        "queries",
        sa.Column("display_representation", sa.String(length=20), nullable=False, server_default="list"),
    )
    op.add_column(
        "queries",
        sa.Column("show_hierarchies", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.add_column(
        "queries",
        sa.Column("timeline_visible", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.add_column("queries", sa.Column("timestamps", sa.JSON(), nullable=True))


def downgrade():
    op.drop_column("queries", "timestamps")
    op.drop_column("queries", "timeline_visible")
    op.drop_column("queries", "show_hierarchies")
    op.drop_column("queries", "display_representation")
    op.drop_index("ix_statuses_is_closed", table_name="statuses")
    op.drop_table("statuses")
