"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("identifier", sa.String(length=100), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("public", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_projects_identifier", "projects", ["identifier"])
    op.create_index("ix_projects_parent_id", "projects", ["parent_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("login", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.UniqueConstraint("project_id", "user_id", name="uq_members_project_user"),
    )
    op.create_index("ix_members_project_id", "members", ["project_id"])
    op.create_index("ix_members_user_id", "members", ["user_id"])

    op.create_table(
        "work_packages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("type_id", sa.Integer(), nullable=False),
        sa.Column("status_id", sa.Integer(), nullable=False),
        sa.Column("priority_id", sa.Integer(), nullable=True),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("assigned_to_id", sa.Integer(), nullable=True),
        sa.Column("responsible_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("done_ratio", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    for column in (
        "project_id",
        "type_id",
        "status_id",
        "priority_id",
        "author_id",
        "assigned_to_id",
        "responsible_id",
        "version_id",
        "parent_id",
        "due_date",
        "archived",
    ):
        op.create_index(f"ix_work_packages_{column}", "work_packages", [column])

    op.create_table(
        "custom_fields",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("field_format", sa.String(length=30), nullable=False),
        sa.Column("is_filter", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("searchable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "custom_values",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("custom_field_id", sa.Integer(), nullable=False),
        sa.Column("customized_id", sa.Integer(), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.UniqueConstraint("custom_field_id", "customized_id", name="uq_custom_values_field_row"),
    )
    op.create_index("ix_custom_values_custom_field_id", "custom_values", ["custom_field_id"])
    op.create_index("ix_custom_values_customized_id", "custom_values", ["customized_id"])

    op.create_table(
        "queries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("filters", sa.JSON(), nullable=False),
        sa.Column("sort_criteria", sa.JSON(), nullable=False),
        sa.Column("column_names", sa.JSON(), nullable=False),
        sa.Column("group_by", sa.String(length=100), nullable=True),
        sa.Column("display_sums", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("include_subprojects", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("visibility", sa.String(length=20), nullable=False, server_default="private"),
        sa.Column("starred", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_queries_user_id", "queries", ["user_id"])
    op.create_index("ix_queries_project_id", "queries", ["project_id"])


def downgrade():
    op.drop_table("queries")
    op.drop_table("custom_values")
    op.drop_table("custom_fields")
    op.drop_table("work_packages")
    op.drop_table("members")
    op.drop_table("users")
    op.drop_table("projects")
