"""initial target instance schema

Revision ID: rh0001
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "rh0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=24), primary_key=True)


def _user_ref(name: str) -> sa.Column:
    # Target user id or the external sentinel, so no foreign key
    return sa.Column(name, sa.String(length=24), nullable=True)


def upgrade() -> None:
    op.create_table(
        "users",
        _id(),
        sa.Column("name", sa.String(length=191), nullable=False),
        sa.Column("slug", sa.String(length=191), nullable=False, unique=True),
        sa.Column("email", sa.String(length=191), nullable=False, unique=True),
        sa.Column("password", sa.String(length=60), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("website", sa.String(length=2000), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("profile_image", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "roles",
        _id(),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("description", sa.String(length=2000), nullable=True),
    )

    op.create_table(
        "roles_users",
        _id(),
        sa.Column("role_id", sa.String(length=24), nullable=False),
        sa.Column("user_id", sa.String(length=24), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_roles_users_role_id", "roles_users", ["role_id"])
    op.create_index("ix_roles_users_user_id", "roles_users", ["user_id"])

    op.create_table(
        "tags",
        _id(),
        sa.Column("name", sa.String(length=191), nullable=False, unique=True),
        sa.Column("slug", sa.String(length=191), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("visibility", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        _user_ref("created_by"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        _user_ref("updated_by"),
    )

    op.create_table(
        "posts",
        _id(),
        sa.Column("uuid", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=2000), nullable=False),
        sa.Column("slug", sa.String(length=191), nullable=False, unique=True),
        sa.Column("markdown", sa.Text(), nullable=True),
        sa.Column("html", sa.Text(), nullable=True),
        sa.Column("featured", sa.Boolean(), nullable=False),
        sa.Column("page", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("language", sa.String(length=6), nullable=False),
        _user_ref("author_id"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        _user_ref("created_by"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        _user_ref("updated_by"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        _user_ref("published_by"),
    )

    op.create_table(
        "posts_tags",
        _id(),
        sa.Column("post_id", sa.String(length=24), nullable=False),
        sa.Column("tag_id", sa.String(length=24), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_posts_tags_post_id", "posts_tags", ["post_id"])
    op.create_index("ix_posts_tags_tag_id", "posts_tags", ["tag_id"])
    op.create_index("ix_posts_tags_post_order", "posts_tags", ["post_id", "sort_order"])

    op.create_table(
        "settings",
        _id(),
        sa.Column("key", sa.String(length=50), nullable=False, unique=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "subscribers",
        _id(),
        sa.Column("name", sa.String(length=191), nullable=True),
        sa.Column("email", sa.String(length=191), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("post_id", sa.String(length=24), nullable=True),
        sa.Column("subscribed_url", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="ux_subscribers_email"),
    )

    op.create_table(
        "apps",
        _id(),
        sa.Column("name", sa.String(length=191), nullable=False, unique=True),
        sa.Column("slug", sa.String(length=191), nullable=False, unique=True),
        sa.Column("version", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("apps")
    op.drop_table("subscribers")
    op.drop_table("settings")
    op.drop_index("ix_posts_tags_post_order", table_name="posts_tags")
    op.drop_index("ix_posts_tags_tag_id", table_name="posts_tags")
    op.drop_index("ix_posts_tags_post_id", table_name="posts_tags")
    op.drop_table("posts_tags")
    op.drop_table("posts")
    op.drop_table("tags")
    op.drop_index("ix_roles_users_user_id", table_name="roles_users")
    op.drop_index("ix_roles_users_role_id", table_name="roles_users")
    op.drop_table("roles_users")
    op.drop_table("roles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
