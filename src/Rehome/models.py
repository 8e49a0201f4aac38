# models.py

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from Rehome.db import Base
from Rehome.identity import new_object_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


# User foreign keys (created_by, author_id, ...) are plain strings: they may
# hold the external sentinel, which is never a stored user.
def _user_ref(nullable: bool = True) -> Mapped[str | None]:
    return mapped_column(String(24), nullable=nullable)


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    name: Mapped[str] = mapped_column(String(191))
    slug: Mapped[str] = mapped_column(String(191), unique=True)
    email: Mapped[str] = mapped_column(String(191), unique=True, index=True)
    password: Mapped[str] = mapped_column(String(60))
    status: Mapped[str] = mapped_column(String(50), default="active")  # active|inactive|locked
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_image: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Role(Base):
    __tablename__ = "roles"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)


class RoleUser(Base):
    __tablename__ = "roles_users"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    role_id: Mapped[str] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)


class Tag(Base):
    __tablename__ = "tags"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    name: Mapped[str] = mapped_column(String(191), unique=True)
    slug: Mapped[str] = mapped_column(String(191), unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    visibility: Mapped[str] = mapped_column(String(50), default="public")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    created_by: Mapped[str | None] = _user_ref()
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = _user_ref()


class Post(Base):
    __tablename__ = "posts"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    uuid: Mapped[str | None] = mapped_column(String(36), nullable=True)
    title: Mapped[str] = mapped_column(String(2000))
    slug: Mapped[str] = mapped_column(String(191), unique=True)
    markdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    html: Mapped[str | None] = mapped_column(Text, nullable=True)
    featured: Mapped[bool] = mapped_column(Boolean, default=False)
    page: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(50), default="draft")
    language: Mapped[str] = mapped_column(String(6), default="en_US")
    author_id: Mapped[str | None] = _user_ref()
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    created_by: Mapped[str | None] = _user_ref()
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = _user_ref()
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_by: Mapped[str | None] = _user_ref()


class PostTag(Base):
    __tablename__ = "posts_tags"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id", ondelete="CASCADE"), index=True)
    tag_id: Mapped[str] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


Index("ix_posts_tags_post_order", PostTag.post_id, PostTag.sort_order)


class Setting(Base):
    __tablename__ = "settings"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    key: Mapped[str] = mapped_column(String(50), unique=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Category; core/theme settings belong to the running instance
    type: Mapped[str] = mapped_column(String(50), default="core")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Subscriber(Base):
    __tablename__ = "subscribers"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    name: Mapped[str | None] = mapped_column(String(191), nullable=True)
    email: Mapped[str] = mapped_column(String(191))
    status: Mapped[str] = mapped_column(String(50), default="subscribed")
    post_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    subscribed_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    __table_args__ = (UniqueConstraint("email", name="ux_subscribers_email"),)


class App(Base):
    __tablename__ = "apps"
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    name: Mapped[str] = mapped_column(String(191), unique=True)
    slug: Mapped[str] = mapped_column(String(191), unique=True)
    version: Mapped[str] = mapped_column(String(50), default="0.0.0")
    status: Mapped[str] = mapped_column(String(50), default="inactive")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


# entity kind -> model, shared by the storage functions in repos
MODELS: dict[str, type[Base]] = {
    "user": User,
    "role": Role,
    "tag": Tag,
    "post": Post,
    "setting": Setting,
    "subscriber": Subscriber,
    "app": App,
}
