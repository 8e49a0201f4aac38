# repos.py
"""Storage functions the importers call into.

Every function takes the session of the running transaction as ``s``. Writes
require either the internal (trusted) context or an acting user id.
"""

from __future__ import annotations

import asyncio
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from Rehome import models
from Rehome.dataset import OWNER_ROLE, ExistingUser, ExistingUsersIndex, Owner
from Rehome.errors import NoPermissionError, NotFoundError

log = structlog.get_logger()

_AUDIT_FIELDS = ("created_by", "updated_by")

# kind -> field a missing slug is derived from
_SLUG_SOURCES = {"tag": "name", "post": "title", "user": "name", "app": "name"}


def slugify(value: str) -> str:
    text = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-zA-Z0-9]+", "-", text).strip("-").lower()
    return text or "untitled"


def _model_for(kind: str) -> type[models.Base]:
    try:
        return models.MODELS[kind]
    except KeyError:
        raise ValueError(f"unknown entity kind: {kind}") from None


def _column_types(model: type[models.Base]) -> dict[str, Any]:
    return {c.key: c.type for c in inspect(model).columns}


def _coerce_datetime(value: Any) -> datetime | None:
    """Exports carry ms epoch numbers or ISO-8601 strings."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"unsupported timestamp: {value!r}")


def _permitted(model: type[models.Base], row: dict[str, Any]) -> dict[str, Any]:
    """Keep only columns the model knows; never accept a caller-supplied id."""
    types = _column_types(model)
    data: dict[str, Any] = {}
    for key, value in row.items():
        if key == "id" or key not in types:
            continue
        if value is not None and types[key].python_type is datetime:
            value = _coerce_datetime(value)
        data[key] = value
    return data


def _check_write(kind: str, internal: bool, actor_id: str | None) -> None:
    if not internal and actor_id is None:
        raise NoPermissionError(f"writing {kind} requires an actor or the internal context")


async def _flush_retry(s: AsyncSession, attempts: int = 5, delay: float = 0.2) -> None:
    """Retry session.flush() on transient SQLite 'database is locked' errors.

    Exponential backoff: delay * 2^i between attempts.
    """
    for i in range(attempts):
        try:
            await s.flush()
            return
        except OperationalError as e:  # pragma: no cover - timing dependent
            msg = str(e).lower()
            if "database is locked" in msg or "database is busy" in msg:
                if i == attempts - 1:
                    raise
                await asyncio.sleep(delay * (2**i))
                continue
            raise


async def find_one(s: AsyncSession, kind: str, **predicate: Any) -> Any | None:
    model = _model_for(kind)
    stmt = select(model)
    for key, value in predicate.items():
        stmt = stmt.where(getattr(model, key) == value)
    q = await s.execute(stmt.limit(1))
    return q.scalar_one_or_none()


async def _resolve_tags(s: AsyncSession, refs: list[dict[str, Any]]) -> list[models.Tag]:
    """Resolve ``{"name": ...}`` references to tag rows, creating missing ones."""
    tags: list[models.Tag] = []
    seen: set[str] = set()
    for ref in refs:
        name = (ref.get("name") or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        tag = await find_one(s, "tag", name=name)
        if tag is None:
            tag = models.Tag(name=name, slug=ref.get("slug") or slugify(name))
            s.add(tag)
            await _flush_retry(s)
        tags.append(tag)
    return tags


async def add(
    s: AsyncSession,
    kind: str,
    row: dict[str, Any],
    *,
    internal: bool = False,
    importing: bool = False,
    actor_id: str | None = None,
) -> Any:
    """Insert one row of ``kind``.

    ``importing`` keeps exported timestamps instead of stamping the current
    time. Posts may carry ``tags`` (name references) and users ``roles``
    (role ids); both are linked after the row itself is inserted. A missing
    slug is derived from the name (title for posts).
    """
    _check_write(kind, internal, actor_id)
    model = _model_for(kind)
    data = _permitted(model, row)
    columns = _column_types(model)
    now = datetime.now(timezone.utc)

    for field in _AUDIT_FIELDS:
        if field in columns and not data.get(field):
            data[field] = actor_id
    if "created_at" in columns:
        if importing:
            if not data.get("created_at"):
                data["created_at"] = now
            if "updated_at" in columns:
                data["updated_at"] = data.get("updated_at") or data["created_at"]
        else:
            data["created_at"] = now
            if "updated_at" in columns:
                data["updated_at"] = now
    source = _SLUG_SOURCES.get(kind)
    if source and not data.get("slug") and data.get(source):
        data["slug"] = slugify(data[source])

    obj = model(**data)
    s.add(obj)
    await _flush_retry(s)

    if kind == "post" and row.get("tags"):
        for order, tag in enumerate(await _resolve_tags(s, row["tags"])):
            s.add(models.PostTag(post_id=obj.id, tag_id=tag.id, sort_order=order))
        await _flush_retry(s)
    if kind == "user" and row.get("roles"):
        for role_id in dict.fromkeys(str(r) for r in row["roles"]):
            s.add(models.RoleUser(role_id=role_id, user_id=obj.id))
        await _flush_retry(s)
    return obj


async def edit(
    s: AsyncSession,
    kind: str,
    rows: list[dict[str, Any]],
    *,
    internal: bool = False,
    actor_id: str | None = None,
) -> list[Any]:
    """Update existing rows in place.

    Settings are matched by ``key`` and only their ``value`` changes; other
    kinds are matched by ``id``. A row that matches nothing raises
    NotFoundError; rows before it stay updated.
    """
    _check_write(kind, internal, actor_id)
    model = _model_for(kind)
    columns = _column_types(model)
    updated: list[Any] = []
    for row in rows:
        if kind == "setting":
            obj = await find_one(s, kind, key=row.get("key"))
            if obj is None:
                raise NotFoundError(kind, row.get("key"))
            obj.value = row.get("value")
        else:
            obj = await find_one(s, kind, id=row.get("id"))
            if obj is None:
                raise NotFoundError(kind, row.get("id"))
            for key, value in _permitted(model, row).items():
                setattr(obj, key, value)
        if "updated_at" in columns:
            obj.updated_at = datetime.now(timezone.utc)
        updated.append(obj)
    await _flush_retry(s)
    return updated


async def list_roles(s: AsyncSession) -> list[dict[str, str]]:
    q = await s.execute(select(models.Role).order_by(models.Role.name))
    return [{"id": r.id, "name": r.name} for r in q.scalars().all()]


async def role_ids_for_user(s: AsyncSession, user_id: str) -> list[str]:
    q = await s.execute(
        select(models.RoleUser.role_id).where(models.RoleUser.user_id == user_id)
    )
    return list(q.scalars().all())


async def get_owner(s: AsyncSession) -> Owner:
    """Return the single account holding the Owner role, owner role first."""
    q = await s.execute(
        select(models.User, models.Role.id)
        .join(models.RoleUser, models.RoleUser.user_id == models.User.id)
        .join(models.Role, models.Role.id == models.RoleUser.role_id)
        .where(models.Role.name == OWNER_ROLE)
        .limit(1)
    )
    found = q.first()
    if found is None:
        raise NotFoundError("user", OWNER_ROLE)
    user, owner_role_id = found
    others = [r for r in await role_ids_for_user(s, user.id) if r != owner_role_id]
    return Owner(id=user.id, email=user.email, role_ids=(owner_role_id, *others))


async def load_existing_users(s: AsyncSession) -> ExistingUsersIndex:
    q = await s.execute(select(models.User.email, models.User.id))
    return {email: ExistingUser(real_id=user_id) for email, user_id in q.all()}


async def count(s: AsyncSession, kind: str) -> int:
    model = _model_for(kind)
    q = await s.execute(select(func.count()).select_from(model))
    return int(q.scalar_one())


async def seed_instance(
    s: AsyncSession,
    *,
    owner_name: str,
    owner_email: str,
    owner_password: str,
    role_names: tuple[str, ...] = ("Administrator", "Editor", "Author", "Contributor", "Owner"),
) -> Owner:
    """Create canonical roles and the owner account of a fresh instance."""
    roles = {name: models.Role(name=name) for name in role_names}
    s.add_all(roles.values())
    owner = models.User(
        name=owner_name,
        slug=slugify(owner_name),
        email=owner_email,
        password=owner_password,
    )
    s.add(owner)
    await _flush_retry(s)
    s.add(models.RoleUser(role_id=roles[OWNER_ROLE].id, user_id=owner.id))
    await _flush_retry(s)
    log.info("instance.seeded", owner_id=owner.id, roles=list(role_names))
    return Owner(id=owner.id, email=owner.email, role_ids=(roles[OWNER_ROLE].id,))
