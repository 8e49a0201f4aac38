"""Identity reconciliation passes run before anything is persisted.

Each pass takes an ImportDataset and returns a new, reconciled copy; the
caller's dataset is never modified. The passes are synchronous and either
complete or raise before returning, so an importer never sees a dataset
with a mix of source and target identifiers.

- ``link_post_tags``: post/tag join table -> per-post tag name references
- ``reconcile_roles``: imported roles -> canonical target roles, with the
  owner escalation guard applied to every role assignment
- ``remap_user_references``: user foreign keys -> target user ids
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

import structlog

from Rehome import identity
from Rehome.config import Settings, load_settings
from Rehome.dataset import (
    ADMINISTRATOR_ROLE,
    AUTHOR_ROLE,
    USER_REFERENCE_FIELDS,
    ExistingUsersIndex,
    ImportDataset,
    Owner,
    same_id,
)
from Rehome.errors import RoleReconciliationError, UnknownUserReference
from Rehome.metrics import inc_counter

log = structlog.get_logger()

UserIdentityMap = dict[str, str]


def _find_row(rows: Iterable[dict[str, Any]] | None, row_id: Any) -> dict[str, Any] | None:
    for row in rows or ():
        if same_id(row.get("id"), row_id):
            return row
    return None


# ---------------------------------------------------------------------------
# Tag linker
# ---------------------------------------------------------------------------


def link_post_tags(dataset: ImportDataset) -> ImportDataset:
    """Attach ``tags: [{"name": ...}]`` to every post that has join rows.

    Names are unique per post and keep the order in which the join table
    first mentions them. Tags are attached by name, so two tag rows sharing a
    name collapse into one reference.
    """
    data = copy.deepcopy(dataset)

    post_tag_ids: dict[str, list[str]] = {}
    for link in data.get("posts_tags") or []:
        post_id, tag_id = link.get("post_id"), link.get("tag_id")
        if post_id is None or tag_id is None:
            continue
        post_tag_ids.setdefault(str(post_id), []).append(str(tag_id))

    tag_names = {
        str(tag["id"]): tag.get("name")
        for tag in data.get("tags") or []
        if tag.get("id") is not None
    }

    linked = 0
    for post_id, tag_ids in post_tag_ids.items():
        post = _find_row(data.get("posts"), post_id)
        if post is None:
            continue
        names: dict[str, None] = {}
        for tag_id in tag_ids:
            name = tag_names.get(tag_id)
            if name:
                names.setdefault(name, None)
        post["tags"] = [{"name": name} for name in names]
        linked += 1

    log.debug("import.tags.linked", posts=linked, links=sum(map(len, post_tag_ids.values())))
    return data


# ---------------------------------------------------------------------------
# Role reconciler
# ---------------------------------------------------------------------------


def _canonical_id(canonical_roles: Sequence[Mapping[str, Any]], name: str) -> str:
    for role in canonical_roles:
        if role.get("name") == name:
            return role["id"]
    raise RoleReconciliationError(
        f"Target instance has no {name} role", property="role.name", value=name
    )


def reconcile_roles(
    dataset: ImportDataset,
    owner: Owner,
    canonical_roles: Sequence[Mapping[str, Any]],
) -> ImportDataset:
    """Rewrite imported roles and role assignments onto the target's roles.

    Unknown role names fall back to Author. An assignment that would hand the
    owner role to anyone but the real owner is turned into Administrator.
    """
    data = copy.deepcopy(dataset)
    author_id = _canonical_id(canonical_roles, AUTHOR_ROLE)
    administrator_id = _canonical_id(canonical_roles, ADMINISTRATOR_ROLE)
    by_name = {role["name"]: role["id"] for role in canonical_roles}

    if not data.get("roles"):
        data["roles"] = [dict(role) for role in canonical_roles]

    for role in data["roles"]:
        role["oldId"] = role.get("id")
        if role.get("name") in by_name:
            role["id"] = by_name[role["name"]]
        else:
            log.info("import.roles.demoted", role=role.get("name"), to=AUTHOR_ROLE)
            inc_counter("reconcile.roles.demoted")
            role["id"] = author_id

    for assignment in data.get("roles_users") or []:
        role = next(
            (r for r in data["roles"] if same_id(r["oldId"], assignment.get("role_id"))),
            None,
        )
        if role is None:
            raise RoleReconciliationError(
                f"Role assignment references unknown role {assignment.get('role_id')}",
                property="roles_users.role_id",
                value=assignment.get("role_id"),
            )
        assignment["role_id"] = role["id"]

        user = _find_row(data.get("users"), assignment.get("user_id"))
        if user is None:
            log.warning("import.roles.assignment_inert", user_id=assignment.get("user_id"))
            inc_counter("reconcile.roles.assignment_inert")
            continue

        if (
            assignment["role_id"] == owner.privileged_role_id
            and user.get("email")
            and user["email"] != owner.email
        ):
            log.warning("import.roles.owner_demoted", email=user["email"])
            inc_counter("reconcile.roles.owner_demoted")
            assignment["role_id"] = administrator_id
            user["roles"] = [administrator_id]

        # one role per user
        if not user.get("roles"):
            user["roles"] = [assignment["role_id"]]

    return data


# ---------------------------------------------------------------------------
# Foreign-key remapper
# ---------------------------------------------------------------------------


def _referenced_user_ids(data: ImportDataset, tables: Iterable[str]) -> list[str]:
    pending: dict[str, None] = {}
    for table in tables:
        for row in data.get(table) or []:
            for key in USER_REFERENCE_FIELDS:
                if row.get(key) is not None:
                    pending.setdefault(str(row[key]), None)
    return list(pending)


def resolve_user_references(
    dataset: ImportDataset,
    owner: Owner,
    existing_users: ExistingUsersIndex,
    affected_tables: Iterable[str],
    *,
    is_owner_user: Callable[[str], bool] | None = None,
    is_external_user: Callable[[str], bool] | None = None,
    external_user_id: str | None = None,
    settings: Settings | None = None,
) -> UserIdentityMap:
    """Map every user id referenced by ``affected_tables`` to a target id.

    Matching entries of ``existing_users`` get their ``import_id`` set; that
    is how callers learn which imported id became which account.

    Raises:
        UnknownUserReference: an id is neither an imported user with a known
            email, the owner sentinel, nor the external sentinel.
    """
    if is_owner_user is None or is_external_user is None or external_user_id is None:
        settings = settings or load_settings()
    if is_owner_user is None:
        is_owner_user = lambda uid: identity.is_owner_user(uid, settings)  # noqa: E731
    if is_external_user is None:
        is_external_user = lambda uid: identity.is_external_user(uid, settings)  # noqa: E731
    if external_user_id is None:
        external_user_id = identity.external_user_id(settings)

    user_map: UserIdentityMap = {}
    for import_id in _referenced_user_ids(dataset, affected_tables):
        found = _find_row(dataset.get("users"), import_id)
        email = found.get("email") if found else None

        if email and email in existing_users:
            existing_users[email].import_id = import_id
            user_map[import_id] = existing_users[email].real_id
        elif is_owner_user(import_id):
            entry = existing_users.get(owner.email)
            if entry is None:
                raise UnknownUserReference(import_id)
            entry.import_id = import_id
            user_map[import_id] = entry.real_id
        elif is_external_user(import_id):
            user_map[import_id] = external_user_id
        else:
            log.error("import.remap.unknown_user", user_id=import_id)
            raise UnknownUserReference(import_id)

    log.info("import.remap.resolved", users=len(user_map))
    return user_map


def remap_user_references(
    dataset: ImportDataset,
    owner: Owner,
    existing_users: ExistingUsersIndex,
    affected_tables: Iterable[str],
    **providers: Any,
) -> ImportDataset:
    """Return a copy of ``dataset`` with user foreign keys pointing at target users.

    All ids are resolved before any row is rewritten; on UnknownUserReference
    nothing has been rewritten. ``providers`` are passed through to
    ``resolve_user_references``.
    """
    tables = list(affected_tables)
    user_map = resolve_user_references(dataset, owner, existing_users, tables, **providers)
    return apply_user_map(dataset, user_map, tables)


def apply_user_map(
    dataset: ImportDataset, user_map: UserIdentityMap, affected_tables: Iterable[str]
) -> ImportDataset:
    """Rewrite non-null user foreign keys of ``affected_tables`` through ``user_map``."""
    data = copy.deepcopy(dataset)
    for table in affected_tables:
        for row in data.get(table) or []:
            for key in USER_REFERENCE_FIELDS:
                if row.get(key) is not None:
                    row[key] = user_map[str(row[key])]
    return data
