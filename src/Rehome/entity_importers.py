"""Per-entity importers.

Every importer strips source ids, skips rows that miss required fields, then
submits the remaining rows as concurrent tasks and awaits them together. Each
row yields exactly one ImportOutcome, in input order; a failing row becomes a
``failed`` outcome carrying an ImportFailure and never stops its siblings.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError

from Rehome import repos
from Rehome.dataset import ExistingUsersIndex
from Rehome.db import ImportTransaction
from Rehome.errors import NotFoundError
from Rehome.identity import generate_credential
from Rehome.metrics import record_outcome

log = structlog.get_logger()

CREATED = "created"
EXISTING = "existing"
UPDATED = "updated"
TOLERATED = "tolerated"
SKIPPED = "skipped"
FAILED = "failed"

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "tag": ("name", "slug"),
    "post": ("title", "slug", "markdown"),
    "user": ("name", "slug", "email"),
    "setting": ("key",),
    "subscriber": ("email",),
    "app": ("name",),
}

# Setting categories owned by the running instance; an import never edits them
SETTINGS_BLACKLIST = frozenset({"core", "theme"})

LEGACY_SETTING_KEYS = {
    "activePlugins": "active_apps",
    "installedPlugins": "installed_apps",
}


@dataclass
class ImportFailure:
    raw_error: BaseException
    entity_kind: str
    row_data: dict[str, Any]

    def __str__(self) -> str:
        return f"{self.entity_kind}: {self.raw_error}"


@dataclass
class ImportOutcome:
    entity_kind: str
    status: str
    row_data: dict[str, Any]
    value: Any = None
    failure: ImportFailure | None = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


def strip_properties(properties: Iterable[str], rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Deep-copy ``rows`` without the given keys."""
    drop = set(properties)
    return [{k: v for k, v in copy.deepcopy(row).items() if k not in drop} for row in rows]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple, set)):
        return len(value) == 0
    return False


def is_blank(entity_kind: str, row: dict[str, Any]) -> bool:
    """True when every identifying field of ``entity_kind`` is empty.

    A row with at least one of them set is imported; storage fills in what it
    can (slugs) and rejects what it cannot.
    """
    fields = REQUIRED_FIELDS.get(entity_kind, ())
    return bool(fields) and all(_is_empty(row.get(f)) for f in fields)


def partition_outcomes(
    outcomes: Iterable[ImportOutcome],
) -> tuple[list[ImportOutcome], list[ImportFailure]]:
    successes: list[ImportOutcome] = []
    failures: list[ImportFailure] = []
    for outcome in outcomes:
        if outcome.failure is not None:
            failures.append(outcome.failure)
        else:
            successes.append(outcome)
    return successes, failures


RowHandler = Callable[[dict[str, Any]], Awaitable[ImportOutcome]]


async def _run_row(entity_kind: str, row: dict[str, Any], handler: RowHandler) -> ImportOutcome:
    try:
        outcome = await handler(row)
    except Exception as exc:
        log.warning(
            "import.row.failed",
            entity_kind=entity_kind,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        outcome = ImportOutcome(
            entity_kind, FAILED, row, failure=ImportFailure(exc, entity_kind, row)
        )
    record_outcome(entity_kind, outcome.status)
    return outcome


async def _fan_out(
    entity_kind: str,
    rows: list[dict[str, Any]],
    handler: RowHandler,
    *,
    precheck: Callable[[dict[str, Any]], ImportOutcome | None] | None = None,
) -> list[ImportOutcome]:
    """Run ``handler`` for every valid row concurrently; keep input order."""
    outcomes: list[ImportOutcome | None] = [None] * len(rows)
    pending: dict[int, Awaitable[ImportOutcome]] = {}

    for idx, row in enumerate(rows):
        if is_blank(entity_kind, row):
            log.debug(
                "import.row.skipped",
                entity_kind=entity_kind,
                fields=list(REQUIRED_FIELDS[entity_kind]),
            )
            outcomes[idx] = ImportOutcome(entity_kind, SKIPPED, row)
            record_outcome(entity_kind, SKIPPED)
            continue
        early = precheck(row) if precheck is not None else None
        if early is not None:
            outcomes[idx] = early
            record_outcome(entity_kind, early.status)
            continue
        pending[idx] = _run_row(entity_kind, row, handler)

    results = await asyncio.gather(*pending.values())
    for idx, outcome in zip(pending.keys(), results):
        outcomes[idx] = outcome

    log.info(
        "import.entity.completed",
        entity_kind=entity_kind,
        rows=len(rows),
        failed=sum(1 for o in outcomes if o is not None and not o.ok),
    )
    return [o for o in outcomes if o is not None]


async def import_tags(rows: list[dict[str, Any]] | None, tx: ImportTransaction) -> list[ImportOutcome]:
    if not rows:
        return []
    rows = strip_properties(["id"], rows)

    async def handle(tag: dict[str, Any]) -> ImportOutcome:
        async with tx.row() as s:
            found = await repos.find_one(s, "tag", name=tag.get("name"))
            if found is not None:
                return ImportOutcome("tag", EXISTING, tag, value=found)
            created = await repos.add(s, "tag", tag, internal=tx.internal, actor_id=tx.actor_id)
        return ImportOutcome("tag", CREATED, tag, value=created)

    return await _fan_out("tag", rows, handle)


async def import_posts(rows: list[dict[str, Any]] | None, tx: ImportTransaction) -> list[ImportOutcome]:
    if not rows:
        return []
    rows = strip_properties(["id"], rows)

    async def handle(post: dict[str, Any]) -> ImportOutcome:
        # Storage keeps exported timestamps while importing, so fill the gap here
        if not post.get("created_at"):
            post["created_at"] = datetime.now(timezone.utc)
        async with tx.row() as s:
            created = await repos.add(
                s,
                "post",
                post,
                internal=tx.internal,
                importing=True,
                actor_id=tx.actor_id,
            )
        return ImportOutcome("post", CREATED, post, value=created)

    return await _fan_out("post", rows, handle)


async def import_users(
    rows: list[dict[str, Any]] | None,
    existing_users: ExistingUsersIndex,
    tx: ImportTransaction,
    *,
    credential_length: int = 50,
) -> list[ImportOutcome]:
    """Create locked accounts for imported users the target does not know yet."""
    if not rows:
        return []
    # Exported password hashes are never carried over
    rows = strip_properties(["id", "password"], rows)

    def already_present(user: dict[str, Any]) -> ImportOutcome | None:
        email = user.get("email")
        if email and email in existing_users:
            return ImportOutcome("user", EXISTING, user, value=existing_users[email])
        return None

    async def handle(user: dict[str, Any]) -> ImportOutcome:
        # Insert from a copy so the credential never reaches outcome or failure rows
        payload = {**user, "password": generate_credential(credential_length), "status": "locked"}
        async with tx.row() as s:
            created = await repos.add(s, "user", payload, internal=tx.internal, actor_id=tx.actor_id)
        return ImportOutcome("user", CREATED, user, value=created)

    return await _fan_out("user", rows, handle, precheck=already_present)


async def import_settings(rows: list[dict[str, Any]] | None, tx: ImportTransaction) -> list[ImportOutcome]:
    """Update existing settings by key; core/theme settings are left alone."""
    if not rows:
        return []
    rows = strip_properties(["id"], rows)
    for row in rows:
        if row.get("key") in LEGACY_SETTING_KEYS:
            row["key"] = LEGACY_SETTING_KEYS[row["key"]]

    def blacklisted(setting: dict[str, Any]) -> ImportOutcome | None:
        if setting.get("type") in SETTINGS_BLACKLIST:
            return ImportOutcome("setting", SKIPPED, setting)
        return None

    async def handle(setting: dict[str, Any]) -> ImportOutcome:
        try:
            async with tx.row() as s:
                updated = await repos.edit(
                    s, "setting", [setting], internal=tx.internal, actor_id=tx.actor_id
                )
        except NotFoundError:
            return ImportOutcome("setting", TOLERATED, setting)
        return ImportOutcome("setting", UPDATED, setting, value=updated[0])

    return await _fan_out("setting", rows, handle, precheck=blacklisted)


async def import_subscribers(
    rows: list[dict[str, Any]] | None, tx: ImportTransaction
) -> list[ImportOutcome]:
    if not rows:
        return []
    rows = strip_properties(["id"], rows)

    async def handle(subscriber: dict[str, Any]) -> ImportOutcome:
        try:
            async with tx.row() as s:
                created = await repos.add(
                    s, "subscriber", subscriber, internal=tx.internal, actor_id=tx.actor_id
                )
        except IntegrityError as exc:
            if "unique" not in str(exc).lower():
                raise
            return ImportOutcome("subscriber", TOLERATED, subscriber)
        return ImportOutcome("subscriber", CREATED, subscriber, value=created)

    return await _fan_out("subscriber", rows, handle)


async def import_apps(rows: list[dict[str, Any]] | None, tx: ImportTransaction) -> list[ImportOutcome]:
    if not rows:
        return []
    rows = strip_properties(["id"], rows)

    async def handle(app: dict[str, Any]) -> ImportOutcome:
        async with tx.row() as s:
            found = await repos.find_one(s, "app", name=app.get("name"))
            if found is not None:
                return ImportOutcome("app", EXISTING, app, value=found)
            created = await repos.add(s, "app", app, internal=tx.internal, actor_id=tx.actor_id)
        return ImportOutcome("app", CREATED, app, value=created)

    return await _fan_out("app", rows, handle)
