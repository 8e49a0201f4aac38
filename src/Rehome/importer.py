"""Import orchestrator.

Runs one export dataset into the target instance inside a single transaction:

1. load owner, canonical roles and the existing-users index
2. link post tags, reconcile roles
3. import users, then reload the index so new accounts can be referenced
4. remap user foreign keys of the affected tables
5. import tags, posts, settings, subscribers and apps, in that order

Rows within one entity kind run concurrently; kinds run one after another.
Reconciliation errors abort the run and roll back every write. Per-row
failures are collected; whether they roll the run back is decided by
``Settings.import_rollback_on_failure``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from Rehome import repos
from Rehome.config import Settings, load_settings
from Rehome.dataset import ImportDataset
from Rehome.db import ImportTransaction, session_scope
from Rehome.entity_importers import (
    ImportFailure,
    import_apps,
    import_posts,
    import_settings,
    import_subscribers,
    import_tags,
    import_users,
)
from Rehome.errors import DataImportError, ImportRunFailed
from Rehome.identity import new_object_id
from Rehome.importer_context import ImportRunContext
from Rehome.metrics import inc_counter, observe_histogram
from Rehome.reconcile import (
    apply_user_map,
    link_post_tags,
    reconcile_roles,
    resolve_user_references,
)

log = structlog.get_logger()


@dataclass
class ImportResult:
    run_id: str
    counts: dict[str, dict[str, int]]
    failures: list[ImportFailure] = field(default_factory=list)
    user_map: dict[str, str] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures


def record_rollback(phase: str, run_id: str, reason: str) -> None:
    """Record metrics and logs for an import rollback."""
    inc_counter("importer.rollback")
    inc_counter(f"importer.rollback.{phase}")
    log.error("import.rollback", run_id=run_id, phase=phase, reason=reason, outcome="rollback")


async def import_dataset(
    s: AsyncSession,
    dataset: ImportDataset,
    *,
    settings: Settings | None = None,
) -> ImportRunContext:
    """Reconcile and persist ``dataset`` using the open session ``s``.

    Does not commit. Raises DataImportError subclasses for reconciliation
    failures; per-row failures are returned in the context.
    """
    settings = settings or load_settings()
    context = ImportRunContext()

    owner = await repos.get_owner(s)
    canonical_roles = await repos.list_roles(s)
    existing_users = await repos.load_existing_users(s)

    data = link_post_tags(dataset)
    data = reconcile_roles(data, owner, canonical_roles)

    tx = ImportTransaction(session=s, actor_id=owner.id)

    context.record(
        "user",
        await import_users(
            data.get("users"),
            existing_users,
            tx,
            credential_length=settings.import_credential_length,
        ),
    )

    # Accounts created above are now valid targets for foreign keys
    existing_users = await repos.load_existing_users(s)
    context.user_map = resolve_user_references(
        data, owner, existing_users, settings.import_affected_tables, settings=settings
    )
    data = apply_user_map(data, context.user_map, settings.import_affected_tables)

    context.record("tag", await import_tags(data.get("tags"), tx))
    context.record("post", await import_posts(data.get("posts"), tx))
    context.record("setting", await import_settings(data.get("settings"), tx))
    context.record("subscriber", await import_subscribers(data.get("subscribers"), tx))
    context.record("app", await import_apps(data.get("apps"), tx))
    return context


async def run_import(dataset: ImportDataset, *, settings: Settings | None = None) -> ImportResult:
    """Run a full import in its own transaction and report the outcome.

    Raises:
        DataImportError: reconciliation failed; nothing was written.
        ImportRunFailed: rows failed and rollback-on-failure is enabled;
            nothing was written.
    """
    settings = settings or load_settings()
    run_id = new_object_id()
    started = time.perf_counter()
    structlog.contextvars.bind_contextvars(import_run_id=run_id)
    log.info("import.started", tables=sorted(k for k, v in dataset.items() if v))
    try:
        try:
            async with session_scope() as s:
                context = await import_dataset(s, dataset, settings=settings)
                if context.has_failures and settings.import_rollback_on_failure:
                    raise ImportRunFailed(context.failures)
        except ImportRunFailed as exc:
            record_rollback("persist", run_id, str(exc))
            raise
        except DataImportError as exc:
            record_rollback("reconcile", run_id, exc.message)
            raise

        duration_ms = int((time.perf_counter() - started) * 1000)
        observe_histogram("importer.duration_ms", duration_ms)
        result = ImportResult(
            run_id=run_id,
            counts=context.summary_counts(),
            failures=context.failures,
            user_map=dict(context.user_map),
            duration_ms=duration_ms,
        )
        log.info(
            "import.completed",
            counts=result.counts,
            failures=context.failure_report() if result.failures else [],
            duration_ms=duration_ms,
        )
        return result
    finally:
        structlog.contextvars.unbind_contextvars("import_run_id")


def summarize(result: ImportResult) -> dict[str, Any]:
    """Plain-data summary of a finished run, safe to serialise."""
    return {
        "run_id": result.run_id,
        "ok": result.ok,
        "counts": result.counts,
        "failures": [
            {"entity_kind": f.entity_kind, "error": str(f.raw_error)} for f in result.failures
        ],
        "duration_ms": result.duration_ms,
    }
