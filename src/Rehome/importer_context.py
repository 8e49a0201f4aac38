"""Aggregation of importer outcomes for one run.

``ImportRunContext`` collects the outcomes each entity importer returns, in
the order the orchestrator ran them, and exposes:

* per-kind, per-status counts for the run summary
* the flat list of ImportFailure descriptors for the failure report
* the mapping of imported user ids to target accounts, once remapping ran

It has no database side effects; the orchestrator decides commit or
rollback from ``has_failures``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from Rehome.entity_importers import ImportFailure, ImportOutcome, partition_outcomes

# Row keys never written to the failure report, which ends up in the run log
_SECRET_ROW_KEYS = frozenset({"password"})


@dataclass
class ImportRunContext:
    outcomes: dict[str, list[ImportOutcome]] = field(default_factory=dict)
    user_map: dict[str, str] = field(default_factory=dict)
    _failures: list[ImportFailure] = field(default_factory=list, init=False)

    def record(self, entity_kind: str, outcomes: Iterable[ImportOutcome]) -> None:
        """Store one importer's outcomes; a kind recorded twice accumulates."""
        batch = list(outcomes)
        self.outcomes.setdefault(entity_kind, []).extend(batch)
        _, failures = partition_outcomes(batch)
        self._failures.extend(failures)

    @property
    def failures(self) -> list[ImportFailure]:
        return list(self._failures)

    @property
    def has_failures(self) -> bool:
        return bool(self._failures)

    def summary_counts(self) -> dict[str, dict[str, int]]:
        """Return ``{kind: {status: count}}`` with deterministic key order."""
        summary: dict[str, dict[str, int]] = {}
        for kind in sorted(self.outcomes):
            counts: dict[str, int] = {}
            for outcome in self.outcomes[kind]:
                counts[outcome.status] = counts.get(outcome.status, 0) + 1
            summary[kind] = dict(sorted(counts.items()))
        return summary

    def failure_report(self) -> list[dict[str, Any]]:
        return [
            {
                "entity_kind": f.entity_kind,
                "error": str(f.raw_error),
                "error_type": type(f.raw_error).__name__,
                "row": {k: v for k, v in f.row_data.items() if k not in _SECRET_ROW_KEYS},
            }
            for f in self._failures
        ]


__all__ = ["ImportRunContext"]
