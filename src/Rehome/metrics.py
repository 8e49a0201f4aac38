"""In-process counters and histograms for import runs.

Counter names are dotted (``importer.tag.created``). ``get_counters`` folds
histograms in as ``histo.<name>.<bucket>``, ``.sum`` and ``.count`` so an
import summary can dump every metric as one flat mapping.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

DEFAULT_BUCKETS_MS = (1, 2, 5, 10, 20, 50, 100, 250, 500, 1000, 2000, 5000)


@dataclass
class _Histogram:
    buckets: Counter = field(default_factory=Counter)
    total: int = 0
    count: int = 0

    def observe(self, value: int, bounds: tuple[int, ...]) -> None:
        label = next((f"le_{ub}" for ub in bounds if value <= ub), f"gt_{bounds[-1]}")
        self.buckets[label] += 1
        self.total += int(value)
        self.count += 1


_counters: Counter = Counter()
_histograms: dict[str, _Histogram] = {}


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def reset_counters() -> None:
    _counters.clear()
    _histograms.clear()


def get_counters() -> dict[str, int]:
    out = dict(_counters)
    for name, histo in _histograms.items():
        for label, cnt in histo.buckets.items():
            out[f"histo.{name}.{label}"] = cnt
        out[f"histo.{name}.sum"] = histo.total
        out[f"histo.{name}.count"] = histo.count
    return out


def observe_histogram(name: str, value: int, *, buckets: list[int] | None = None) -> None:
    """Record ``value`` under the first ``le_<bound>`` bucket it fits, else ``gt_<last>``."""
    bounds = tuple(buckets) if buckets else DEFAULT_BUCKETS_MS
    _histograms.setdefault(name, _Histogram()).observe(value, bounds)


def record_outcome(entity_kind: str, status: str) -> None:
    """Count one importer row outcome, per kind and across kinds."""
    inc_counter(f"importer.{entity_kind}.{status}")
    inc_counter(f"importer.rows.{status}")
