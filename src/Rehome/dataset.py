"""Shapes shared by the reconciliation passes, importers and storage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# table name -> ordered rows, as produced by the export loader
ImportDataset = dict[str, list[dict[str, Any]]]

# Row fields that reference a user of the exporting instance
USER_REFERENCE_FIELDS: tuple[str, ...] = ("created_by", "updated_by", "published_by", "author_id")

OWNER_ROLE = "Owner"
ADMINISTRATOR_ROLE = "Administrator"
AUTHOR_ROLE = "Author"


@dataclass(frozen=True)
class Owner:
    """The target instance's owner account."""

    id: str
    email: str
    role_ids: tuple[str, ...]

    @property
    def privileged_role_id(self) -> str:
        return self.role_ids[0]


@dataclass
class ExistingUser:
    """Entry of the existing-users index, keyed by email.

    ``real_id`` never changes; ``import_id`` is filled in by the remapper once
    an imported id has been matched to this account.
    """

    real_id: str
    import_id: str | None = None


ExistingUsersIndex = dict[str, ExistingUser]


def same_id(a: Any, b: Any) -> bool:
    """Compare row ids by string form; exports mix numeric and string ids."""
    if a is None or b is None:
        return False
    return str(a) == str(b)


def load_export(raw: dict[str, Any]) -> ImportDataset:
    """Pull the table data out of a parsed export file.

    Accepts the wrapped form ``{"db": [{"meta": ..., "data": {...}}]}`` as
    well as a bare ``{"data": {...}}`` or a plain table mapping.
    """
    if "db" in raw:
        if not raw["db"]:
            raise ValueError("export contains no database section")
        raw = raw["db"][0]
    tables = raw.get("data", raw)
    if not isinstance(tables, dict):
        raise ValueError("export data must map table names to rows")
    return {
        str(name): [dict(row) for row in rows]
        for name, rows in tables.items()
        if isinstance(rows, list)
    }
