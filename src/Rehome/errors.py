"""Exceptions raised while reconciling and persisting an import."""

from __future__ import annotations

from typing import Any


class ImporterError(Exception):
    """Base exception for importer errors."""

    pass


class DataImportError(ImporterError):
    """The import data cannot be reconciled with the target instance.

    ``property`` names the offending field and ``value`` its value, so a caller
    can point at the bad reference without parsing the message.
    """

    def __init__(self, message: str, *, property: str | None = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.property = property
        self.value = value


class UnknownUserReference(DataImportError):
    """A user foreign key matches neither an imported nor a target account."""

    def __init__(self, user_id: str):
        super().__init__(
            f"Attempting to import data linked to unknown user id {user_id}",
            property="user.id",
            value=user_id,
        )
        self.user_id = user_id


class RoleReconciliationError(DataImportError):
    """The imported role tables are inconsistent with each other."""

    pass


class NotFoundError(ImporterError):
    """Storage could not find the row an edit targeted."""

    def __init__(self, entity_kind: str, key: Any):
        super().__init__(f"{entity_kind} not found: {key}")
        self.entity_kind = entity_kind
        self.key = key


class NoPermissionError(ImporterError):
    """A write was attempted outside the internal context without an actor."""

    pass


class ImportRunFailed(ImporterError):
    """One or more rows failed and the run was rolled back."""

    def __init__(self, failures: list):
        kinds = sorted({f.entity_kind for f in failures})
        super().__init__(f"{len(failures)} row(s) failed to import ({', '.join(kinds)})")
        self.failures = failures
