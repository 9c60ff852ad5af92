from __future__ import annotations

from typing import Any


class DashboardError(Exception):
    """Base error for the dashboard persistence layer."""


class PayloadValidationError(DashboardError):
    """Externally supplied payload does not match its entity schema."""

    def __init__(self, kind: str, errors: list[dict[str, Any]]) -> None:
        self.kind = kind
        self.errors = errors
        fields = ", ".join(".".join(str(part) for part in err.get("loc", ())) or "<root>" for err in errors)
        super().__init__(f"invalid {kind} payload: {fields}")


class RecordNotFoundError(DashboardError):
    """Operation targets a record that does not exist."""


class StoreError(DashboardError):
    """Collection or settings file read/write failure."""


class UnsupportedQueryError(StoreError):
    """Query uses an operator or value type the collection cannot evaluate."""


class SettingsWriteError(StoreError):
    """Site settings file could not be written."""
