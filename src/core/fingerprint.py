"""Fingerprint construction and matching (core domain)."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from core.errors import ValidationError
from core.models import App, Err, Fingerprint
from core.ports import StoragePort

# Report keys accepted for each fingerprint field, in lookup order.
FIELD_ALIASES = {
    "klass": ("klass", "error_class"),
    "component": ("component",),
    "action": ("action",),
    "environment": ("environment", "rails_env", "env"),
}


def _first_value(report: Mapping[str, Any], keys) -> str:
    for key in keys:
        value = report.get(key)
        if value is not None:
            return str(value).strip()
    return ""


def fingerprint_from_report(report: Mapping[str, Any]) -> Fingerprint:
    """Build a Fingerprint from a parsed error report.

    Missing optional fields become empty strings; ``klass`` is required.
    """

    values = {field: _first_value(report, keys) for field, keys in FIELD_ALIASES.items()}
    if not values["klass"]:
        raise ValidationError("klass", "blank", "error class can't be blank")
    return Fingerprint(**values)


class FingerprintMatcher:
    """Finds the Err of an App that carries a given fingerprint."""

    def __init__(self, storage: StoragePort) -> None:
        self._storage = storage

    def find(self, app: App, fingerprint: Fingerprint) -> Optional[Err]:
        """Return the matching Err, or None when the App has no such fingerprint."""

        if app.id is None:
            raise ValueError("App must be stored before matching errors")
        return self._storage.find_err(app.id, fingerprint)
