"""Error deduplication (core domain).

Each distinct fingerprint within an App maps to exactly one Problem. The
get-or-create is made safe under concurrency by the storage adapter: it
creates the Problem and its Err in one transaction guarded by a unique index
on the fingerprint tuple. A losing writer gets ``ConflictError`` and re-reads
the winner's Err.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from core.errors import ConflictError, StorageError
from core.fingerprint import FingerprintMatcher
from core.models import App, Err, Fingerprint, Occurrence
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


class DedupEngine:
    """Atomic find-or-create of Problems keyed by fingerprint."""

    def __init__(self, storage: StoragePort) -> None:
        self._storage = storage
        self._matcher = FingerprintMatcher(storage)

    def find(self, app: App, fingerprint: Fingerprint) -> Optional[Err]:
        return self._matcher.find(app, fingerprint)

    def find_or_create(self, app: App, fingerprint: Fingerprint) -> Tuple[Err, bool]:
        """Return ``(err, created)`` for ``fingerprint`` within ``app``."""

        return self._find_or_create(app, fingerprint, noticed_at=None)

    def _find_or_create(
        self,
        app: App,
        fingerprint: Fingerprint,
        noticed_at: Optional[datetime],
    ) -> Tuple[Err, bool]:
        existing = self._matcher.find(app, fingerprint)
        if existing is not None:
            return existing, False

        try:
            err = self._storage.create_problem_with_err(app.id, fingerprint, noticed_at)
        except ConflictError as exc:
            # Another worker created it between our find and our insert.
            existing = self._matcher.find(app, fingerprint)
            if existing is None:
                raise StorageError(
                    f"Conflict creating problem for app {app.id} but no matching err was found"
                ) from exc
            LOGGER.warning(
                "Concurrent problem creation for app %s (%s) resolved by re-read",
                app.name,
                fingerprint.klass,
            )
            return existing, False

        LOGGER.info(
            "New problem %s for app %s: %s %s#%s [%s]",
            err.problem_id,
            app.name,
            fingerprint.klass,
            fingerprint.component,
            fingerprint.action,
            fingerprint.environment,
        )
        return err, True

    def record(self, app: App, fingerprint: Fingerprint) -> Occurrence:
        """Record one occurrence and count it against its Problem.

        A new Problem is stored with its first notice already counted, so a
        failure can never leave it at zero notices. An existing Problem gets
        its counter bumped and is reopened if it was resolved.
        """

        noticed_at = datetime.now(timezone.utc)
        err, created = self._find_or_create(app, fingerprint, noticed_at)
        if created:
            problem = self._storage.get_problem(err.problem_id)
        else:
            problem = self._storage.register_notice(err.problem_id, noticed_at)
        return Occurrence(err=err, problem=problem, created=created)
