"""Core error report processing pipeline.

This module is transport-agnostic. It only relies on ports for storage,
users and notifications, so an HTTP endpoint, a queue consumer or the CLI
can all feed reports through it unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from core.dedup import DedupEngine
from core.fingerprint import fingerprint_from_report
from core.identity import AppRegistry
from core.models import Occurrence
from core.notifications import NotificationResolver, should_notify
from core.ports import NotifierPort

LOGGER = logging.getLogger(__name__)


class ReportProcessor:
    """Orchestrates app lookup, dedup, and notifications for one report."""

    def __init__(
        self,
        registry: AppRegistry,
        engine: DedupEngine,
        resolver: NotificationResolver,
        notifier: NotifierPort,
    ) -> None:
        self._registry = registry
        self._engine = engine
        self._resolver = resolver
        self._notifier = notifier

    def handle(self, api_key: str, report: Mapping[str, Any]) -> Occurrence:
        """Process one parsed error report sent with ``api_key``."""

        app = self._registry.get_by_api_key(api_key)
        fingerprint = fingerprint_from_report(report)
        occurrence = self._engine.record(app, fingerprint)

        if not should_notify(app, occurrence.problem):
            return occurrence

        recipients = self._resolver.recipients(app)
        if not recipients:
            LOGGER.info("No recipients for app %s, skipping notification", app.name)
            return occurrence

        self._notifier.send(app, occurrence, recipients)
        LOGGER.info(
            "Notified %s recipient(s) for problem %s of %s",
            len(recipients),
            occurrence.problem.id,
            app.name,
        )
        return occurrence
