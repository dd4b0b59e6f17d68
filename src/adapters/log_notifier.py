"""Logging notification adapter.

Delivery (email, webhooks) happens outside errsieve; this adapter hands each
formatted alert to the logging system, where a dispatcher can pick it up.
"""

from __future__ import annotations

import logging
from typing import Iterable

from adapters.notification_formatting import format_alert
from core.models import App, Occurrence, User

LOGGER = logging.getLogger(__name__)


class LogNotifier:
    """Notifier adapter that writes one log record per recipient."""

    def __init__(self, mode: str = "text", level: int = logging.INFO) -> None:
        self._mode = mode
        self._level = level

    def send(self, app: App, occurrence: Occurrence, recipients: Iterable[User]) -> None:
        message = format_alert(app, occurrence, mode=self._mode)
        for recipient in sorted(recipients, key=lambda user: user.email):
            LOGGER.log(self._level, "Alert for %s:\n%s", recipient.email, message)
