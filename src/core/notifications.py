"""Notification recipient resolution (core domain)."""

from __future__ import annotations

from typing import FrozenSet

from core.models import App, Problem, User
from core.ports import UserDirectoryPort


class NotificationResolver:
    """Decides who hears about an App's Problems."""

    def __init__(self, directory: UserDirectoryPort) -> None:
        self._directory = directory

    def recipients(self, app: App) -> FrozenSet[User]:
        """Every user when ``notify_all_users`` is set, otherwise the App's watchers.

        An App without watchers yields an empty set.
        """

        if app.notify_all_users:
            return frozenset(self._directory.all_users())
        return frozenset(self._directory.watchers_of(app))


def should_notify(app: App, problem: Problem) -> bool:
    """True when the Problem just reached one of the App's alert thresholds."""

    return app.notify_on_errs and problem.notices_count in app.email_at_notices
