"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage-specific row types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

DEFAULT_EMAIL_AT_NOTICES: Tuple[int, ...] = (1, 10, 100)


@dataclass(frozen=True)
class App:
    """A registered client application that reports errors."""

    id: Optional[int]
    name: str
    api_key: Optional[str]
    github_url: str = ""
    notify_all_users: bool = False
    notify_on_errs: bool = True
    email_at_notices: Tuple[int, ...] = DEFAULT_EMAIL_AT_NOTICES


@dataclass(frozen=True)
class User:
    """Someone who can receive notifications.

    Email-only watchers are represented as users without an id.
    """

    id: Optional[int]
    email: str
    name: str = ""


@dataclass(frozen=True)
class Watcher:
    """Subscription of a user (or a bare email address) to one App."""

    id: Optional[int]
    app_id: int
    user_id: Optional[int] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class Fingerprint:
    """Composite dedup key of an error occurrence within one App."""

    klass: str
    component: str = ""
    action: str = ""
    environment: str = ""

    def as_tuple(self) -> Tuple[str, str, str, str]:
        return (self.klass, self.component, self.action, self.environment)


@dataclass(frozen=True)
class Problem:
    """Grouping of identical error occurrences."""

    id: int
    app_id: int
    notices_count: int = 0
    resolved: bool = False
    created_at: Optional[datetime] = None
    last_notice_at: Optional[datetime] = None


@dataclass(frozen=True)
class Err:
    """Fingerprint record that identifies which occurrences belong to a Problem."""

    id: int
    problem_id: int
    app_id: int
    klass: str
    component: str
    action: str
    environment: str

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(
            klass=self.klass,
            component=self.component,
            action=self.action,
            environment=self.environment,
        )


@dataclass(frozen=True)
class Occurrence:
    """Outcome of recording one error report."""

    err: Err
    problem: Problem
    created: bool
