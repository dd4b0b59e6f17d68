"""Ports (interfaces) used by the core.

Ports define the minimal contracts for storage, user directory and
notification adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from core.models import App, Err, Fingerprint, Occurrence, Problem, User


class StoragePort(Protocol):
    """Storage operations required by the registry and the dedup engine.

    Implementations must enforce uniqueness of App name, App api_key and the
    (app, klass, component, action, environment) tuple themselves, raising
    ``ConflictError`` on violation and ``StorageError`` on any other failure.
    """

    def insert_app(self, app: App) -> App:
        ...

    def update_app(self, app: App) -> App:
        ...

    def find_app_by_name(self, name: str) -> Optional[App]:
        ...

    def find_app_by_api_key(self, api_key: str) -> Optional[App]:
        ...

    def list_apps(self) -> List[App]:
        ...

    def find_err(self, app_id: int, fingerprint: Fingerprint) -> Optional[Err]:
        ...

    def create_problem_with_err(
        self,
        app_id: int,
        fingerprint: Fingerprint,
        noticed_at: Optional[datetime] = None,
    ) -> Err:
        ...

    def get_problem(self, problem_id: int) -> Problem:
        ...

    def register_notice(self, problem_id: int, noticed_at: datetime) -> Problem:
        ...

    def resolve_problem(self, problem_id: int) -> Problem:
        ...

    def count_problems(self, app_id: Optional[int] = None) -> int:
        ...


class UserDirectoryPort(Protocol):
    """Read access to users and watchers, owned outside the core."""

    def all_users(self) -> Iterable[User]:
        ...

    def watchers_of(self, app: App) -> Iterable[User]:
        ...


class NotifierPort(Protocol):
    """Delivery of Problem alerts."""

    def send(self, app: App, occurrence: Occurrence, recipients: Iterable[User]) -> None:
        ...
