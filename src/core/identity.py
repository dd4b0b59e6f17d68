"""App identity management (core domain).

Apps are identified by a unique name and a unique 32 character hex api key.
The key is generated once when the App is first stored and never changes
afterwards. Uniqueness is enforced by the storage adapter; the checks here
only exist to produce field-scoped validation errors.
"""

from __future__ import annotations

import dataclasses
import logging
import secrets
from typing import Iterable, List, Optional, Tuple

from core.config import NotificationConfig
from core.errors import AppNotFoundError, ConflictError, ValidationError
from core.models import App
from core.ports import StoragePort
from core.repository_url import normalize

LOGGER = logging.getLogger(__name__)

# Attributes that may be changed after creation.
UPDATABLE_FIELDS = frozenset(
    {"name", "github_url", "notify_all_users", "notify_on_errs", "email_at_notices"}
)


def generate_api_key() -> str:
    """Return a new random api key (32 lowercase hex characters)."""

    return secrets.token_hex(16)


def _validate_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise ValidationError("name", "blank", "name can't be blank")
    return name


def _validate_email_at_notices(values: Iterable[int]) -> Tuple[int, ...]:
    try:
        parsed = tuple(values)
    except TypeError as exc:
        raise ValidationError("email_at_notices", "invalid") from exc
    for value in parsed:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(
                "email_at_notices",
                "invalid",
                "email_at_notices must contain positive integers",
            )
    return parsed


class AppRegistry:
    """Creates, updates and looks up Apps."""

    def __init__(
        self,
        storage: StoragePort,
        defaults: Optional[NotificationConfig] = None,
        max_key_attempts: int = 5,
    ) -> None:
        self._storage = storage
        self._defaults = defaults or NotificationConfig()
        self._max_key_attempts = max_key_attempts

    def create(
        self,
        name: str,
        *,
        api_key: Optional[str] = None,
        github_url: str = "",
        notify_all_users: bool = False,
        notify_on_errs: Optional[bool] = None,
        email_at_notices: Optional[Iterable[int]] = None,
    ) -> App:
        """Validate and persist a new App, generating its api key if needed.

        Raises ``ValidationError`` for a blank or duplicate name and for a
        caller-supplied api key that is already taken.
        """

        name = _validate_name(name)
        if self._storage.find_app_by_name(name) is not None:
            raise ValidationError("name", "duplicate", "name is already taken")

        supplied_key = api_key is not None
        if supplied_key and self._storage.find_app_by_api_key(api_key) is not None:
            raise ValidationError("api_key", "duplicate", "api_key is already taken")

        if notify_on_errs is None:
            notify_on_errs = self._defaults.notify_on_errs
        if email_at_notices is None:
            email_at_notices = self._defaults.email_at_notices

        draft = App(
            id=None,
            name=name,
            api_key=api_key,
            github_url=normalize(github_url or ""),
            notify_all_users=bool(notify_all_users),
            notify_on_errs=bool(notify_on_errs),
            email_at_notices=_validate_email_at_notices(email_at_notices),
        )

        for _ in range(self._max_key_attempts):
            candidate = draft if supplied_key else dataclasses.replace(draft, api_key=generate_api_key())
            try:
                app = self._storage.insert_app(candidate)
            except ConflictError as exc:
                if exc.field == "name":
                    raise ValidationError("name", "duplicate", "name is already taken") from exc
                if exc.field == "api_key" and not supplied_key:
                    LOGGER.warning("Generated api key collided, retrying")
                    continue
                raise ValidationError(exc.field, "duplicate", f"{exc.field} is already taken") from exc
            LOGGER.info("Created app %s (id=%s)", app.name, app.id)
            return app

        raise ValidationError(
            "api_key",
            "duplicate",
            f"could not generate a unique api_key in {self._max_key_attempts} attempts",
        )

    def update(self, app: App, **changes) -> App:
        """Apply ``changes`` to a stored App.

        ``api_key`` can never be changed; passing a different value raises
        ``ValidationError(field="api_key", reason="immutable")``.
        """

        if app.id is None:
            raise ValueError("App must be stored before it can be updated")

        if "api_key" in changes:
            if changes.pop("api_key") != app.api_key:
                raise ValidationError("api_key", "immutable", "api_key cannot be changed")

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown App fields: {', '.join(sorted(unknown))}")

        if "name" in changes:
            changes["name"] = _validate_name(changes["name"])
            other = self._storage.find_app_by_name(changes["name"])
            if other is not None and other.id != app.id:
                raise ValidationError("name", "duplicate", "name is already taken")
        if "github_url" in changes:
            changes["github_url"] = normalize(changes["github_url"] or "")
        if "email_at_notices" in changes:
            changes["email_at_notices"] = _validate_email_at_notices(changes["email_at_notices"])

        updated = dataclasses.replace(app, **changes)
        try:
            return self._storage.update_app(updated)
        except ConflictError as exc:
            if exc.field == "api_key":
                raise ValidationError("api_key", "immutable", "api_key cannot be changed") from exc
            raise ValidationError(exc.field, "duplicate", f"{exc.field} is already taken") from exc

    def get_by_api_key(self, api_key: str) -> App:
        app = self._storage.find_app_by_api_key(api_key)
        if app is None:
            raise AppNotFoundError("No app with the given api key")
        return app

    def get_by_name(self, name: str) -> App:
        app = self._storage.find_app_by_name(name)
        if app is None:
            raise AppNotFoundError(f"No app named {name!r}")
        return app

    def list_apps(self) -> List[App]:
        return self._storage.list_apps()
