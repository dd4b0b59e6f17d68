"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from core.models import DEFAULT_EMAIL_AT_NOTICES


@dataclass(frozen=True)
class StorageConfig:
    """Location and busy timeout of the SQLite database."""

    db_path: str
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class NotificationConfig:
    """Defaults applied to newly created Apps."""

    notify_on_errs: bool = True
    email_at_notices: Tuple[int, ...] = DEFAULT_EMAIL_AT_NOTICES
