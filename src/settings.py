"""Static configuration for errsieve.

All user-editable settings (database, notifications, logging) live in a
single JSON file for quick edits without touching Python. The file location
can be overridden with ERRSIEVE_CONFIG, typically from a .env file.
"""

import json
import os

from dotenv import load_dotenv

from core.config import NotificationConfig, StorageConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

CONFIG_PATH = os.getenv("ERRSIEVE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Where to store the SQLite database, and how long to wait on a locked one.
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "errsieve.db"))
DB_TIMEOUT_SECONDS = float(_database.get("timeout_seconds", 30))

# Defaults applied to new apps.
# - NOTIFY_ON_ERRS: send alerts for problems at all
# - EMAIL_AT_NOTICES: occurrence counts at which an alert goes out
_notifications = _CONFIG.get("notifications", {})
NOTIFY_ON_ERRS = bool(_notifications.get("notify_on_errs", True))
EMAIL_AT_NOTICES = tuple(int(n) for n in _notifications.get("email_at_notices", [1, 10, 100]))
# Alert body format used by the notifier adapter: "text" or "html".
NOTIFICATION_FORMAT = _notifications.get("format", "text")

STORAGE = StorageConfig(db_path=DB_PATH, timeout_seconds=DB_TIMEOUT_SECONDS)
NOTIFICATIONS = NotificationConfig(notify_on_errs=NOTIFY_ON_ERRS, email_at_notices=EMAIL_AT_NOTICES)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
