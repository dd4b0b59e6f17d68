"""Application entry point: logging setup and the errsieve management CLI."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

import settings
from adapters.log_notifier import LogNotifier
from adapters.sqlite_storage import SQLiteStorage
from core.dedup import DedupEngine
from core.errors import ErrsieveError
from core.identity import AppRegistry
from core.notifications import NotificationResolver
from core.processor import ReportProcessor
from core.repository_url import has_repository

NAME = "ERRSIEVE"
FONT = "tarty-1"

_API_KEY_RE = re.compile(r"\b([a-f0-9]{4})[a-f0-9]{28}\b")

console = Console()


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    """Masks configured secret values and api keys in every log line."""

    def __init__(self, secrets: list[str], mask_api_keys: bool, **kwargs) -> None:
        super().__init__(**kwargs)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)
        self._mask_api_keys = mask_api_keys

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        if self._mask_api_keys:
            message = _API_KEY_RE.sub(r"\1***", message)
        return message


def _build_formatter(config: dict) -> _RedactingFormatter:
    redact_cfg = config.get("redact", {})
    enabled = bool(redact_cfg.get("enabled", False))
    # Patterns name environment variables whose values must never be logged.
    secrets = [os.getenv(name, "") for name in redact_cfg.get("patterns", [])] if enabled else []
    return _RedactingFormatter(
        secrets,
        mask_api_keys=enabled,
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _rotating_file_handler(file_cfg: dict) -> logging.Handler:
    path = file_cfg.get("path", "logs/errsieve.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_rotating_file_handler(file_cfg))
    if not handlers:
        return

    formatter = _build_formatter(config)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)


def _build_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.STORAGE.db_path, settings.STORAGE.timeout_seconds)
    storage.init_db()
    return storage


def _init_db(args: argparse.Namespace) -> None:
    _build_storage()
    console.print(f"Database ready at {settings.STORAGE.db_path}")


def _create_app(args: argparse.Namespace) -> None:
    registry = AppRegistry(_build_storage(), settings.NOTIFICATIONS)
    app = registry.create(
        args.name,
        github_url=args.github_url,
        notify_all_users=args.notify_all_users,
    )
    console.print(f"Created {app.name} with api key {app.api_key}")


def _update_app(args: argparse.Namespace) -> None:
    registry = AppRegistry(_build_storage(), settings.NOTIFICATIONS)
    app = registry.get_by_name(args.name)
    changes = {}
    if args.rename is not None:
        changes["name"] = args.rename
    if args.github_url is not None:
        changes["github_url"] = args.github_url
    if args.notify_all_users is not None:
        changes["notify_all_users"] = args.notify_all_users
    app = registry.update(app, **changes)
    console.print(f"Updated {app.name}")


def _list_apps(args: argparse.Namespace) -> None:
    storage = _build_storage()
    registry = AppRegistry(storage, settings.NOTIFICATIONS)
    apps = registry.list_apps()
    if not apps:
        console.print("No apps registered.")
        return

    table = Table(title="Apps")
    table.add_column("Name")
    table.add_column("API key")
    table.add_column("Repository")
    table.add_column("Notify")
    table.add_column("Problems", justify="right")
    for app in apps:
        table.add_row(
            app.name,
            app.api_key,
            app.github_url if has_repository(app) else "-",
            "all users" if app.notify_all_users else "watchers",
            str(storage.count_problems(app.id)),
        )
    console.print(table)


def _add_user(args: argparse.Namespace) -> None:
    user = _build_storage().add_user(args.email, args.name)
    console.print(f"Added user {user.email}")


def _watch(args: argparse.Namespace) -> None:
    storage = _build_storage()
    app = AppRegistry(storage, settings.NOTIFICATIONS).get_by_name(args.app)
    user = storage.find_user_by_email(args.email)
    if user is not None:
        storage.add_watcher(app, user=user)
    else:
        storage.add_watcher(app, email=args.email)
    console.print(f"{args.email} now watches {app.name}")


def _report(args: argparse.Namespace) -> None:
    storage = _build_storage()
    processor = ReportProcessor(
        registry=AppRegistry(storage, settings.NOTIFICATIONS),
        engine=DedupEngine(storage),
        resolver=NotificationResolver(storage),
        notifier=LogNotifier(mode=settings.NOTIFICATION_FORMAT),
    )
    occurrence = processor.handle(
        args.api_key,
        {
            "klass": args.klass,
            "component": args.component,
            "action": args.action,
            "environment": args.environment,
        },
    )
    state = "new problem" if occurrence.created else "existing problem"
    console.print(
        f"Recorded as {state} {occurrence.problem.id} "
        f"({occurrence.problem.notices_count} occurrence(s))"
    )


def _recipients(args: argparse.Namespace) -> None:
    storage = _build_storage()
    app = AppRegistry(storage, settings.NOTIFICATIONS).get_by_name(args.app)
    recipients = NotificationResolver(storage).recipients(app)
    if not recipients:
        console.print(f"Nobody is notified for {app.name}.")
        return
    for user in sorted(recipients, key=lambda item: item.email):
        console.print(user.email)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="errsieve")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db = subparsers.add_parser("init-db", help="Create the database schema")
    init_db.set_defaults(handler=_init_db)

    create = subparsers.add_parser("create-app", help="Register a new app")
    create.add_argument("name")
    create.add_argument("--github-url", default="")
    create.add_argument("--notify-all-users", action="store_true")
    create.set_defaults(handler=_create_app)

    update = subparsers.add_parser("update-app", help="Change an app's settings")
    update.add_argument("name")
    update.add_argument("--rename")
    update.add_argument("--github-url")
    update.add_argument("--notify-all-users", action=argparse.BooleanOptionalAction, default=None)
    update.set_defaults(handler=_update_app)

    list_apps = subparsers.add_parser("list-apps", help="Show registered apps")
    list_apps.set_defaults(handler=_list_apps)

    add_user = subparsers.add_parser("add-user", help="Add a user to the roster")
    add_user.add_argument("email")
    add_user.add_argument("--name", default="")
    add_user.set_defaults(handler=_add_user)

    watch = subparsers.add_parser("watch", help="Subscribe an email address to an app")
    watch.add_argument("app")
    watch.add_argument("email")
    watch.set_defaults(handler=_watch)

    report = subparsers.add_parser("report", help="Record one error occurrence")
    report.add_argument("api_key")
    report.add_argument("klass")
    report.add_argument("--component", default="")
    report.add_argument("--action", default="")
    report.add_argument("--environment", default="production")
    report.set_defaults(handler=_report)

    recipients = subparsers.add_parser("recipients", help="Show who is notified for an app")
    recipients.add_argument("app")
    recipients.set_defaults(handler=_recipients)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging()
    if args.command == "init-db":
        _print_banner()

    try:
        args.handler(args)
    except ErrsieveError as exc:
        logging.getLogger(__name__).debug("Command %s failed", args.command, exc_info=True)
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
