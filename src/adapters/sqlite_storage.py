"""SQLite storage adapter.

Implements the core StoragePort and UserDirectoryPort using a simple SQLite
database. Uniqueness (app name, api key, fingerprint) lives in unique indexes
so it holds for every process sharing the database file.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from core.errors import ConflictError, StorageError
from core.models import App, Err, Fingerprint, Problem, User, Watcher

_APP_COLUMNS = "id, name, api_key, github_url, notify_all_users, notify_on_errs, email_at_notices"
_ERR_COLUMNS = "id, problem_id, app_id, klass, component, action, environment"
_PROBLEM_COLUMNS = "id, app_id, notices_count, resolved, created_at, last_notice_at"


def _conflict_field(exc: sqlite3.IntegrityError) -> str:
    """Map an IntegrityError message to the field that caused it."""

    message = str(exc)
    if "api_key" in message:
        return "api_key"
    if "apps.name" in message:
        return "name"
    if "errs." in message:
        return "fingerprint"
    if "users.email" in message:
        return "email"
    return "unknown"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_app(row: sqlite3.Row) -> App:
    return App(
        id=row["id"],
        name=row["name"],
        api_key=row["api_key"],
        github_url=row["github_url"],
        notify_all_users=bool(row["notify_all_users"]),
        notify_on_errs=bool(row["notify_on_errs"]),
        email_at_notices=tuple(json.loads(row["email_at_notices"])),
    )


def _row_to_err(row: sqlite3.Row) -> Err:
    return Err(
        id=row["id"],
        problem_id=row["problem_id"],
        app_id=row["app_id"],
        klass=row["klass"],
        component=row["component"],
        action=row["action"],
        environment=row["environment"],
    )


def _row_to_problem(row: sqlite3.Row) -> Problem:
    return Problem(
        id=row["id"],
        app_id=row["app_id"],
        notices_count=row["notices_count"],
        resolved=bool(row["resolved"]),
        created_at=_parse_timestamp(row["created_at"]),
        last_notice_at=_parse_timestamp(row["last_notice_at"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str, timeout_seconds: float = 30.0) -> None:
        self._db_path = db_path
        self._timeout = timeout_seconds

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one transaction.

        Commits on success and rolls back on any error, translating sqlite
        errors into the core error types.
        """

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise ConflictError(_conflict_field(exc), str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables, indexes and triggers if they do not exist.

        Tables:
        - apps: registered applications, unique by name and by api_key
        - users / watchers: notification roster, managed outside the core
        - problems: deduplicated groupings, one per fingerprint per app
        - errs: fingerprint records, unique per (app, klass, component, action, environment)
        """

        with self._session() as conn:
            # WAL lets readers proceed while a dedup transaction is writing.
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS apps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    api_key TEXT NOT NULL UNIQUE,
                    github_url TEXT NOT NULL DEFAULT '',
                    notify_all_users INTEGER NOT NULL DEFAULT 0,
                    notify_on_errs INTEGER NOT NULL DEFAULT 1,
                    email_at_notices TEXT NOT NULL DEFAULT '[1, 10, 100]'
                )
                """
            )
            # The api key is written once on insert; any later change aborts.
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS apps_api_key_immutable
                BEFORE UPDATE OF api_key ON apps
                WHEN NEW.api_key IS NOT OLD.api_key
                BEGIN
                    SELECT RAISE(ABORT, 'apps.api_key is immutable');
                END
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL DEFAULT ''
                )
                """
            )
            # A watcher points at a user or carries a bare email address.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watchers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    app_id INTEGER NOT NULL REFERENCES apps(id) ON DELETE CASCADE,
                    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
                    email TEXT,
                    CHECK (user_id IS NOT NULL OR email IS NOT NULL)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS problems (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    app_id INTEGER NOT NULL REFERENCES apps(id) ON DELETE CASCADE,
                    notices_count INTEGER NOT NULL DEFAULT 0,
                    resolved INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    last_notice_at TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS errs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    problem_id INTEGER NOT NULL REFERENCES problems(id) ON DELETE CASCADE,
                    app_id INTEGER NOT NULL REFERENCES apps(id) ON DELETE CASCADE,
                    klass TEXT NOT NULL,
                    component TEXT NOT NULL DEFAULT '',
                    action TEXT NOT NULL DEFAULT '',
                    environment TEXT NOT NULL DEFAULT ''
                )
                """
            )
            # Serves both the matcher lookup and the one-problem-per-fingerprint rule.
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS errs_fingerprint
                ON errs (app_id, klass, component, action, environment)
                """
            )

    # Apps

    def insert_app(self, app: App) -> App:
        """Insert a new App and return it with its id."""

        if not app.api_key:
            raise ValueError("App api_key must be set before insert")
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO apps (
                    name, api_key, github_url, notify_all_users, notify_on_errs, email_at_notices
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    app.name,
                    app.api_key,
                    app.github_url,
                    int(app.notify_all_users),
                    int(app.notify_on_errs),
                    json.dumps(list(app.email_at_notices)),
                ),
            )
            app_id = cur.lastrowid
        return self._get_app(app_id)

    def update_app(self, app: App) -> App:
        """Persist changes to an existing App, api_key included."""

        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE apps SET
                    name = ?,
                    api_key = ?,
                    github_url = ?,
                    notify_all_users = ?,
                    notify_on_errs = ?,
                    email_at_notices = ?
                WHERE id = ?
                """,
                (
                    app.name,
                    app.api_key,
                    app.github_url,
                    int(app.notify_all_users),
                    int(app.notify_on_errs),
                    json.dumps(list(app.email_at_notices)),
                    app.id,
                ),
            )
            if cur.rowcount == 0:
                raise StorageError(f"App {app.id} does not exist")
        return self._get_app(app.id)

    def _get_app(self, app_id: int) -> App:
        with self._session() as conn:
            row = conn.execute(f"SELECT {_APP_COLUMNS} FROM apps WHERE id = ?", (app_id,)).fetchone()
        if row is None:
            raise StorageError(f"App {app_id} does not exist")
        return _row_to_app(row)

    def find_app_by_name(self, name: str) -> Optional[App]:
        with self._session() as conn:
            row = conn.execute(f"SELECT {_APP_COLUMNS} FROM apps WHERE name = ?", (name,)).fetchone()
        return _row_to_app(row) if row else None

    def find_app_by_api_key(self, api_key: str) -> Optional[App]:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_APP_COLUMNS} FROM apps WHERE api_key = ?",
                (api_key,),
            ).fetchone()
        return _row_to_app(row) if row else None

    def list_apps(self) -> List[App]:
        with self._session() as conn:
            rows = conn.execute(f"SELECT {_APP_COLUMNS} FROM apps ORDER BY name").fetchall()
        return [_row_to_app(row) for row in rows]

    # Problems and errs

    def find_err(self, app_id: int, fingerprint: Fingerprint) -> Optional[Err]:
        """Return the Err with this exact fingerprint in the App, if any."""

        with self._session() as conn:
            row = conn.execute(
                f"""
                SELECT {_ERR_COLUMNS} FROM errs
                WHERE app_id = ? AND klass = ? AND component = ? AND action = ? AND environment = ?
                ORDER BY id
                LIMIT 1
                """,
                (app_id, *fingerprint.as_tuple()),
            ).fetchone()
        return _row_to_err(row) if row else None

    def create_problem_with_err(
        self,
        app_id: int,
        fingerprint: Fingerprint,
        noticed_at: Optional[datetime] = None,
    ) -> Err:
        """Insert a Problem and its Err in a single transaction.

        With ``noticed_at`` the Problem starts with its first notice counted.
        Raises ConflictError(field="fingerprint") if another writer already
        stored this fingerprint; the Problem insert is rolled back with it.
        """

        now = datetime.now(timezone.utc)
        notices_count = 1 if noticed_at is not None else 0
        last_notice_at = noticed_at.isoformat() if noticed_at is not None else None
        with self._session() as conn:
            # Take the write lock up front so waiting writers queue on the busy timeout.
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                """
                INSERT INTO problems (app_id, created_at, notices_count, last_notice_at)
                VALUES (?, ?, ?, ?)
                """,
                (app_id, now.isoformat(), notices_count, last_notice_at),
            )
            problem_id = cur.lastrowid
            cur = conn.execute(
                """
                INSERT INTO errs (problem_id, app_id, klass, component, action, environment)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (problem_id, app_id, *fingerprint.as_tuple()),
            )
            err_id = cur.lastrowid
        return Err(
            id=err_id,
            problem_id=problem_id,
            app_id=app_id,
            klass=fingerprint.klass,
            component=fingerprint.component,
            action=fingerprint.action,
            environment=fingerprint.environment,
        )

    def get_problem(self, problem_id: int) -> Problem:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_PROBLEM_COLUMNS} FROM problems WHERE id = ?",
                (problem_id,),
            ).fetchone()
        if row is None:
            raise StorageError(f"Problem {problem_id} does not exist")
        return _row_to_problem(row)

    def register_notice(self, problem_id: int, noticed_at: datetime) -> Problem:
        """Increment the notice counter and reopen the Problem in one statement."""

        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE problems
                SET notices_count = notices_count + 1, resolved = 0, last_notice_at = ?
                WHERE id = ?
                """,
                (noticed_at.isoformat(), problem_id),
            )
            if cur.rowcount == 0:
                raise StorageError(f"Problem {problem_id} does not exist")
            row = conn.execute(
                f"SELECT {_PROBLEM_COLUMNS} FROM problems WHERE id = ?",
                (problem_id,),
            ).fetchone()
        return _row_to_problem(row)

    def resolve_problem(self, problem_id: int) -> Problem:
        with self._session() as conn:
            cur = conn.execute("UPDATE problems SET resolved = 1 WHERE id = ?", (problem_id,))
            if cur.rowcount == 0:
                raise StorageError(f"Problem {problem_id} does not exist")
        return self.get_problem(problem_id)

    def count_problems(self, app_id: Optional[int] = None) -> int:
        with self._session() as conn:
            if app_id is None:
                row = conn.execute("SELECT COUNT(*) AS total FROM problems").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM problems WHERE app_id = ?",
                    (app_id,),
                ).fetchone()
        return int(row["total"])

    # Users and watchers (UserDirectoryPort)

    def add_user(self, email: str, name: str = "") -> User:
        with self._session() as conn:
            cur = conn.execute("INSERT INTO users (email, name) VALUES (?, ?)", (email, name))
            user_id = cur.lastrowid
        return User(id=user_id, email=email, name=name)

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as conn:
            row = conn.execute("SELECT id, email, name FROM users WHERE email = ?", (email,)).fetchone()
        return User(id=row["id"], email=row["email"], name=row["name"]) if row else None

    def add_watcher(
        self,
        app: App,
        user: Optional[User] = None,
        email: Optional[str] = None,
    ) -> Watcher:
        """Subscribe a user, or a bare email address, to an App."""

        if user is None and not email:
            raise ValueError("A watcher needs a user or an email address")
        user_id = user.id if user is not None else None
        with self._session() as conn:
            cur = conn.execute(
                "INSERT INTO watchers (app_id, user_id, email) VALUES (?, ?, ?)",
                (app.id, user_id, email),
            )
            watcher_id = cur.lastrowid
        return Watcher(id=watcher_id, app_id=app.id, user_id=user_id, email=email)

    def all_users(self) -> List[User]:
        with self._session() as conn:
            rows = conn.execute("SELECT id, email, name FROM users ORDER BY id").fetchall()
        return [User(id=row["id"], email=row["email"], name=row["name"]) for row in rows]

    def watchers_of(self, app: App) -> List[User]:
        """Return the users behind an App's watchers.

        Email-only watchers resolve to the user with that email when one
        exists, otherwise to a user without an id. Each address appears once.
        """

        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT users.id AS user_id, users.email AS user_email, users.name AS user_name,
                       watchers.email AS watcher_email
                FROM watchers
                LEFT JOIN users ON users.id = watchers.user_id
                    OR (watchers.user_id IS NULL AND users.email = watchers.email)
                WHERE watchers.app_id = ?
                ORDER BY watchers.id
                """,
                (app.id,),
            ).fetchall()
        by_email: dict[str, User] = {}
        for row in rows:
            if row["user_id"] is not None:
                user = User(id=row["user_id"], email=row["user_email"], name=row["user_name"])
            else:
                user = User(id=None, email=row["watcher_email"])
            # A stored user wins over a bare address for the same email.
            if user.email not in by_email or by_email[user.email].id is None:
                by_email[user.email] = user
        return list(by_email.values())
