from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.dedup import DedupEngine
from core.errors import ConflictError, StorageError
from core.identity import AppRegistry
from core.models import App, Err, Fingerprint

CONDITIONS = Fingerprint(klass="Whoops", component="Foo", action="bar", environment="production")


def _setup(tmp_path: Path) -> tuple[SQLiteStorage, DedupEngine, App]:
    storage = SQLiteStorage(str(tmp_path / "errsieve.db"))
    storage.init_db()
    app = AppRegistry(storage).create("Errbit")
    return storage, DedupEngine(storage), app


def test_returns_existing_err(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)
    existing = storage.create_problem_with_err(app.id, CONDITIONS)

    assert engine.find(app, CONDITIONS) == existing
    assert engine.find_or_create(app, CONDITIONS) == (existing, False)


def test_created_err_belongs_to_app(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)
    err, created = engine.find_or_create(app, CONDITIONS)

    assert created is True
    assert err.app_id == app.id
    assert storage.get_problem(err.problem_id).app_id == app.id


def test_creates_one_problem_per_fingerprint(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)
    assert engine.find(app, CONDITIONS) is None

    first, created_first = engine.find_or_create(app, CONDITIONS)
    assert storage.count_problems() == 1
    second, created_second = engine.find_or_create(app, CONDITIONS)

    assert created_first and not created_second
    assert first == second
    assert storage.count_problems() == 1


def test_any_field_difference_is_a_new_problem(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)
    engine.find_or_create(app, CONDITIONS)

    for variant in (
        Fingerprint("Other", "Foo", "bar", "production"),
        Fingerprint("Whoops", "Other", "bar", "production"),
        Fingerprint("Whoops", "Foo", "other", "production"),
        Fingerprint("Whoops", "Foo", "bar", "staging"),
    ):
        _, created = engine.find_or_create(app, variant)
        assert created

    assert storage.count_problems(app.id) == 5


def test_same_fingerprint_in_other_app_is_separate(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)
    other = AppRegistry(storage).create("Other")

    err, _ = engine.find_or_create(app, CONDITIONS)
    other_err, created = engine.find_or_create(other, CONDITIONS)

    assert created
    assert other_err.problem_id != err.problem_id
    assert storage.count_problems(app.id) == 1
    assert storage.count_problems(other.id) == 1


def test_storage_rejects_second_err_with_same_fingerprint(tmp_path: Path) -> None:
    storage, _, app = _setup(tmp_path)
    storage.create_problem_with_err(app.id, CONDITIONS)

    with pytest.raises(ConflictError) as excinfo:
        storage.create_problem_with_err(app.id, CONDITIONS)
    assert excinfo.value.field == "fingerprint"
    # The problem insert of the failed attempt was rolled back with it.
    assert storage.count_problems() == 1


class RacingStorage:
    """Hides the winner's err from the first lookup to simulate a lost race."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage
        self.find_calls = 0

    def find_err(self, app_id: int, fingerprint: Fingerprint):
        self.find_calls += 1
        if self.find_calls == 1:
            return None
        return self._storage.find_err(app_id, fingerprint)

    def create_problem_with_err(self, app_id: int, fingerprint: Fingerprint, noticed_at=None) -> Err:
        return self._storage.create_problem_with_err(app_id, fingerprint, noticed_at)


def test_conflict_is_resolved_by_rereading(tmp_path: Path) -> None:
    storage, _, app = _setup(tmp_path)
    winner = storage.create_problem_with_err(app.id, CONDITIONS)
    racing = RacingStorage(storage)

    err, created = DedupEngine(racing).find_or_create(app, CONDITIONS)

    assert (err, created) == (winner, False)
    assert racing.find_calls == 2
    assert storage.count_problems() == 1


class ConflictingStorage:
    def find_err(self, app_id: int, fingerprint: Fingerprint):
        return None

    def create_problem_with_err(self, app_id: int, fingerprint: Fingerprint, noticed_at=None) -> Err:
        raise ConflictError("fingerprint")


def test_conflict_without_winner_is_a_storage_error() -> None:
    app = App(id=1, name="Errbit", api_key="a" * 32)
    with pytest.raises(StorageError):
        DedupEngine(ConflictingStorage()).find_or_create(app, CONDITIONS)


def test_concurrent_find_or_create_creates_one_problem(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)
    workers = 8
    barrier = threading.Barrier(workers)

    def report() -> tuple[Err, bool]:
        barrier.wait()
        return engine.find_or_create(app, CONDITIONS)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = [future.result() for future in [pool.submit(report) for _ in range(workers)]]

    errs = {err for err, _ in results}
    assert len(errs) == 1
    assert sum(1 for _, created in results if created) == 1
    assert storage.count_problems() == 1


def test_record_counts_notices_and_reopens(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)

    first = engine.record(app, CONDITIONS)
    assert first.created
    assert first.problem.notices_count == 1
    assert first.problem.last_notice_at is not None

    storage.resolve_problem(first.problem.id)
    assert storage.get_problem(first.problem.id).resolved

    second = engine.record(app, CONDITIONS)
    assert not second.created
    assert second.err == first.err
    assert second.problem.notices_count == 2
    assert second.problem.resolved is False


def test_concurrent_workers_with_own_storage_create_one_problem(tmp_path: Path) -> None:
    storage, _, app = _setup(tmp_path)
    db_path = str(tmp_path / "errsieve.db")
    workers = 8
    barrier = threading.Barrier(workers)

    def report() -> tuple[Err, bool]:
        # Each worker stands in for a separate service instance.
        engine = DedupEngine(SQLiteStorage(db_path))
        barrier.wait()
        return engine.find_or_create(app, CONDITIONS)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = [future.result() for future in [pool.submit(report) for _ in range(workers)]]

    assert len({err for err, _ in results}) == 1
    assert sum(1 for _, created in results if created) == 1
    assert storage.count_problems() == 1


def test_locked_database_fails_cleanly(tmp_path: Path) -> None:
    storage, _, app = _setup(tmp_path)
    impatient = DedupEngine(SQLiteStorage(str(tmp_path / "errsieve.db"), timeout_seconds=0.2))

    blocker = sqlite3.connect(str(tmp_path / "errsieve.db"), isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE")
        with pytest.raises(StorageError):
            impatient.find_or_create(app, CONDITIONS)
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()

    assert storage.count_problems() == 0
    assert storage.find_err(app.id, CONDITIONS) is None


class NoticeFailingStorage(SQLiteStorage):
    def register_notice(self, problem_id: int, noticed_at):
        raise StorageError("database is locked")


def test_new_problem_counts_first_notice_in_creating_transaction(tmp_path: Path) -> None:
    storage, _, app = _setup(tmp_path)
    engine = DedupEngine(NoticeFailingStorage(str(tmp_path / "errsieve.db")))

    occurrence = engine.record(app, CONDITIONS)

    assert occurrence.created
    assert occurrence.problem.notices_count == 1
    assert storage.get_problem(occurrence.problem.id).notices_count == 1


def test_find_or_create_alone_does_not_count_a_notice(tmp_path: Path) -> None:
    storage, engine, app = _setup(tmp_path)

    err, created = engine.find_or_create(app, CONDITIONS)

    assert created
    assert storage.get_problem(err.problem_id).notices_count == 0
