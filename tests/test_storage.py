"""
Tests for storage backends and transaction support
"""

import os
import tempfile

import pytest

from taskflow.errors import StorageUnavailableError
from taskflow.storage import InMemoryStorage, SQLiteStorage, create_storage


record = {"id": "rec_001", "name": "Test Record", "status": "pending", "amount": "100.50"}


@pytest.fixture
def db_path():
    """Temporary SQLite file"""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, db_path):
    """Both backends behind the same interface"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(db_path)
    yield backend
    backend.close()


class TestBasicOperations:
    """CRUD behaviour shared by both backends"""

    def test_save_and_load(self, storage):
        storage.save("items", "rec_001", record)
        assert storage.load("items", "rec_001") == record
        assert storage.load("items", "missing") is None

    def test_loaded_record_is_a_copy(self, storage):
        storage.save("items", "rec_001", record)
        loaded = storage.load("items", "rec_001")
        loaded["name"] = "changed"
        assert storage.load("items", "rec_001")["name"] == "Test Record"

    def test_find_count_delete(self, storage):
        storage.save("items", "a", {"id": "a", "status": "pending"})
        storage.save("items", "b", {"id": "b", "status": "done"})
        storage.save("items", "c", {"id": "c", "status": "pending"})

        assert storage.count("items") == 3
        assert {r["id"] for r in storage.find("items", {"status": "pending"})} == {"a", "c"}
        assert storage.find("items", {"missing_key": 1}) == []

        assert storage.delete("items", "a") is True
        assert storage.delete("items", "a") is False
        assert storage.exists("items", "a") is False
        assert storage.exists("items", "b") is True

        storage.clear_table("items")
        assert storage.count("items") == 0

    def test_load_all_keeps_insertion_order(self, storage):
        for key in ("x", "y", "z"):
            storage.save("items", key, {"id": key})
        assert [r["id"] for r in storage.load_all("items")] == ["x", "y", "z"]


class TestConditionalSave:
    """save_if only writes when the guard still holds"""

    def test_writes_when_guard_matches(self, storage):
        storage.save("items", "rec_001", record)
        updated = dict(record, status="done")
        assert storage.save_if("items", "rec_001", updated, {"status": "pending"}) is True
        assert storage.load("items", "rec_001")["status"] == "done"

    def test_rejects_when_guard_fails(self, storage):
        storage.save("items", "rec_001", dict(record, status="done"))
        assert storage.save_if("items", "rec_001", record, {"status": "pending"}) is False
        assert storage.load("items", "rec_001")["status"] == "done"

    def test_rejects_missing_record(self, storage):
        assert storage.save_if("items", "nope", record, {"status": "pending"}) is False
        assert storage.exists("items", "nope") is False


class TestTransactions:
    """atomic() commits or rolls back as a unit"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("items", "a", {"id": "a"})
            storage.save("items", "b", {"id": "b"})
        assert storage.count("items") == 2

    def test_rollback_on_error(self, storage):
        storage.save("items", "keep", {"id": "keep", "v": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("items", "new", {"id": "new"})
                storage.save("items", "keep", {"id": "keep", "v": 2})
                raise RuntimeError("boom")

        assert storage.exists("items", "new") is False
        assert storage.load("items", "keep")["v"] == 1

    def test_nested_blocks_roll_back_together(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("items", "outer", {"id": "outer"})
                with storage.atomic():
                    storage.save("items", "inner", {"id": "inner"})
                raise ValueError("outer fails after inner finished")

        assert storage.count("items") == 0
        assert storage.in_transaction is False

    def test_nested_commit(self, storage):
        with storage.atomic():
            with storage.atomic():
                storage.save("items", "inner", {"id": "inner"})
            assert storage.in_transaction is True
        assert storage.in_transaction is False
        assert storage.exists("items", "inner")


class TestSQLiteStorage:
    """SQLite-specific behaviour"""

    def test_persists_across_connections(self, db_path):
        first = SQLiteStorage(db_path)
        first.save("items", "rec_001", record)
        first.close()

        second = SQLiteStorage(db_path)
        assert second.load("items", "rec_001") == record
        second.close()

    def test_closed_storage_is_unavailable(self, db_path):
        storage = SQLiteStorage(db_path)
        storage.close()
        with pytest.raises(StorageUnavailableError):
            storage.load("items", "rec_001")


class TestCreateStorage:
    """Backend selection from database_url"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, db_path):
        storage = create_storage(f"sqlite:///{db_path}")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == db_path
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_storage("postgresql://localhost/taskflow")
