"""Tests for the fingerprint store, the object store and the store handle."""

import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest

from pipewright import (
    FileTrackingError,
    FingerprintRecord,
    NotFoundError,
    PipelineStore,
    StorageFormat,
    StorageIOError,
    open_store,
)
from pipewright._records import DependencyHash, EntryKind
from pipewright._store import FingerprintStore, ObjectStore


def make_record(name: str = "raw", **overrides: object) -> FingerprintRecord:
    fields: dict[str, object] = {
        "name": name,
        "command_hash": "sha256:cmd",
        "dependencies": (),
        "format": StorageFormat.MEMORY,
        "seed": 1,
        "output_hash": "sha256:out",
        "built_at": datetime(2024, 1, 1, tzinfo=UTC),
    }
    fields.update(overrides)
    return FingerprintRecord.model_validate(fields)


class TestFingerprintStore:
    """Tests for FingerprintStore."""

    def test_get_missing(self, tmp_path: Path) -> None:
        store = FingerprintStore(tmp_path)
        assert store.get("raw") is None

    def test_put_and_get(self, tmp_path: Path) -> None:
        store = FingerprintStore(tmp_path)
        record = make_record(dependencies=(DependencyHash(name="a", output_hash="sha256:a"),))
        store.put("raw", record)
        assert store.get("raw") == record
        assert (tmp_path / "raw.json").is_file()

    def test_put_replaces(self, tmp_path: Path) -> None:
        store = FingerprintStore(tmp_path)
        store.put("raw", make_record(seed=1))
        store.put("raw", make_record(seed=2))
        record = store.get("raw")
        assert record is not None
        assert record.seed == 2
        # No temporary files left behind
        assert [p.name for p in tmp_path.iterdir()] == ["raw.json"]

    def test_clear(self, tmp_path: Path) -> None:
        store = FingerprintStore(tmp_path)
        store.put("raw", make_record())
        assert store.clear("raw") is True
        assert store.clear("raw") is False
        assert store.get("raw") is None

    def test_names(self, tmp_path: Path) -> None:
        store = FingerprintStore(tmp_path)
        store.put("b", make_record("b"))
        store.put("a", make_record("a"))
        assert store.names() == ["a", "b"]

    def test_corrupt_record(self, tmp_path: Path) -> None:
        (tmp_path / "raw.json").write_text("{not json")
        store = FingerprintStore(tmp_path)
        with pytest.raises(StorageIOError, match="raw"):
            store.get("raw")


class TestFingerprintRecord:
    """Tests for record semantics."""

    def test_failed(self) -> None:
        assert make_record(error="boom").failed is True
        assert make_record(error="boom", substituted=True).failed is False
        assert make_record().failed is False

    def test_same_inputs_ignores_outputs(self) -> None:
        a = make_record(output_hash="sha256:1", duration=1.0)
        b = make_record(output_hash="sha256:2", duration=2.0)
        assert a.same_inputs(b)
        assert not a.same_inputs(make_record(command_hash="sha256:other"))


class TestObjectStoreValues:
    """Tests for memory-format entries."""

    def test_round_trip(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)
        value = {"rows": [1, 2, 3], "name": "table", "nested": {"x": (1.5, None)}}
        entry = store.write("clean", value, StorageFormat.MEMORY)
        assert entry.kind == EntryKind.VALUE
        assert store.read("clean") == value
        assert store.exists("clean")
        assert store.entry("clean") == entry

    def test_same_value_same_hash(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)
        first = store.write("a", [1, 2, 3], StorageFormat.MEMORY)
        second = store.write("b", [1, 2, 3], StorageFormat.MEMORY)
        assert first.content_hash == second.content_hash

    def test_read_missing(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)
        with pytest.raises(NotFoundError, match="model"):
            store.read("model")

    def test_not_found_is_key_error(self, tmp_path: Path) -> None:
        with pytest.raises(KeyError):
            ObjectStore(tmp_path).read("model")

    def test_unpicklable_value(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)
        with pytest.raises(StorageIOError, match="cannot serialize"):
            store.write("lock", threading.Lock(), StorageFormat.MEMORY)
        assert not store.exists("lock")

    def test_remove(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)
        store.write("a", 1, StorageFormat.MEMORY)
        assert store.remove("a") is True
        assert store.remove("a") is False
        assert store.names() == []


class TestObjectStoreFiles:
    """Tests for file-tracked entries."""

    def test_round_trip_single_path(self, tmp_path: Path) -> None:
        data = tmp_path / "a.csv"
        data.write_text("x,y\n1,2\n")
        store = ObjectStore(tmp_path / "objects")
        entry = store.write("raw", str(data), StorageFormat.FILE)
        assert entry.kind == EntryKind.FILE
        assert store.read("raw") == str(data)
        assert store.current_file_hash("raw") == entry.content_hash

    def test_multiple_paths(self, tmp_path: Path) -> None:
        first = tmp_path / "a.txt"
        second = tmp_path / "b.txt"
        first.write_text("a")
        second.write_text("b")
        store = ObjectStore(tmp_path / "objects")
        store.write("files", [first, second], StorageFormat.FILE)
        assert store.read("files") == [str(first), str(second)]

    def test_directory_is_hashed_recursively(self, tmp_path: Path) -> None:
        out = tmp_path / "out"
        (out / "sub").mkdir(parents=True)
        (out / "sub" / "part.txt").write_text("1")
        store = ObjectStore(tmp_path / "objects")
        entry = store.write("out", out, StorageFormat.FILE)
        (out / "sub" / "part.txt").write_text("2")
        assert store.current_file_hash("out") != entry.content_hash

    def test_file_edit_changes_hash(self, tmp_path: Path) -> None:
        data = tmp_path / "a.csv"
        data.write_text("1")
        store = ObjectStore(tmp_path / "objects")
        entry = store.write("raw", data, StorageFormat.FILE)
        data.write_text("2")
        assert store.current_file_hash("raw") != entry.content_hash

    def test_vanished_file(self, tmp_path: Path) -> None:
        data = tmp_path / "a.csv"
        data.write_text("1")
        store = ObjectStore(tmp_path / "objects")
        store.write("raw", data, StorageFormat.FILE)
        data.unlink()
        assert store.current_file_hash("raw") is None

    def test_missing_path(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path / "objects")
        with pytest.raises(FileTrackingError, match="does not exist"):
            store.write("raw", tmp_path / "missing.csv", StorageFormat.FILE)

    def test_non_path_value(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path / "objects")
        with pytest.raises(FileTrackingError, match="must return a path"):
            store.write("raw", 42, StorageFormat.FILE)

    def test_remove_leaves_tracked_file(self, tmp_path: Path) -> None:
        data = tmp_path / "a.csv"
        data.write_text("1")
        store = ObjectStore(tmp_path / "objects")
        store.write("raw", data, StorageFormat.FILE)
        store.remove("raw")
        assert data.is_file()


class TestObjectStoreConcurrency:
    """Tests for concurrent writers."""

    def test_concurrent_writes_to_distinct_keys(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)
        errors: list[BaseException] = []

        def writer(i: int) -> None:
            try:
                for j in range(20):
                    store.write(f"t{i}", (i, j), StorageFormat.MEMORY)
            except BaseException as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert [store.read(f"t{i}") for i in range(8)] == [(i, 19) for i in range(8)]

    def test_concurrent_writes_to_same_key(self, tmp_path: Path) -> None:
        store = ObjectStore(tmp_path)

        def writer(i: int) -> None:
            store.write("shared", [i] * 100, StorageFormat.MEMORY)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        value = store.read("shared")
        # Whichever writer won, the value is complete
        assert len(value) == 100
        assert len(set(value)) == 1


class TestPipelineStore:
    """Tests for the store handle."""

    def test_open_creates_layout(self, tmp_path: Path) -> None:
        with open_store(tmp_path / "store") as store:
            assert not store.closed
            assert (tmp_path / "store" / "meta").is_dir()
            assert (tmp_path / "store" / "objects").is_dir()
        assert store.closed

    def test_unopened_store_does_not_create_files(self, tmp_path: Path) -> None:
        store = PipelineStore(tmp_path / "store")
        assert store.fingerprints.get("raw") is None
        assert store.objects.names() == []
        assert not (tmp_path / "store").exists()

    def test_clear_named(self, tmp_path: Path) -> None:
        with open_store(tmp_path / "store") as store:
            store.fingerprints.put("a", make_record("a"))
            store.objects.write("a", 1, StorageFormat.MEMORY)
            store.objects.write("b", 2, StorageFormat.MEMORY)
            assert store.clear(["a"]) == ["a"]
            assert store.fingerprints.get("a") is None
            assert not store.objects.exists("a")
            assert store.objects.exists("b")

    def test_clear_all(self, tmp_path: Path) -> None:
        with open_store(tmp_path / "store") as store:
            store.fingerprints.put("a", make_record("a"))
            store.objects.write("b", 2, StorageFormat.MEMORY)
            assert store.clear() == ["a", "b"]
            assert store.objects.names() == []

    def test_invalidate_keeps_values(self, tmp_path: Path) -> None:
        with open_store(tmp_path / "store") as store:
            store.fingerprints.put("a", make_record("a"))
            store.objects.write("a", 1, StorageFormat.MEMORY)
            assert store.invalidate(["a", "b"]) == ["a"]
            assert store.fingerprints.get("a") is None
            assert store.objects.read("a") == 1

    def test_destroy(self, tmp_path: Path) -> None:
        store = open_store(tmp_path / "store")
        store.objects.write("a", 1, StorageFormat.MEMORY)
        store.destroy()
        assert not (tmp_path / "store").exists()
