"""Tests for the JSON storage backends and file locking."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from taskgraph.errors import LockTimeout, PersistenceError
from taskgraph.io_utils import atomic_write_text, read_text, write_text
from taskgraph.locking import file_lock
from taskgraph.storage import JsonFileStorage, MemoryStorage


class TestJsonFileStorage:
    def test_missing_document(self, tmp_path: Path):
        s = JsonFileStorage(tmp_path)
        assert not s.exists("tasks", "doc.json")
        assert s.read_json("tasks", "doc.json") is None

    def test_write_then_read(self, tmp_path: Path):
        s = JsonFileStorage(tmp_path)
        assert s.write_json("a/b", "doc.json", {"k": ["é", 1]})
        assert s.exists("a/b", "doc.json")
        assert s.read_json("a/b", "doc.json") == {"k": ["é", 1]}
        text = read_text(tmp_path / "a" / "b" / "doc.json")
        assert text.endswith("\n")
        assert "é" in text

    def test_invalid_json(self, tmp_path: Path):
        (tmp_path / "d").mkdir()
        write_text(tmp_path / "d" / "doc.json", "{oops")
        with pytest.raises(PersistenceError) as exc:
            JsonFileStorage(tmp_path).read_json("d", "doc.json")
        assert exc.value.path.endswith("doc.json")

    def test_unserializable(self, tmp_path: Path):
        with pytest.raises(PersistenceError):
            JsonFileStorage(tmp_path).write_json("d", "doc.json", {"x": object()})
        assert not (tmp_path / "d" / "doc.json").exists()

    def test_failed_write_keeps_previous_content(self, tmp_path: Path):
        s = JsonFileStorage(tmp_path)
        s.write_json("d", "doc.json", {"v": 1})
        with pytest.raises(PersistenceError):
            s.write_json("d", "doc.json", {"v": object()})
        assert s.read_json("d", "doc.json") == {"v": 1}
        leftovers = [p.name for p in (tmp_path / "d").iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_lock_file_location(self, tmp_path: Path):
        s = JsonFileStorage(tmp_path, lock_timeout=1.0)
        with s.lock("d", "doc.json"):
            assert (tmp_path / "d" / ".doc.json.lock").is_file()


class TestMemoryStorage:
    def test_copies_in_and_out(self):
        s = MemoryStorage()
        doc = {"tasks": [1]}
        s.write_json("d", "f", doc)
        doc["tasks"].append(2)
        out = s.read_json("d", "f")
        out["tasks"].append(3)
        assert s.read_json("d", "f") == {"tasks": [1]}
        assert s.writes == 1

    def test_rejects_unserializable(self):
        with pytest.raises(PersistenceError):
            MemoryStorage().write_json("d", "f", {"x": {1, 2}})

    def test_lock_timeout(self):
        s = MemoryStorage(lock_timeout=0.1)
        with s.lock("d", "f"):
            with pytest.raises(LockTimeout):
                with s.lock("d", "f"):
                    pass


class TestAtomicWrite:
    def test_replaces_content(self, tmp_path: Path):
        p = tmp_path / "x.json"
        write_text(p, "old")
        atomic_write_text(p, "new")
        assert read_text(p) == "new"
        assert [c.name for c in tmp_path.iterdir()] == ["x.json"]


class TestFileLock:
    def test_timeout_across_threads(self, tmp_path: Path):
        lock_path = tmp_path / "locks" / ".doc.lock"
        held = threading.Event()
        release = threading.Event()

        def holder():
            with file_lock(lock_path, timeout=5):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        try:
            assert held.wait(5)
            with pytest.raises(LockTimeout) as exc:
                with file_lock(lock_path, timeout=0.2):
                    pass
            assert exc.value.timeout == 0.2
        finally:
            release.set()
            t.join(5)

    def test_serializes_read_modify_write(self, tmp_path: Path):
        s = JsonFileStorage(tmp_path, lock_timeout=10)
        s.write_json("d", "counter.json", {"n": 0})

        def bump():
            for _ in range(20):
                with s.lock("d", "counter.json"):
                    n = s.read_json("d", "counter.json")["n"]
                    time.sleep(0.001)
                    s.write_json("d", "counter.json", {"n": n + 1})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert s.read_json("d", "counter.json") == {"n": 80}

    def test_reacquire_after_release(self, tmp_path: Path):
        lock_path = tmp_path / ".doc.lock"
        with file_lock(lock_path, timeout=1):
            pass
        with file_lock(lock_path, timeout=1):
            assert read_text(lock_path).strip().isdigit()
