"""Tests for the single-instance PID lock."""

import os

import pytest

from echoguard import pid_lock
from echoguard.errors import SingletonConflictError
from echoguard.pid_lock import ProcessLock, is_process_alive


class TestAcquire:
    def test_fresh_lock_holds_current_pid(self, tmp_path, captured_logs):
        lock = ProcessLock(tmp_path / ".server.lock")
        lock.acquire()

        assert lock.held
        assert lock.path.read_text(encoding="utf-8") == str(os.getpid())
        assert any(level == "INFO" and "PID lock" in msg for level, msg in captured_logs)

    def test_creates_parent_directory(self, tmp_path):
        lock = ProcessLock(tmp_path / "run" / "echoguard.lock")
        lock.acquire()
        assert lock.read_owner() == os.getpid()

    def test_stale_lock_is_replaced(self, tmp_path, dead_pid, captured_logs):
        lock_path = tmp_path / ".server.lock"
        lock_path.write_text(str(dead_pid), encoding="utf-8")
        assert not is_process_alive(dead_pid)

        lock = ProcessLock(lock_path)
        lock.acquire()

        assert lock_path.read_text(encoding="utf-8") == str(os.getpid())
        warnings = [msg for level, msg in captured_logs if level == "WARNING"]
        assert len(warnings) == 1
        assert "102" in warnings[0] and str(dead_pid) in warnings[0]

    def test_live_owner_aborts_and_leaves_lock_untouched(
        self, tmp_path, live_pid, captured_logs
    ):
        assert is_process_alive(live_pid)
        lock_path = tmp_path / ".server.lock"
        lock_path.write_text(str(live_pid), encoding="utf-8")
        before = lock_path.stat().st_mtime_ns

        lock = ProcessLock(lock_path)
        with pytest.raises(SingletonConflictError) as exc_info:
            lock.acquire()

        assert exc_info.value.exit_code == 101
        assert exc_info.value.pid == live_pid
        assert not lock.held
        assert lock_path.read_text(encoding="utf-8") == str(live_pid)
        assert lock_path.stat().st_mtime_ns == before
        assert any(level == "ERROR" and "101" in msg for level, msg in captured_logs)

    def test_liveness_decides_conflict(self, tmp_path, monkeypatch):
        lock_path = tmp_path / ".server.lock"
        lock_path.write_text("424242", encoding="utf-8")
        probed = []

        def fake_alive(pid):
            probed.append(pid)
            return True

        monkeypatch.setattr(pid_lock, "is_process_alive", fake_alive)

        with pytest.raises(SingletonConflictError):
            ProcessLock(lock_path).acquire()
        assert probed == [424242]

    def test_unreadable_lock_is_treated_as_stale(self, tmp_path, captured_logs):
        lock_path = tmp_path / ".server.lock"
        lock_path.write_text("not-a-pid", encoding="utf-8")

        ProcessLock(lock_path).acquire()

        assert lock_path.read_text(encoding="utf-8") == str(os.getpid())
        assert any(level == "WARNING" for level, _ in captured_logs)

    def test_lock_naming_this_process_is_reclaimed(self, tmp_path):
        lock_path = tmp_path / ".server.lock"
        lock_path.write_text(str(os.getpid()), encoding="utf-8")

        lock = ProcessLock(lock_path)
        lock.acquire()
        assert lock.held


class TestRelease:
    def test_release_removes_lock(self, tmp_path):
        lock = ProcessLock(tmp_path / ".server.lock")
        lock.acquire()
        lock.release()

        assert not lock.path.exists()
        assert not lock.held

    def test_release_is_idempotent(self, tmp_path):
        lock = ProcessLock(tmp_path / ".server.lock")
        lock.release()
        lock.acquire()
        lock.release()
        lock.release()
        assert not lock.path.exists()

    def test_context_manager(self, tmp_path):
        path = tmp_path / ".server.lock"
        with ProcessLock(path) as lock:
            assert lock.read_owner() == os.getpid()
        assert not path.exists()

    def test_next_start_after_release_succeeds(self, tmp_path):
        path = tmp_path / ".server.lock"
        first = ProcessLock(path)
        first.acquire()
        first.release()

        second = ProcessLock(path)
        second.acquire()
        assert second.read_owner() == os.getpid()


def test_is_process_alive():
    assert is_process_alive(os.getpid())
    assert not is_process_alive(0)
    assert not is_process_alive(-5)


def test_read_owner_missing_file(tmp_path):
    assert ProcessLock(tmp_path / "missing.lock").read_owner() is None
