"""Tests for per-brain exclusive locks."""

import tempfile
import threading
import time
from pathlib import Path

import pytest

from brainstore.errors import WriteFailure
from brainstore.locking import BrainLock, LockManager


def test_lock_is_reentrant():
    with tempfile.TemporaryDirectory() as tmpdir:
        lock = BrainLock(Path(tmpdir) / "a.brain")
        with lock:
            with lock:
                assert lock.held
            assert lock.held
        assert not lock.held


def test_lock_creates_sidecar_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        target = Path(tmpdir) / "a.brain"
        with BrainLock(target):
            assert (Path(tmpdir) / "a.brain.lock").exists()


def test_release_without_acquire_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        lock = BrainLock(Path(tmpdir) / "a.brain")
        with pytest.raises(RuntimeError):
            lock.release()


def test_manager_returns_same_lock_per_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = LockManager()
        first = manager.lock_for(Path(tmpdir) / "a.brain")
        second = manager.lock_for(Path(tmpdir) / "." / "a.brain")
        assert first is second
        assert manager.lock_for(Path(tmpdir) / "b.brain") is not first


def test_independent_holders_contend():
    """Two lock objects on one file behave like two processes."""
    with tempfile.TemporaryDirectory() as tmpdir:
        target = Path(tmpdir) / "a.brain"
        holder = BrainLock(target)
        contender = BrainLock(target, timeout=0.2)

        with holder:
            started = time.monotonic()
            with pytest.raises(WriteFailure) as exc:
                contender.acquire()
            assert time.monotonic() - started >= 0.2
            assert exc.value.details["timeout"] == 0.2

        with contender:
            assert contender.held


def test_waiter_proceeds_after_release():
    with tempfile.TemporaryDirectory() as tmpdir:
        target = Path(tmpdir) / "a.brain"
        holder = BrainLock(target)
        order = []

        def wait_for_lock():
            with BrainLock(target, timeout=5.0):
                order.append("waiter")

        with holder:
            thread = threading.Thread(target=wait_for_lock)
            thread.start()
            time.sleep(0.1)
            order.append("holder")
        thread.join(timeout=5.0)

        assert order == ["holder", "waiter"]
