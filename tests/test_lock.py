"""
Tests for the exclusive access guard.
Run with: pytest tests/test_lock.py
"""

import errno
import time

import pytest

import chatline.lock as lock_mod
from chatline.errors import LockTimeout
from chatline.lock import StoreLock, acquire, lock_path_for


@pytest.fixture
def target(tmp_path):
    return tmp_path / "history.db.lock"


def test_lock_path_for_db():
    """Lock file sits next to the database."""
    assert lock_path_for("/data/history.db").name == "history.db.lock"


def test_acquire_and_release(target):
    """A free target is locked on the first attempt and can be re-taken after release."""
    lock = acquire(target, timeout=0.2)
    assert lock.is_locked
    assert lock.attempts == 1
    lock.release()
    assert not lock.is_locked

    again = acquire(target, timeout=0.2)
    assert again.is_locked
    again.release()


def test_release_twice_is_harmless(target):
    lock = acquire(target, timeout=0.2)
    lock.release()
    lock.release()
    assert not lock.is_locked


def test_timeout_against_held_lock(target):
    """A held lock makes acquire give up after roughly timeout/poll attempts."""
    with StoreLock(target, timeout=1.0):
        t0 = time.monotonic()
        with pytest.raises(LockTimeout) as exc_info:
            acquire(target, timeout=0.2, poll_interval=0.05)
        elapsed = time.monotonic() - t0

    assert 4 <= exc_info.value.attempts <= 6
    assert elapsed >= 0.19
    assert elapsed < 1.0
    assert exc_info.value.timeout == 0.2


def test_lock_freed_while_waiting(target):
    """Once the holder lets go, the next acquire succeeds."""
    holder = acquire(target, timeout=0.2)
    with pytest.raises(LockTimeout):
        acquire(target, timeout=0.1)
    holder.release()

    waiter = acquire(target, timeout=0.2)
    assert waiter.is_locked
    waiter.release()


def test_context_manager_releases_on_error(target):
    """The lock is dropped when the owning block raises."""
    with pytest.raises(RuntimeError):
        with StoreLock(target, timeout=0.2) as lock:
            assert lock.is_locked
            raise RuntimeError("session failed")

    assert not lock.is_locked
    acquire(target, timeout=0.1).release()


def test_unexpected_os_error_is_raised_immediately(target, monkeypatch):
    """Errors other than 'would block' are not retried."""
    calls = []

    def broken(fd):
        calls.append(fd)
        raise OSError(errno.EBADF, "bad file descriptor")

    monkeypatch.setattr(lock_mod, "_try_lock", broken)

    with pytest.raises(OSError) as exc_info:
        acquire(target, timeout=1.0)
    assert not isinstance(exc_info.value, LockTimeout)
    assert exc_info.value.errno == errno.EBADF
    assert len(calls) == 1
