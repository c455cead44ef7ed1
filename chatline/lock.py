"""
Exclusive access guard for the conversation store.

One chatline process at a time may hold the store. The lock is taken once
when a session starts and released when it ends, never per operation.

Acquisition polls a non-blocking exclusive lock every POLL_INTERVAL seconds
until it succeeds or the timeout runs out. Any OS error other than
"already locked" is raised straight away.

POSIX uses flock(); Windows uses a one-byte msvcrt lock. The polling and
timeout behaviour is the same on both.
"""

from __future__ import annotations

import errno
import logging
import os
import sys
import time
from pathlib import Path

from chatline.errors import LockTimeout

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05

if sys.platform == "win32":
    import msvcrt

    _WOULD_BLOCK = {errno.EACCES, errno.EDEADLK}

    def _try_lock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)

    def _unlock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    _WOULD_BLOCK = {errno.EWOULDBLOCK, errno.EAGAIN}

    def _try_lock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


def lock_path_for(db_path: str | Path) -> Path:
    """Sidecar lock file guarding a database file."""
    db_path = Path(db_path)
    return db_path.with_name(db_path.name + ".lock")


class StoreLock:
    """
    Scoped exclusive lock on a file.

    Use as a context manager, or call acquire()/release() yourself:

        with StoreLock(path, timeout=1.0):
            ...
    """

    def __init__(self, target: str | Path, timeout: float = 1.0, poll_interval: float = POLL_INTERVAL):
        self.target = Path(target)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.attempts = 0
        self._fd: int | None = None

    @property
    def is_locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> StoreLock:
        """Poll for the lock. Raises LockTimeout once the timeout elapses."""
        if self._fd is not None:
            return self

        self.target.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.target), os.O_RDWR | os.O_CREAT, 0o600)
        deadline = time.monotonic() + self.timeout
        self.attempts = 0

        try:
            while True:
                self.attempts += 1
                try:
                    _try_lock(fd)
                except OSError as e:
                    if e.errno not in _WOULD_BLOCK:
                        raise
                    logger.debug("Lock %s busy (attempt %d)", self.target, self.attempts)
                else:
                    self._fd = fd
                    logger.debug("Lock %s acquired after %d attempt(s)", self.target, self.attempts)
                    return self

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        "Gave up on lock %s after %.2fs (%d attempts)",
                        self.target, self.timeout, self.attempts,
                    )
                    raise LockTimeout(self.target, self.timeout, self.attempts)
                time.sleep(min(self.poll_interval, remaining))
        except BaseException:
            os.close(fd)
            raise

    def release(self) -> None:
        """Unlock and close the handle. Safe to call more than once."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            _unlock(fd)
        finally:
            os.close(fd)
        logger.debug("Lock %s released", self.target)

    def __enter__(self) -> StoreLock:
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def acquire(target: str | Path, timeout: float, poll_interval: float = POLL_INTERVAL) -> StoreLock:
    """Acquire an exclusive lock on target, returning the held StoreLock."""
    return StoreLock(target, timeout=timeout, poll_interval=poll_interval).acquire()
