"""Advisory cross-process lock built on an exclusively created marker file.

Writers of the token file serialise on a sidecar ``<token file>.lock``. The
marker is created with ``O_CREAT | O_EXCL`` so exactly one process wins; the
winner writes its PID into it (diagnostic only) and deletes it when done.

A marker older than :data:`STALE_LOCK_SECONDS` is presumed abandoned by a
crashed holder and is reclaimed by the next waiter. Reclaiming does not
count against the waiter's attempt budget.

The :class:`LockManager` base class is the seam the credential store
depends on; :class:`MarkerFileLockManager` is the default implementation
and can be swapped for an OS-native advisory lock without touching the
store.

Example::

    with MarkerFileLockManager().acquire(Path("tokens.json")):
        ...  # exclusive section
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from authgate.exceptions import LockError, LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
MAX_ATTEMPTS = 50
RETRY_DELAY_SECONDS = 0.1
STALE_LOCK_SECONDS = 30.0


def lock_path_for(path: Path) -> Path:
    """Return the marker path guarding *path* (``path + ".lock"``)."""
    return path.with_name(path.name + LOCK_SUFFIX)


class FileLock:
    """A held marker-file lock.

    Release it explicitly with :meth:`release` or use it as a context
    manager. Releasing twice raises :class:`~authgate.exceptions.LockError`
    the second time; callers treat that as advisory.
    """

    def __init__(self, lock_path: Path, fd: Optional[int]) -> None:
        self._lock_path = lock_path
        self._fd = fd

    @property
    def path(self) -> Path:
        """The marker file this lock owns."""
        return self._lock_path

    def release(self) -> None:
        """Close the handle and delete the marker.

        Raises:
            LockError: If the marker is already gone or cannot be removed.
        """
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
        try:
            os.unlink(self._lock_path)
        except OSError as exc:
            raise LockError(f"failed to remove lock file {self._lock_path}: {exc}") from exc

    def __enter__(self) -> FileLock:
        return self

    def __exit__(self, *args: object) -> None:
        try:
            self.release()
        except LockError as exc:
            logger.warning("Failed to release lock: %s", exc)


class LockManager(ABC):
    """Abstract mutual exclusion primitive for the token file."""

    @abstractmethod
    def acquire(self, path: Path) -> FileLock:
        """Block until the lock guarding *path* is held, then return it.

        Raises:
            LockTimeoutError: If the lock could not be obtained in time.
            LockError: On any unexpected I/O error.
        """
        ...


class MarkerFileLockManager(LockManager):
    """Create-exclusive marker file lock with stale-lock reclamation.

    Args:
        max_attempts: Attempts on a live (non-stale) lock before giving up.
        retry_delay: Seconds to sleep between attempts.
        stale_after: Age in seconds after which a marker is reclaimed.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        stale_after: float = STALE_LOCK_SECONDS,
    ) -> None:
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._stale_after = stale_after

    def acquire(self, path: Path) -> FileLock:
        lock_path = lock_path_for(path)
        attempts = 0

        while attempts < self._max_attempts:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                if self._reclaim_if_stale(lock_path):
                    continue
                attempts += 1
                time.sleep(self._retry_delay)
                continue
            except OSError as exc:
                raise LockError(f"failed to acquire file lock {lock_path}: {exc}") from exc

            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
            except OSError as exc:
                os.close(fd)
                os.unlink(lock_path)
                raise LockError(f"failed to write lock file {lock_path}: {exc}") from exc
            logger.debug("Acquired lock %s", lock_path)
            return FileLock(lock_path, fd)

        raise LockTimeoutError(
            f"timeout waiting for file lock {lock_path} after "
            f"{self._max_attempts * self._retry_delay:.1f}s"
        )

    def _reclaim_if_stale(self, lock_path: Path) -> bool:
        """Delete *lock_path* if it is stale. Return ``True`` to retry at once.

        A marker that vanished between the failed create and the ``stat``
        also means "retry at once": its holder just released it.
        """
        try:
            age = time.time() - os.stat(lock_path).st_mtime
        except FileNotFoundError:
            return True
        except OSError as exc:
            raise LockError(f"failed to inspect lock file {lock_path}: {exc}") from exc

        if age <= self._stale_after:
            return False

        logger.warning("Removing stale lock file %s (age %.1fs)", lock_path, age)
        try:
            os.unlink(lock_path)
        except FileNotFoundError:
            pass  # another waiter reclaimed it first
        except OSError as exc:
            raise LockError(f"failed to remove stale lock file {lock_path}: {exc}") from exc
        return True
