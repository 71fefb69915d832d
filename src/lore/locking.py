"""Advisory file locking for Lore's shared JSON files.

Separate processes (a file-change tracker appending, a capture clearing)
can touch pending-changes.json at the same time. The lock is a sibling
``.lock`` file managed by filelock's SoftFileLock: the file existing means
the lock is held. A holder that crashed leaves the file behind, so a lock
file older than the stale threshold is treated as abandoned and removed.
"""

import logging
import time
from pathlib import Path

from filelock import SoftFileLock, Timeout

from lore.errors import LockTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_STALE_SECONDS = 30.0


def lock_path_for(target: Path) -> Path:
    """Return the lock file guarding target (``<target>.lock``)."""
    return target.with_name(target.name + ".lock")


class AdvisoryLock:
    """Scoped advisory lock with bounded wait and stale-lock reclaim.

    Example:
        with AdvisoryLock(lock_path_for(pending_path)):
            ...  # read-modify-write pending_path
    """

    def __init__(
        self,
        path: Path,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        stale_after: float = DEFAULT_STALE_SECONDS,
    ):
        self.path = Path(path)
        self.timeout = timeout
        self.stale_after = stale_after
        self._lock = SoftFileLock(str(self.path), timeout=timeout)

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    def is_stale(self) -> bool:
        """True if a lock file exists and is older than stale_after."""
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > self.stale_after

    def acquire(self) -> None:
        """Acquire the lock, reclaiming it once if the holder looks dead.

        Raises:
            LockTimeoutError: The lock stayed held by a live holder.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire()
            return
        except Timeout:
            if not self.is_stale():
                raise LockTimeoutError(f"Could not acquire {self.path} within {self.timeout}s") from None

        logger.warning(f"Reclaiming stale lock {self.path}")
        self.path.unlink(missing_ok=True)
        try:
            self._lock.acquire()
        except Timeout:
            raise LockTimeoutError(f"Could not reclaim stale lock {self.path}") from None

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()

    def __enter__(self) -> "AdvisoryLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
