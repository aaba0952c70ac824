"""Advisory lock file marking the firmware apply step."""

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from remote_monitoring.exceptions import LockUnavailable


class LockGuard:
    """Non-blocking exclusive lock on a well-known file.

    The lock tells an external reboot/apply script that this process is
    applying firmware. It never blocks unrelated device operations.
    """

    def __init__(self, lock_path: Path):
        self.logger = logging.getLogger("remote_monitoring.lock")
        self.lock_path = Path(lock_path)

    def acquire(self) -> int:
        """Open (creating if absent) and lock the lock file.

        Returns:
            File descriptor to pass to :meth:`release`

        Raises:
            LockUnavailable: If the file cannot be created or is locked elsewhere
        """
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise LockUnavailable(f"Cannot open lock file {self.lock_path}: {e}") from e

        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except OSError as e:
            os.close(fd)
            raise LockUnavailable(f"Cannot lock {self.lock_path}: {e}") from e

        self.logger.info(f"Acquired apply lock {self.lock_path}")
        return fd

    def release(self, handle: Optional[int]) -> None:
        """Unlock and close. ``None`` (lock never acquired) is a no-op."""
        if handle is None:
            return
        try:
            fcntl.lockf(handle, fcntl.LOCK_UN)
        except OSError as e:
            self.logger.warning(f"Failed to unlock {self.lock_path}: {e}")
        finally:
            os.close(handle)
        self.logger.info(f"Released apply lock {self.lock_path}")
