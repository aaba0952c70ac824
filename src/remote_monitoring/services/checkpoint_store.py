"""Persistent resume checkpoint for the firmware update procedure."""

import logging
from pathlib import Path
from typing import Optional

from remote_monitoring.exceptions import StorageUnavailable
from remote_monitoring.models.checkpoint import UpdateCheckpoint, parse_time


class ResumeStateStore:
    """Checkpoint file surviving the reboot hand-off.

    File layout (plain text):
        line 1: update begin timestamp
        line 2: reboot begin timestamp (blank until the reboot phase)

    The file is truncated by :meth:`clear`, never deleted. Read and write
    failures are logged and degrade to "no checkpoint" rather than failing
    the caller.
    """

    def __init__(self, checkpoint_path: Path):
        """Initialize resume state store.

        Args:
            checkpoint_path: Location of the checkpoint file
        """
        self.logger = logging.getLogger("remote_monitoring.checkpoint_store")
        self.checkpoint_path = Path(checkpoint_path)

    def load(self) -> Optional[UpdateCheckpoint]:
        """Load the persisted checkpoint.

        Returns:
            UpdateCheckpoint if the file holds one, None if the file is
            missing, empty, unreadable or corrupt
        """
        if not self.checkpoint_path.exists():
            self.logger.debug("No checkpoint file found")
            return None

        try:
            lines = self._read_lines()
        except StorageUnavailable as e:
            self.logger.error(f"{e}, treating as no prior update")
            return None

        update_line = lines[0] if len(lines) > 0 else ""
        reboot_line = lines[1] if len(lines) > 1 else ""

        if not update_line and not reboot_line:
            self.logger.debug("Checkpoint file is empty")
            return None

        if not update_line:
            self.logger.error(
                f"Corrupt checkpoint: reboot begin {reboot_line!r} without update begin, ignoring"
            )
            return None

        try:
            checkpoint = UpdateCheckpoint(
                update_begin=parse_time(update_line),
                reboot_begin=parse_time(reboot_line) if reboot_line else None,
            )
        except ValueError as e:
            self.logger.error(f"Unparseable checkpoint file {self.checkpoint_path}: {e}")
            return None

        self.logger.info(
            f"Loaded checkpoint: update_begin={update_line}, "
            f"reboot_begin={reboot_line or '-'}"
        )
        return checkpoint

    def save(self, checkpoint: UpdateCheckpoint) -> bool:
        """Overwrite the checkpoint file.

        Args:
            checkpoint: Checkpoint to persist

        Returns:
            True if written, False if the file could not be written (the
            update then continues without resume capability)
        """
        lines = checkpoint.to_lines()
        try:
            self._write_lines(lines)
        except StorageUnavailable as e:
            self.logger.warning(f"{e}, continuing without resume checkpoint")
            return False

        self.logger.info(f"Saved checkpoint: update_begin={lines[0]}, reboot_begin={lines[1] or '-'}")
        return True

    def clear(self) -> None:
        """Truncate the checkpoint file after a completed update is reported."""
        try:
            self._write_lines([])
        except StorageUnavailable as e:
            self.logger.warning(f"Failed to clear checkpoint: {e}")
            return
        self.logger.info("Cleared checkpoint")

    def _read_lines(self) -> list[str]:
        try:
            with open(self.checkpoint_path, "r", encoding="utf-8") as f:
                return [line.strip() for line in f.readlines()[:2]]
        except OSError as e:
            raise StorageUnavailable(f"Cannot read checkpoint {self.checkpoint_path}: {e}") from e

    def _write_lines(self, lines: list[str]) -> None:
        try:
            self.checkpoint_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.checkpoint_path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines))
        except OSError as e:
            raise StorageUnavailable(f"Cannot write checkpoint {self.checkpoint_path}: {e}") from e
