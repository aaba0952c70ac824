"""Process control for the reboot hand-off."""

import asyncio
import logging
import os
from pathlib import Path


class ProcessManager:
    """Launches the detached reboot script and ends this process."""

    def __init__(self):
        self.logger = logging.getLogger("remote_monitoring.process")

    async def spawn_detached(self, command: list[str], log_path: Path) -> int:
        """Start ``command`` in its own session without waiting for it.

        Args:
            command: Program and arguments
            log_path: File receiving stdout and stderr

        Returns:
            PID of the started process

        Raises:
            OSError: If the process cannot be started
        """
        self.logger.info(f"Launching detached: {' '.join(command)} > {log_path}")
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, "ab") as log_file:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_file,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )

        self.logger.info(f"Detached process started with pid {process.pid}")
        return process.pid

    def terminate(self, exit_code: int = 0) -> None:
        """End the process so the reboot script can replace it.

        Terminal action of a successful firmware apply. Log handlers are
        flushed first; ``os._exit`` skips interpreter cleanup.
        """
        self.logger.info(f"Exiting with code {exit_code} for firmware reboot")
        logging.shutdown()
        os._exit(exit_code)
