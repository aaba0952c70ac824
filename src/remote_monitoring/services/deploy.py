"""Apply a downloaded firmware package and hand off to its reboot script."""

import logging
import shutil
import stat
import zipfile
from pathlib import Path
from typing import Optional

from remote_monitoring.exceptions import ApplyFailure
from remote_monitoring.services.process import ProcessManager


class ApplyService:
    """Unpacks the package, installs the executable, starts the reboot script.

    The reboot script runs detached; this service returns as soon as it has
    been launched.
    """

    def __init__(
        self,
        install_dir: Path,
        executable_name: str,
        reboot_script: str,
        reboot_log: Path,
        work_dir: Path = Path("."),
        process_manager: Optional[ProcessManager] = None,
    ):
        """Initialize apply service.

        Args:
            install_dir: Directory the package is unpacked into
            executable_name: Agent binary inside the package
            reboot_script: Script shipped in the package that performs the reboot
            reboot_log: Where the reboot script output goes
            work_dir: Directory the reboot script is moved to and run from
            process_manager: ProcessManager instance (new one if None)
        """
        self.logger = logging.getLogger("remote_monitoring.deploy")
        self.install_dir = Path(install_dir)
        self.executable_name = executable_name
        self.reboot_script = reboot_script
        self.reboot_log = Path(reboot_log)
        self.work_dir = Path(work_dir)
        self.process_manager = process_manager or ProcessManager()

    async def apply(self, package_path: Path) -> None:
        """Install ``package_path`` and launch its reboot script.

        Args:
            package_path: Downloaded ZIP package (deleted once unpacked)

        Raises:
            ApplyFailure: If the package is invalid or a file operation fails
        """
        package_path = Path(package_path)
        self.logger.info(f"Applying firmware package {package_path}")

        try:
            self._extract(package_path)
            script_path = self._install_reboot_script()
            self._make_executable(self.install_dir / self.executable_name)
            package_path.unlink(missing_ok=True)
            await self.process_manager.spawn_detached(
                ["sh", str(script_path)], self.reboot_log
            )
        except (zipfile.BadZipFile, OSError) as e:
            self.logger.error(f"Failed to apply firmware: {e}")
            raise ApplyFailure(f"APPLY_FAILED: {e}") from e

        self.logger.info("Firmware applied, reboot script launched")

    def _extract(self, package_path: Path) -> None:
        with zipfile.ZipFile(package_path, "r") as zf:
            for name in zf.namelist():
                if name.startswith("/") or ".." in Path(name).parts:
                    raise ApplyFailure(f"APPLY_FAILED: unsafe path in package: {name}")
            self.install_dir.mkdir(parents=True, exist_ok=True)
            zf.extractall(self.install_dir)
        self.logger.info(f"Unpacked {package_path.name} into {self.install_dir}")

    def _install_reboot_script(self) -> Path:
        source = self.install_dir / self.reboot_script
        if not source.exists():
            raise ApplyFailure(f"APPLY_FAILED: {self.reboot_script} not found in package")

        target = self.work_dir / self.reboot_script
        shutil.move(str(source), str(target))

        # Scripts authored on Windows break /bin/sh
        content = target.read_bytes().replace(b"\r", b"")
        target.write_bytes(content)

        self._make_executable(target)
        return target

    def _make_executable(self, path: Path) -> None:
        if not path.exists():
            self.logger.warning(f"{path} not present in package, skipping chmod")
            return
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
