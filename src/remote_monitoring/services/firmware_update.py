"""Firmware update procedure: download → apply → reboot, resumable after restart."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from remote_monitoring.api.models import ProgressData
from remote_monitoring.exceptions import (
    ApplyFailure,
    DownloadFailure,
    LockUnavailable,
    UpdateInProgress,
)
from remote_monitoring.models.checkpoint import (
    FirmwarePackageReference,
    UpdateCheckpoint,
    duration_seconds,
    utc_now,
)
from remote_monitoring.models.status import PhaseStatus, ProcedureStage, UpdatePhase
from remote_monitoring.services.checkpoint_store import ResumeStateStore
from remote_monitoring.services.deploy import ApplyService
from remote_monitoring.services.download import DownloadService
from remote_monitoring.services.lock import LockGuard
from remote_monitoring.services.process import ProcessManager
from remote_monitoring.services.reporter import StatusReporter


class FirmwareUpdateProcedure:
    """Runs one firmware update at a time as a background task.

    Phases and their reported status:
        Download: Running → Complete | Failed
        Applied:  Running → Complete | Failed (apply lock held around it)
        Reboot:   Running, then the process exits for the reboot script.
                  Complete is reported by :meth:`finalize` on the next start.

    Checkpoints are saved once the update begins and again once the reboot
    begins, each before the following Running report.
    """

    def __init__(
        self,
        reporter: StatusReporter,
        store: ResumeStateStore,
        lock: LockGuard,
        downloader: DownloadService,
        applier: ApplyService,
        process_manager: Optional[ProcessManager] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize firmware update procedure.

        Args:
            reporter: Reported-properties submitter
            store: Resume checkpoint store
            lock: Advisory lock held while applying
            downloader: Package retrieval
            applier: Package installation and reboot hand-off
            process_manager: Performs the terminal process exit
            clock: Returns the current UTC time
        """
        self.logger = logging.getLogger("remote_monitoring.firmware_update")
        self.reporter = reporter
        self.store = store
        self.lock = lock
        self.downloader = downloader
        self.applier = applier
        self.process_manager = process_manager or ProcessManager()
        self.clock = clock

        self._task: Optional[asyncio.Task] = None
        self._finalizing = False
        self._checkpoint: Optional[UpdateCheckpoint] = None
        self._stage = ProcedureStage.NOT_STARTED
        self._message = "No firmware update started"
        self._error: Optional[str] = None

    @property
    def stage(self) -> ProcedureStage:
        return self._stage

    def is_running(self) -> bool:
        """True while an update task or a finalize is in flight."""
        if self._finalizing:
            return True
        return self._task is not None and not self._task.done()

    def get_status(self) -> ProgressData:
        """Current status for the local progress endpoint."""
        checkpoint = self._checkpoint
        return ProgressData(
            stage=self._stage,
            message=self._message,
            error=self._error,
            update_begin=checkpoint.update_begin if checkpoint else None,
            reboot_begin=checkpoint.reboot_begin if checkpoint else None,
        )

    def start(self, package: FirmwarePackageReference) -> asyncio.Task:
        """Start the procedure on a background task.

        Args:
            package: Where to fetch the firmware from

        Returns:
            The running task

        Raises:
            UpdateInProgress: If a procedure is already running
        """
        if self.is_running():
            raise UpdateInProgress()

        self.logger.info(f"Received firmware update request. Use package at: {package.source_uri}")
        self._task = asyncio.create_task(self.run(package), name="firmware-update")
        return self._task

    async def run(self, package: FirmwarePackageReference) -> None:
        """Execute the procedure; only returns on failure (or if exit is stubbed)."""
        try:
            await self._run(package)
        except Exception as e:
            self.logger.error(f"Firmware update aborted: {e}", exc_info=True)
            self._set_status(ProcedureStage.FAILED, "Firmware update failed", f"UPDATE_FAILED: {e}")
            end = self.clock()
            begin = self._checkpoint.update_begin if self._checkpoint else end
            await self.reporter.report_update(
                PhaseStatus.FAILED, end, duration_seconds(begin, end)
            )

    async def finalize(self, checkpoint: UpdateCheckpoint) -> None:
        """Recovery entry point: complete reporting after the reboot hand-off.

        Called once at process start when the loaded checkpoint has both
        timestamps. Clears the checkpoint afterwards. :meth:`start` is
        rejected with UpdateInProgress until this returns.
        """
        if checkpoint.reboot_begin is None:
            raise ValueError("Checkpoint has no reboot begin time, nothing to finalize")

        self.logger.info("Start sending firmware update complete")
        self._finalizing = True
        try:
            self._checkpoint = checkpoint
            self._set_status(ProcedureStage.FINALIZING, "Reporting firmware update completion")

            step_end = self.clock()
            await self.reporter.report_phase(
                UpdatePhase.REBOOT,
                PhaseStatus.COMPLETE,
                step_end,
                duration_seconds(checkpoint.reboot_begin, step_end),
            )

            end = self.clock()
            await self.reporter.report_update(
                PhaseStatus.COMPLETE, end, duration_seconds(checkpoint.update_begin, end)
            )

            self.store.clear()
            self._set_status(ProcedureStage.DONE, "Firmware update complete")
        finally:
            self._finalizing = False
        self.logger.info("Finished sending firmware update complete")

    async def _run(self, package: FirmwarePackageReference) -> None:
        await self.reporter.clear_update_status()

        begin = self.clock()
        self._checkpoint = UpdateCheckpoint(update_begin=begin)
        self._set_status(ProcedureStage.DOWNLOADING, f"Downloading {package.source_uri}")
        self.store.save(self._checkpoint)

        step_begin = self.clock()
        await self.reporter.report_phase(UpdatePhase.DOWNLOAD, PhaseStatus.RUNNING, step_begin)

        try:
            package_path = await self.downloader.download(package.source_uri)
        except DownloadFailure as e:
            step_end = self.clock()
            await self.reporter.report_phase(
                UpdatePhase.DOWNLOAD,
                PhaseStatus.FAILED,
                step_end,
                duration_seconds(step_begin, step_end),
            )
            end = self.clock()
            await self.reporter.report_update(
                PhaseStatus.FAILED, end, duration_seconds(begin, end)
            )
            # Save point 1 stays on disk; recovery skips it
            self._set_status(ProcedureStage.FAILED, "Download failed", str(e))
            return

        step_end = self.clock()
        await self.reporter.report_phase(
            UpdatePhase.DOWNLOAD,
            PhaseStatus.COMPLETE,
            step_end,
            duration_seconds(step_begin, step_end),
        )

        if not await self._apply(package_path, begin):
            return

        reboot_begin = self.clock()
        self._checkpoint = UpdateCheckpoint(update_begin=begin, reboot_begin=reboot_begin)
        self.store.save(self._checkpoint)
        self._set_status(ProcedureStage.REBOOTING, "Handing off to reboot script")
        await self.reporter.report_phase(UpdatePhase.REBOOT, PhaseStatus.RUNNING, reboot_begin)

        self.process_manager.terminate()

    async def _apply(self, package_path: Path, begin: datetime) -> bool:
        step_begin = self.clock()
        self._set_status(ProcedureStage.APPLYING, "Applying firmware")
        await self.reporter.report_phase(UpdatePhase.APPLIED, PhaseStatus.RUNNING, step_begin)

        try:
            handle = self.lock.acquire()
        except LockUnavailable as e:
            self.logger.warning(f"{e}. Applying without the advisory lock")
            handle = None

        try:
            await self.applier.apply(package_path)
        except ApplyFailure as e:
            failure = e
        else:
            failure = None
        finally:
            self.lock.release(handle)

        step_end = self.clock()
        if failure is not None:
            await self.reporter.report_phase(
                UpdatePhase.APPLIED,
                PhaseStatus.FAILED,
                step_end,
                duration_seconds(step_begin, step_end),
            )
            end = self.clock()
            await self.reporter.report_update(
                PhaseStatus.FAILED, end, duration_seconds(begin, end)
            )
            self._set_status(ProcedureStage.FAILED, "Apply failed", str(failure))
            return False

        await self.reporter.report_phase(
            UpdatePhase.APPLIED,
            PhaseStatus.COMPLETE,
            step_end,
            duration_seconds(step_begin, step_end),
        )
        return True

    def _set_status(
        self, stage: ProcedureStage, message: str, error: Optional[str] = None
    ) -> None:
        self._stage = stage
        self._message = message
        self._error = error
        self.logger.debug(f"Status updated: stage={stage.value}, message={message}")
