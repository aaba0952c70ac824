"""Status enums for the firmware update procedure."""

from enum import Enum


class ProcedureStage(str, Enum):
    """Firmware update lifecycle stages.

    State transitions:
    notStarted → downloading → applying → rebooting → (process exit)
                      ↓            ↓
                    failed ←───────
    next process start: finalizing → done
    """

    NOT_STARTED = "notStarted"
    DOWNLOADING = "downloading"
    APPLYING = "applying"
    REBOOTING = "rebooting"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class UpdatePhase(str, Enum):
    """Phase names as they appear in the reported twin properties."""

    DOWNLOAD = "Download"
    APPLIED = "Applied"
    REBOOT = "Reboot"


class PhaseStatus(str, Enum):
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"
