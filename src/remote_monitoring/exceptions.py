"""Error taxonomy for the remote monitoring agent.

Only the deliberate process exit at the end of a successful apply phase ends
the process; every error below is logged and handled where it is raised.
"""


class RemoteMonitoringError(Exception):
    """Base class for agent errors."""


class ConnectivityFailure(RemoteMonitoringError):
    """A submission to the hub was not delivered."""


class SensorReadFailure(RemoteMonitoringError):
    """The environment sensor could not be read."""


class DownloadFailure(RemoteMonitoringError):
    """The firmware package could not be retrieved."""


class ApplyFailure(RemoteMonitoringError):
    """The downloaded package could not be unpacked or installed."""


class StorageUnavailable(RemoteMonitoringError):
    """The checkpoint file exists but cannot be read or written."""


class LockUnavailable(RemoteMonitoringError):
    """The apply lock file cannot be created or locked."""


class UpdateInProgress(RemoteMonitoringError):
    """A firmware update is already running in this process."""

    def __init__(self, message: str = "Firmware update already in progress"):
        super().__init__(message)
