"""Status reporting to the device twin's reported properties."""

import json
import logging
from datetime import datetime
from typing import Optional

from remote_monitoring.exceptions import ConnectivityFailure
from remote_monitoring.models.checkpoint import format_time
from remote_monitoring.models.status import PhaseStatus, UpdatePhase
from remote_monitoring.services.connectivity import HubConnection


def phase_payload(
    phase: UpdatePhase, status: PhaseStatus, duration: int, at: datetime
) -> dict:
    """Reported-property patch for one firmware update phase."""
    return {
        "Method": {
            "UpdateFirmware": {
                phase.value: _status_entry(status, duration, at),
            }
        }
    }


def update_payload(status: PhaseStatus, duration: int, at: datetime) -> dict:
    """Reported-property patch for the overall firmware update."""
    return {"Method": {"UpdateFirmware": _status_entry(status, duration, at)}}


def clear_payload() -> dict:
    """Patch removing any stale firmware update status from the twin."""
    return {"Method": {"UpdateFirmware": None}}


def _status_entry(status: PhaseStatus, duration: int, at: datetime) -> dict:
    return {
        "Duration-s": duration,
        "LastUpdate": format_time(at),
        "Status": status.value,
    }


class StatusReporter:
    """Best-effort submission of reported-property patches.

    One submission per call, no batching and no retry. A lost status update
    never aborts the firmware operation that produced it.
    """

    def __init__(self, connection: HubConnection):
        """Initialize status reporter.

        Args:
            connection: Hub connection shared with the DeviceAgent
        """
        self.logger = logging.getLogger("remote_monitoring.reporter")
        self.connection = connection

    async def report(self, payload: dict) -> None:
        """Send a partial reported-state update.

        Args:
            payload: Nested key/value structure to merge into reported properties

        Note:
            Failures are logged but not raised to avoid blocking update operations
        """
        try:
            serialized = json.dumps(payload)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Cannot serialize reported properties {payload!r}: {e}")
            return

        try:
            await self.connection.send_reported_state(payload)
            self.logger.info(f"Succeeded in updating reported properties: {serialized}")
        except ConnectivityFailure as e:
            self.logger.warning(
                f"Failed to update reported properties: {serialized} ({e}). "
                f"Continuing..."
            )

    async def report_phase(
        self,
        phase: UpdatePhase,
        status: PhaseStatus,
        at: datetime,
        duration: int = 0,
    ) -> None:
        await self.report(phase_payload(phase, status, duration, at))

    async def report_update(
        self, status: PhaseStatus, at: datetime, duration: Optional[int] = 0
    ) -> None:
        await self.report(update_payload(status, duration or 0, at))

    async def clear_update_status(self) -> None:
        await self.report(clear_payload())
