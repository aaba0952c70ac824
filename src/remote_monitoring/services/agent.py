"""Device agent: hub session, telemetry loop, direct methods and twin sync."""

import asyncio
import json
import logging
from typing import Any

from gpiozero.exc import GPIOZeroError
from pydantic import ValidationError

from remote_monitoring.config import AgentSettings, DeviceIdentity
from remote_monitoring.exceptions import ConnectivityFailure, UpdateInProgress
from remote_monitoring.models.checkpoint import FirmwarePackageReference
from remote_monitoring.services.checkpoint_store import ResumeStateStore
from remote_monitoring.services.connectivity import HubConnection
from remote_monitoring.services.firmware_update import FirmwareUpdateProcedure
from remote_monitoring.services.hardware import EnvironmentSensor, StatusLight
from remote_monitoring.services.reporter import StatusReporter

SUPPORTED_METHODS = {
    "LightBlink": "light blink",
    "ChangeLightStatus--LightStatusValue-int": "Change light status, on and off",
    "InitiateFirmwareUpdate--FwPackageURI-string": (
        "Updates device Firmware. Use parameter FwPackageURI to specifiy the URI "
        "of the firmware file"
    ),
}


class DeviceAgent:
    """Owns the hub connection and the primary telemetry loop.

    The firmware update procedure runs on its own task; the telemetry loop
    never waits on it.
    """

    def __init__(
        self,
        settings: AgentSettings,
        identity: DeviceIdentity,
        connection: HubConnection,
        reporter: StatusReporter,
        store: ResumeStateStore,
        procedure: FirmwareUpdateProcedure,
        sensor: EnvironmentSensor,
        light: StatusLight,
    ):
        self.logger = logging.getLogger("remote_monitoring.agent")
        self.settings = settings
        self.identity = identity
        self.connection = connection
        self.reporter = reporter
        self.store = store
        self.procedure = procedure
        self.sensor = sensor
        self.light = light
        self.telemetry_interval = settings.telemetry_interval

    async def start(self) -> None:
        """Connect, publish initial state and finish any interrupted update.

        Raises:
            ConnectivityFailure: If the hub connection cannot be opened
        """
        await self.connection.connect()
        self.connection.on_method_invoked(self.handle_method)
        self.connection.on_desired_property_changed(self.handle_desired_properties)
        await self.sync_desired_properties()

        await self.reporter.report(self.initial_reported_state())
        await self.recover_interrupted_update()

        self.logger.info("Send DeviceInfo object to IoT Hub at startup")
        await self._send(self.device_info_message())

    async def sync_desired_properties(self) -> None:
        """Apply desired properties set while this process was not running."""
        try:
            desired = await self.connection.get_desired_properties()
        except ConnectivityFailure as e:
            self.logger.warning(f"{e}. Keeping TelemetryInterval={self.telemetry_interval}")
            return
        await self.handle_desired_properties(desired)

    async def stop(self) -> None:
        await self.connection.disconnect()
        self.sensor.close()
        self.light.close()

    async def recover_interrupted_update(self) -> bool:
        """Finalize an update whose reboot hand-off happened before this start.

        Returns:
            True if a completed update was finalized
        """
        checkpoint = self.store.load()
        if checkpoint is None:
            self.logger.info("No interrupted firmware update found")
            return False

        if not checkpoint.awaiting_finalize:
            self.logger.warning(
                "Checkpoint holds an update that never reached reboot "
                "(failed or interrupted before apply); leaving it for inspection"
            )
            return False

        await self.procedure.finalize(checkpoint)
        return True

    async def run_telemetry_loop(self) -> None:
        """Send telemetry forever at the current interval."""
        self.logger.info(f"Telemetry loop started, interval={self.telemetry_interval}s")
        while True:
            await self.send_telemetry()
            await asyncio.sleep(self.telemetry_interval)

    async def send_telemetry(self) -> None:
        temperature, humidity, ok = self.sensor.read_environment()
        if not ok:
            self.logger.warning(
                f"Read Sensor Data Failed, send simulated data "
                f"Humidity = {humidity:.1f}% Temperature = {temperature:.1f}*C"
            )
        message = json.dumps(
            {
                "DeviceID": self.identity.device_id,
                "Temperature": temperature,
                "Humidity": humidity,
            }
        )
        self.logger.debug(f"Sending sensor value: {message}")
        await self._send(message)

    async def handle_method(self, name: str, payload: Any) -> tuple[int, Any]:
        """Dispatch a direct method invocation.

        Returns:
            (status, payload) for the method response
        """
        handlers = {
            "LightBlink": self._light_blink,
            "ChangeLightStatus": self._change_light_status,
            "InitiateFirmwareUpdate": self._initiate_firmware_update,
        }
        handler = handlers.get(name)
        if handler is None:
            self.logger.warning(f"Unknown direct method: {name}")
            return 404, f"unknown method {name}"
        return await handler(payload)

    async def handle_desired_properties(self, patch: dict) -> None:
        interval = patch.get("TelemetryInterval")
        if interval is None:
            return
        try:
            interval = int(interval)
        except (TypeError, ValueError):
            self.logger.warning(f"Ignoring invalid desired TelemetryInterval: {interval!r}")
            return
        if interval <= 0:
            self.logger.warning(f"Ignoring non-positive desired TelemetryInterval: {interval}")
            return

        self.logger.info(f"Received a new desired TelemetryInterval = {interval}")
        self.telemetry_interval = interval
        await self.reporter.report({"Config": {"TelemetryInterval": interval}})

    def initial_reported_state(self) -> dict:
        return {
            "Config": {"TelemetryInterval": self.telemetry_interval},
            "System": {"FirmwareVersion": self.settings.firmware_version},
            "SupportedMethods": SUPPORTED_METHODS,
        }

    def device_info_message(self) -> str:
        return json.dumps(
            {
                "ObjectType": "DeviceInfo",
                "IsSimulatedDevice": 0,
                "Version": self.settings.firmware_version,
                "DeviceProperties": {
                    "DeviceID": self.identity.device_id,
                    "TelemetryInterval": self.telemetry_interval,
                    "HubEnabledState": True,
                },
                "Telemetry": [
                    {"Name": "Temperature", "DisplayName": "Temperature", "Type": "double"},
                    {"Name": "Humidity", "DisplayName": "Humidity", "Type": "double"},
                ],
            }
        )

    async def _send(self, message: str) -> None:
        try:
            await self.connection.send_telemetry(message)
        except ConnectivityFailure as e:
            self.logger.warning(f"{e}. Continuing...")

    async def _light_blink(self, payload: Any) -> tuple[int, Any]:
        self.logger.info("Raspberry Pi light blink")
        try:
            await self.light.blink()
        except GPIOZeroError as e:
            return 500, f"light blink failed: {e}"
        return 201, "light blink success"

    async def _change_light_status(self, payload: Any) -> tuple[int, Any]:
        value = payload.get("LightStatusValue") if isinstance(payload, dict) else payload
        try:
            value = int(value)
        except (TypeError, ValueError):
            return 400, "LightStatusValue must be an integer"

        self.logger.info("Raspberry Pi light status change")
        try:
            self.light.set(value)
        except GPIOZeroError as e:
            return 500, f"light status change failed: {e}"
        return 201, "light status changed"

    async def _initiate_firmware_update(self, payload: Any) -> tuple[int, Any]:
        uri = payload.get("FwPackageURI") if isinstance(payload, dict) else payload
        try:
            package = FirmwarePackageReference(source_uri=uri)
        except ValidationError:
            return 400, "FwPackageURI is required"

        try:
            self.procedure.start(package)
        except UpdateInProgress as e:
            self.logger.warning(f"Rejected firmware update request: {e}")
            return 409, str(e)
        return 201, "Initiating Firmware Update"
