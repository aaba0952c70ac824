"""IoT hub connection wrapper (telemetry, twin, direct methods)."""

import json
import logging
from typing import Any, Awaitable, Callable, Optional

from azure.iot.device import Message, MethodResponse
from azure.iot.device.aio import IoTHubDeviceClient
from azure.iot.device.exceptions import (
    ClientError,
    OperationCancelled,
    OperationTimeout,
    ServiceError,
)

from remote_monitoring.exceptions import ConnectivityFailure

HUB_ERRORS = (ClientError, ServiceError, OperationTimeout, OperationCancelled)

MethodHandler = Callable[[str, Any], Awaitable[tuple[int, Any]]]
DesiredHandler = Callable[[dict], Awaitable[None]]


class HubConnection:
    """Single shared hub connection owned by the DeviceAgent.

    Every SDK error is surfaced as ConnectivityFailure; callers decide
    whether to log and continue.
    """

    def __init__(self, client: IoTHubDeviceClient):
        """Initialize connection wrapper.

        Args:
            client: azure-iot-device asyncio device client
        """
        self.logger = logging.getLogger("remote_monitoring.connectivity")
        self.client = client
        self._method_handler: Optional[MethodHandler] = None
        self._desired_handler: Optional[DesiredHandler] = None

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "HubConnection":
        """Create an MQTT-transport connection from a device connection string."""
        client = IoTHubDeviceClient.create_from_connection_string(connection_string)
        return cls(client)

    async def connect(self) -> None:
        self.logger.info("Connecting to IoT hub...")
        try:
            await self.client.connect()
        except HUB_ERRORS as e:
            raise ConnectivityFailure(f"Failed to connect to IoT hub: {e}") from e
        self.logger.info("Connected to IoT hub")

    async def disconnect(self) -> None:
        try:
            await self.client.shutdown()
        except HUB_ERRORS as e:
            self.logger.warning(f"Error while shutting down hub client: {e}")

    async def send_telemetry(self, data: str) -> None:
        """Send a device-to-cloud telemetry message.

        Raises:
            ConnectivityFailure: If the client refuses the message
        """
        message = Message(data, content_encoding="utf-8", content_type="application/json")
        try:
            await self.client.send_message(message)
        except HUB_ERRORS as e:
            raise ConnectivityFailure(f"Failed to send telemetry: {e}") from e

    async def send_reported_state(self, payload: dict) -> None:
        """Patch the reported properties of the device twin.

        Raises:
            ConnectivityFailure: If the patch is not delivered
        """
        try:
            await self.client.patch_twin_reported_properties(payload)
        except HUB_ERRORS as e:
            raise ConnectivityFailure(f"Failed to update reported properties: {e}") from e

    async def get_desired_properties(self) -> dict:
        """Fetch the desired section of the full device twin.

        Raises:
            ConnectivityFailure: If the twin cannot be retrieved
        """
        try:
            twin = await self.client.get_twin()
        except HUB_ERRORS as e:
            raise ConnectivityFailure(f"Failed to get device twin: {e}") from e
        return twin.get("desired", {})

    def on_desired_property_changed(self, callback: DesiredHandler) -> None:
        self._desired_handler = callback
        self.client.on_twin_desired_properties_patch_received = self._dispatch_desired

    def on_method_invoked(self, callback: MethodHandler) -> None:
        """Register ``callback(method_name, payload) -> (status, payload)``."""
        self._method_handler = callback
        self.client.on_method_request_received = self._dispatch_method

    async def _dispatch_desired(self, patch: dict) -> None:
        self.logger.debug(f"Desired properties patch received: {patch}")
        if self._desired_handler is not None:
            await self._desired_handler(patch)

    async def _dispatch_method(self, method_request) -> None:
        self.logger.info(f"Direct method invoked: {method_request.name}")
        try:
            status, payload = await self._method_handler(
                method_request.name, method_request.payload
            )
        except Exception as e:
            self.logger.error(f"Direct method {method_request.name} failed: {e}", exc_info=True)
            status, payload = 500, f"method {method_request.name} failed: {e}"
        response = MethodResponse.create_from_method_request(method_request, status, payload)
        try:
            await self.client.send_method_response(response)
        except HUB_ERRORS as e:
            self.logger.warning(
                f"Failed to send response for {method_request.name}: {e}. "
                f"Response was: {json.dumps(payload)}"
            )
