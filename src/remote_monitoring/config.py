"""Agent configuration loaded from defaults and RM_* environment variables."""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class AgentSettings(BaseModel):
    """Runtime settings for the device agent.

    Every field can be overridden with an environment variable named
    ``RM_<FIELD_NAME>`` (upper case), see :func:`load_settings`.
    """

    device_info_path: Path = Field(
        Path("./config/deviceinfo"),
        description="Two-line file: device id, then connection string",
    )
    checkpoint_path: Path = Field(
        Path("./config/lastupdate"), description="Firmware update resume checkpoint"
    )
    lock_path: Path = Field(
        Path("./tmp/firmware_apply.lock"),
        description="Advisory lock marking the apply step in progress",
    )
    download_dir: Path = Field(Path("."), description="Where packages are downloaded")
    package_name: str = Field("remote_monitoring.zip", description="Package filename")
    install_dir: Path = Field(
        Path("./cmake/remote_monitoring"), description="Where packages are unpacked"
    )
    executable_name: str = Field("remote_monitoring", description="Installed binary")
    reboot_script: str = Field("firmwarereboot.sh", description="Script shipped in package")
    reboot_log: Path = Field(Path("/tmp/reboot.txt"), description="Reboot script output")

    telemetry_interval: int = Field(3, gt=0, description="Seconds between telemetry")
    firmware_version: str = Field("1.0", description="Reported firmware version")

    led_pin: int = Field(4, ge=0, description="BCM pin of the status LED")
    i2c_bus: int = Field(1, ge=0, description="I2C bus of the BME280 sensor")
    sensor_address: int = Field(0x76, ge=0, description="I2C address of the sensor")

    download_timeout: float = Field(30.0, gt=0, description="HTTP timeout in seconds")

    log_file: str = Field("./logs/remote_monitoring.log")
    log_level: str = Field("INFO")

    status_api_host: str = Field("127.0.0.1")
    status_api_port: int = Field(9180, gt=0, lt=65536)

    @property
    def package_path(self) -> Path:
        return self.download_dir / self.package_name

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper())


class DeviceIdentity(BaseModel):
    """Device identifier and connection credential."""

    device_id: str = Field(..., min_length=1)
    connection_string: str = Field(..., min_length=1)

    def __repr__(self):
        return f"DeviceIdentity(device_id={self.device_id}, connection_string=***)"


ENV_PREFIX = "RM_"


def load_settings(environ: Optional[dict] = None) -> AgentSettings:
    """Build settings from ``RM_*`` environment variables over the defaults.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        Validated AgentSettings
    """
    environ = os.environ if environ is None else environ
    overrides = {}
    for name in AgentSettings.model_fields:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            overrides[name] = value
    if "sensor_address" in overrides:
        overrides["sensor_address"] = int(overrides["sensor_address"], 0)
    return AgentSettings(**overrides)


def load_device_identity(path: Path) -> DeviceIdentity:
    """Read the device info file.

    Args:
        path: File whose first line is the device id and second line the
            connection string

    Returns:
        DeviceIdentity

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If either line is missing or blank
    """
    logger = logging.getLogger("remote_monitoring.config")

    with open(path, "r", encoding="utf-8") as f:
        lines = [line.strip() for line in f.readlines()[:2]]

    if len(lines) < 2 or not all(lines):
        raise ValueError(f"Device info file {path} must hold a device id and a connection string")

    logger.info(f"Read device id: {lines[0]}")
    return DeviceIdentity(device_id=lines[0], connection_string=lines[1])
