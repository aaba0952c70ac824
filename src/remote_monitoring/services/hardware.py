"""Raspberry Pi hardware adapters: BME280 environment sensor and status LED."""

import asyncio
import logging
from typing import Optional

import bme280
import smbus2
from gpiozero import LED
from gpiozero.exc import GPIOZeroError

from remote_monitoring.exceptions import SensorReadFailure

# Sent in place of a reading when the sensor fails
SENTINEL_READING = -300.0


class EnvironmentSensor:
    """Temperature and humidity from a BME280 on I2C."""

    def __init__(self, bus_number: int = 1, address: int = 0x76):
        self.logger = logging.getLogger("remote_monitoring.sensor")
        self.bus_number = bus_number
        self.address = address
        self._bus: Optional[smbus2.SMBus] = None
        self._calibration = None

    def read_environment(self) -> tuple[float, float, bool]:
        """Read the sensor.

        Returns:
            (temperature_c, humidity_pct, success). On failure both readings
            are SENTINEL_READING and success is False.
        """
        try:
            temperature, humidity = self._sample()
        except SensorReadFailure as e:
            self.logger.warning(f"{e}, sending sentinel values")
            return SENTINEL_READING, SENTINEL_READING, False

        self.logger.debug(
            f"Read Sensor Data: Humidity = {humidity:.1f}% Temperature = {temperature:.1f}*C"
        )
        return temperature, humidity, True

    def close(self) -> None:
        if self._bus is not None:
            self._bus.close()
            self._bus = None

    def _sample(self) -> tuple[float, float]:
        try:
            if self._bus is None:
                self._bus = smbus2.SMBus(self.bus_number)
                self._calibration = bme280.load_calibration_params(self._bus, self.address)
            data = bme280.sample(self._bus, self.address, self._calibration)
        except OSError as e:
            self.close()
            raise SensorReadFailure(
                f"Read Sensor Data Failed on bus {self.bus_number} address {hex(self.address)}: {e}"
            ) from e
        return float(data.temperature), float(data.humidity)


class StatusLight:
    """Green status LED driven through gpiozero."""

    def __init__(self, pin: int = 4):
        self.logger = logging.getLogger("remote_monitoring.light")
        self.pin = pin
        self._led: Optional[LED] = None

    def set(self, value: int) -> None:
        """Switch the light on (non-zero) or off (zero).

        Raises:
            GPIOZeroError: If the pin cannot be driven
        """
        led = self._get_led()
        self.logger.info(f"LED value {value}")
        if value:
            led.on()
        else:
            led.off()

    async def blink(self, count: int = 2, interval: float = 1.0) -> None:
        for _ in range(count):
            self.logger.info("light on")
            self.set(1)
            await asyncio.sleep(interval)
            self.logger.info("light off")
            self.set(0)
            await asyncio.sleep(interval)

    def close(self) -> None:
        if self._led is not None:
            self._led.close()
            self._led = None

    def _get_led(self) -> LED:
        if self._led is None:
            try:
                self._led = LED(self.pin)
            except GPIOZeroError:
                self.logger.error(f"Cannot drive GPIO pin {self.pin}")
                raise
        return self._led
