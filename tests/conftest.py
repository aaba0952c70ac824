"""Global pytest fixtures and configuration."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeClock:
    """Clock returning a fixed time, advanced explicitly by tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def utc(year, month, day, hour=0, minute=0, second=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock fixed at 2024-01-01 00:00:00 UTC."""
    return FakeClock(utc(2024, 1, 1))


@pytest.fixture
def mock_connection():
    """Mock HubConnection recording submissions."""
    connection = MagicMock()
    connection.connect = AsyncMock()
    connection.disconnect = AsyncMock()
    connection.send_telemetry = AsyncMock()
    connection.send_reported_state = AsyncMock()
    connection.get_desired_properties = AsyncMock(return_value={})
    connection.on_method_invoked = MagicMock()
    connection.on_desired_property_changed = MagicMock()
    return connection


@pytest.fixture
def mock_reporter():
    """Mock StatusReporter for unit tests."""
    reporter = MagicMock()
    reporter.report = AsyncMock()
    reporter.report_phase = AsyncMock()
    reporter.report_update = AsyncMock()
    reporter.clear_update_status = AsyncMock()
    return reporter


@pytest.fixture
def checkpoint_path(tmp_path):
    """Checkpoint file location inside a temp config dir."""
    return tmp_path / "config" / "lastupdate"
