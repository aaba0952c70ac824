"""Integration tests for the full firmware update flow across a restart."""

import asyncio
import json
import zipfile
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from remote_monitoring.config import AgentSettings, DeviceIdentity
from remote_monitoring.exceptions import ConnectivityFailure, DownloadFailure
from remote_monitoring.models.checkpoint import FirmwarePackageReference
from remote_monitoring.services.agent import DeviceAgent
from remote_monitoring.services.checkpoint_store import ResumeStateStore
from remote_monitoring.services.deploy import ApplyService
from remote_monitoring.services.download import DownloadService
from remote_monitoring.services.firmware_update import FirmwareUpdateProcedure
from remote_monitoring.services.lock import LockGuard
from remote_monitoring.services.reporter import StatusReporter

PACKAGE = FirmwarePackageReference(source_uri="https://example.com/remote_monitoring.zip")


def _reported(mock_connection):
    """Reported-property patches in submission order."""
    return [c.args[0] for c in mock_connection.send_reported_state.await_args_list]


def _firmware_statuses(mock_connection):
    """Flatten UpdateFirmware patches to (key, Status, Duration-s) tuples."""
    result = []
    for payload in _reported(mock_connection):
        update = payload.get("Method", {}).get("UpdateFirmware", "absent")
        if update == "absent":
            continue
        if update is None:
            result.append(("clear", None, None))
        elif "Status" in update:
            result.append(("UpdateFirmware", update["Status"], update["Duration-s"]))
        else:
            for phase, entry in update.items():
                result.append((phase, entry["Status"], entry["Duration-s"]))
    return result


@pytest.mark.integration
class TestUpdateFlow:
    """Procedure, store, lock and reporter wired together on a temp dir."""

    @pytest.fixture
    def package_bytes(self, tmp_path):
        source = tmp_path / "source.zip"
        with zipfile.ZipFile(source, "w") as zf:
            zf.writestr("remote_monitoring", b"new firmware")
            zf.writestr("firmwarereboot.sh", b"#!/bin/sh\r\nsudo reboot\r\n")
        return source.read_bytes()

    @pytest.fixture
    def process_manager(self):
        manager = MagicMock()
        manager.spawn_detached = AsyncMock(return_value=4242)
        manager.terminate = MagicMock()
        return manager

    @pytest.fixture
    def store(self, checkpoint_path):
        return ResumeStateStore(checkpoint_path)

    @pytest.fixture
    def downloader(self, tmp_path):
        return DownloadService(tmp_path / "remote_monitoring.zip")

    def _procedure(self, tmp_path, mock_connection, store, downloader, process_manager, clock):
        return FirmwareUpdateProcedure(
            reporter=StatusReporter(mock_connection),
            store=store,
            lock=LockGuard(tmp_path / "tmp" / "firmware_apply.lock"),
            downloader=downloader,
            applier=ApplyService(
                install_dir=tmp_path / "cmake" / "remote_monitoring",
                executable_name="remote_monitoring",
                reboot_script="firmwarereboot.sh",
                reboot_log=tmp_path / "reboot.txt",
                work_dir=tmp_path,
                process_manager=process_manager,
            ),
            process_manager=process_manager,
            clock=clock,
        )

    def _agent(self, mock_connection, store, procedure):
        sensor = MagicMock()
        sensor.read_environment = MagicMock(return_value=(20.0, 40.0, True))
        return DeviceAgent(
            settings=AgentSettings(),
            identity=DeviceIdentity(device_id="rpi-01", connection_string="HostName=hub"),
            connection=mock_connection,
            reporter=procedure.reporter,
            store=store,
            procedure=procedure,
            sensor=sensor,
            light=MagicMock(),
        )

    @pytest.mark.asyncio
    async def test_fresh_start_without_checkpoint(
        self, tmp_path, mock_connection, store, downloader, process_manager, clock, checkpoint_path
    ):
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)
        agent = self._agent(mock_connection, store, procedure)

        await agent.start()

        assert _firmware_statuses(mock_connection) == []
        assert not checkpoint_path.exists()

    @pytest.mark.asyncio
    async def test_update_then_restart_reports_completion(
        self,
        tmp_path,
        mock_connection,
        store,
        downloader,
        process_manager,
        clock,
        checkpoint_path,
        package_bytes,
    ):
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)

        async def fetch(url):
            clock.advance(60)
            downloader.target_path.write_bytes(package_bytes)
            return downloader.target_path

        with patch.object(downloader, "download", side_effect=fetch):
            await procedure.start(PACKAGE)

        # Process exit requested after Reboot Running
        process_manager.terminate.assert_called_once()
        assert checkpoint_path.read_text().splitlines() == [
            "2024-01-01 00:00:00",
            "2024-01-01 00:01:00",
        ]
        assert (tmp_path / "cmake" / "remote_monitoring" / "remote_monitoring").exists()
        assert (tmp_path / "firmwarereboot.sh").read_bytes() == b"#!/bin/sh\nsudo reboot\n"
        assert not (tmp_path / "remote_monitoring.zip").exists()

        # Lock released before exit, so it can be taken again
        lock = LockGuard(tmp_path / "tmp" / "firmware_apply.lock")
        lock.release(lock.acquire())

        assert _firmware_statuses(mock_connection) == [
            ("clear", None, None),
            ("Download", "Running", 0),
            ("Download", "Complete", 60),
            ("Applied", "Running", 0),
            ("Applied", "Complete", 0),
            ("Reboot", "Running", 0),
        ]

        # Simulated restart: fresh objects, same files, 4 minutes later
        clock.advance(240)
        mock_connection.send_reported_state.reset_mock()
        restarted_store = ResumeStateStore(checkpoint_path)
        restarted = self._procedure(
            tmp_path, mock_connection, restarted_store, downloader, MagicMock(), clock
        )
        agent = self._agent(mock_connection, restarted_store, restarted)

        await agent.start()

        assert _firmware_statuses(mock_connection) == [
            ("Reboot", "Complete", 240),
            ("UpdateFirmware", "Complete", 300),
        ]
        assert checkpoint_path.read_text() == ""
        assert restarted_store.load() is None

        # A further restart reports nothing
        mock_connection.send_reported_state.reset_mock()
        await self._agent(mock_connection, restarted_store, restarted).recover_interrupted_update()
        assert _firmware_statuses(mock_connection) == []

    @pytest.mark.asyncio
    async def test_finalize_from_persisted_checkpoint(
        self, tmp_path, mock_connection, store, downloader, process_manager, clock, checkpoint_path
    ):
        checkpoint_path.parent.mkdir(parents=True)
        checkpoint_path.write_text("2024-01-01 00:00:00\n2024-01-01 00:05:00")
        clock.advance(7 * 60)
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)

        await self._agent(mock_connection, store, procedure).start()

        reboot_complete, update_complete = [
            p for p in _reported(mock_connection) if p.get("Method", {}).get("UpdateFirmware")
        ]
        assert reboot_complete == {
            "Method": {
                "UpdateFirmware": {
                    "Reboot": {
                        "Duration-s": 120,
                        "LastUpdate": "2024-01-01 00:07:00",
                        "Status": "Complete",
                    }
                }
            }
        }
        assert update_complete["Method"]["UpdateFirmware"]["Duration-s"] == 420
        assert checkpoint_path.read_text() == ""

    @pytest.mark.asyncio
    async def test_download_failure(
        self, tmp_path, mock_connection, store, downloader, process_manager, clock, checkpoint_path
    ):
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)

        with patch.object(
            downloader, "download", side_effect=DownloadFailure("DOWNLOAD_FAILED: unreachable")
        ):
            await procedure.start(PACKAGE)

        assert _firmware_statuses(mock_connection) == [
            ("clear", None, None),
            ("Download", "Running", 0),
            ("Download", "Failed", 0),
            ("UpdateFirmware", "Failed", 0),
        ]
        assert checkpoint_path.read_text() == "2024-01-01 00:00:00\n"
        process_manager.terminate.assert_not_called()
        process_manager.spawn_detached.assert_not_awaited()

        # Next start leaves the failed update alone
        mock_connection.send_reported_state.reset_mock()
        assert await self._agent(mock_connection, store, procedure).recover_interrupted_update() is False
        assert _reported(mock_connection) == []

    @pytest.mark.asyncio
    async def test_reporting_failures_do_not_abort_update(
        self, tmp_path, mock_connection, store, downloader, process_manager, clock, package_bytes
    ):
        mock_connection.send_reported_state.side_effect = ConnectivityFailure("offline")
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)

        async def fetch(url):
            downloader.target_path.write_bytes(package_bytes)
            return downloader.target_path

        with patch.object(downloader, "download", side_effect=fetch):
            await procedure.start(PACKAGE)

        process_manager.terminate.assert_called_once()
        assert store.load().reboot_begin is not None

    @pytest.mark.asyncio
    async def test_update_request_during_finalize_rejected(
        self, tmp_path, mock_connection, store, downloader, process_manager, clock, checkpoint_path
    ):
        checkpoint_path.parent.mkdir(parents=True)
        checkpoint_path.write_text("2024-01-01 00:00:00\n2024-01-01 00:05:00")
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)
        agent = self._agent(mock_connection, store, procedure)
        responses = []

        async def method_during_report(payload):
            if (payload.get("Method", {}).get("UpdateFirmware") or {}).get("Reboot"):
                responses.append(
                    await agent.handle_method(
                        "InitiateFirmwareUpdate", {"FwPackageURI": PACKAGE.source_uri}
                    )
                )

        mock_connection.send_reported_state.side_effect = method_during_report

        with patch.object(downloader, "download") as mock_download:
            await agent.start()

        assert responses == [(409, "Firmware update already in progress")]
        mock_download.assert_not_called()
        assert checkpoint_path.read_text() == ""
        assert procedure.stage.value == "done"
        assert procedure.is_running() is False

    @pytest.mark.asyncio
    async def test_telemetry_unaffected_by_running_update(
        self, tmp_path, mock_connection, store, downloader, process_manager, clock
    ):
        procedure = self._procedure(tmp_path, mock_connection, store, downloader, process_manager, clock)
        agent = self._agent(mock_connection, store, procedure)
        release = asyncio.Event()

        async def blocked(url):
            await release.wait()
            raise DownloadFailure("DOWNLOAD_FAILED: cancelled")

        with patch.object(downloader, "download", side_effect=blocked):
            task = procedure.start(PACKAGE)
            await asyncio.sleep(0)
            await agent.send_telemetry()
            release.set()
            await task

        message = json.loads(mock_connection.send_telemetry.await_args_list[0].args[0])
        assert message["DeviceID"] == "rpi-01"
