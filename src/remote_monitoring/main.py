"""Entry point: device agent plus local status API."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from remote_monitoring.api.routes import router
from remote_monitoring.config import AgentSettings, load_device_identity, load_settings
from remote_monitoring.services.agent import DeviceAgent
from remote_monitoring.services.checkpoint_store import ResumeStateStore
from remote_monitoring.services.connectivity import HubConnection
from remote_monitoring.services.deploy import ApplyService
from remote_monitoring.services.download import DownloadService
from remote_monitoring.services.firmware_update import FirmwareUpdateProcedure
from remote_monitoring.services.hardware import EnvironmentSensor, StatusLight
from remote_monitoring.services.lock import LockGuard
from remote_monitoring.services.process import ProcessManager
from remote_monitoring.services.reporter import StatusReporter
from remote_monitoring.utils.logging import setup_logger


def build_agent(settings: AgentSettings) -> DeviceAgent:
    """Wire the agent and its collaborators from settings.

    Raises:
        FileNotFoundError: If the device info file is missing
        ValueError: If the device info file is incomplete
    """
    identity = load_device_identity(settings.device_info_path)
    connection = HubConnection.from_connection_string(identity.connection_string)
    reporter = StatusReporter(connection)
    store = ResumeStateStore(settings.checkpoint_path)
    process_manager = ProcessManager()

    procedure = FirmwareUpdateProcedure(
        reporter=reporter,
        store=store,
        lock=LockGuard(settings.lock_path),
        downloader=DownloadService(settings.package_path, timeout=settings.download_timeout),
        applier=ApplyService(
            install_dir=settings.install_dir,
            executable_name=settings.executable_name,
            reboot_script=settings.reboot_script,
            reboot_log=settings.reboot_log,
            work_dir=settings.download_dir,
            process_manager=process_manager,
        ),
        process_manager=process_manager,
    )

    return DeviceAgent(
        settings=settings,
        identity=identity,
        connection=connection,
        reporter=reporter,
        store=store,
        procedure=procedure,
        sensor=EnvironmentSensor(settings.i2c_bus, settings.sensor_address),
        light=StatusLight(settings.led_pin),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Build the agent, connect and publish initial reported state
    - Finalize a firmware update interrupted by the reboot hand-off
    - Start the telemetry loop task

    Shutdown:
    - Cancel the telemetry loop and close the hub connection
    """
    settings = load_settings()
    logger = setup_logger(
        "remote_monitoring", settings.log_file, level=settings.log_level_value
    )
    logger.info("Remote monitoring agent starting up...")

    agent = build_agent(settings)
    await agent.start()
    app.state.agent = agent

    telemetry_task = asyncio.create_task(agent.run_telemetry_loop(), name="telemetry")
    logger.info(
        f"Agent ready, status API on {settings.status_api_host}:{settings.status_api_port}"
    )

    yield

    logger.info("Remote monitoring agent shutting down...")
    telemetry_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await telemetry_task
    await agent.stop()


app = FastAPI(
    title="Remote Monitoring Agent",
    description="Raspberry Pi telemetry agent with resumable firmware update",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "remote-monitoring", "version": "1.0.0"}


def main():
    """Main entry point for running the agent."""
    settings = load_settings()
    uvicorn.run(
        app,
        host=settings.status_api_host,
        port=settings.status_api_port,
        log_level=logging.getLevelName(settings.log_level_value).lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
