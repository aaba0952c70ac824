"""Local status API for the firmware update procedure."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from remote_monitoring.api.models import ProgressResponse, SuccessResponse, UpdateRequest
from remote_monitoring.exceptions import UpdateInProgress
from remote_monitoring.models.checkpoint import FirmwarePackageReference
from remote_monitoring.models.status import ProcedureStage
from remote_monitoring.services.firmware_update import FirmwareUpdateProcedure

router = APIRouter(prefix="/api/v1.0")


def get_procedure(request: Request) -> FirmwareUpdateProcedure:
    """Procedure owned by the agent started in the app lifespan."""
    return request.app.state.agent.procedure


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(procedure: FirmwareUpdateProcedure = Depends(get_procedure)):
    """GET /api/v1.0/progress - Query firmware update status.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "stage": "downloading",
                "message": "Downloading https://...",
                "error": null,
                "update_begin": "2024-01-01T00:00:00Z",
                "reboot_begin": null
            }
        }

    A failed procedure returns code 500 with the stage repeated at root level.
    """
    status = procedure.get_status()

    if status.stage == ProcedureStage.FAILED:
        msg = f"Update failed: {status.error}" if status.error else "Update failed"
        return ProgressResponse(code=500, msg=msg, data=status, stage=status.stage)
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/update", response_model=SuccessResponse)
async def post_update(
    request: UpdateRequest,
    procedure: FirmwareUpdateProcedure = Depends(get_procedure),
):
    """POST /api/v1.0/update - Start a firmware update from a package URI.

    Returns code 409 if an update is already running.
    """
    try:
        procedure.start(FirmwarePackageReference(source_uri=request.package_uri))
    except UpdateInProgress as e:
        return JSONResponse(
            status_code=200,
            content={
                "code": 409,
                "msg": str(e),
                "stage": procedure.stage.value,
            },
        )

    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": None},
    )
