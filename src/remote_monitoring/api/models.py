"""Pydantic models for the local status API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from remote_monitoring.models.status import ProcedureStage


class UpdateRequest(BaseModel):
    """POST /api/v1.0/update payload.

    Starts a firmware update from a package URI, same as the
    InitiateFirmwareUpdate direct method.

    Example:
        {
            "package_uri": "https://example.com/firmware/remote_monitoring.zip"
        }
    """

    package_uri: str = Field(
        ...,
        pattern=r"^https?://.+",
        description="HTTP/HTTPS URL of the firmware package",
        examples=["https://example.com/firmware/remote_monitoring.zip"],
    )


class ProgressData(BaseModel):
    """Firmware update status nested in response."""

    stage: ProcedureStage = Field(..., description="Current procedure stage")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(None, description="Error if stage == failed")
    update_begin: Optional[datetime] = Field(None, description="Update start time (UTC)")
    reboot_begin: Optional[datetime] = Field(None, description="Reboot hand-off time (UTC)")


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")
    stage: Optional[ProcedureStage] = Field(
        None, description="Current stage (for failed responses at root level)"
    )


class SuccessResponse(BaseModel):
    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")
