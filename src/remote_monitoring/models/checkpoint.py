"""Checkpoint model persisted across the firmware reboot."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_time(value: datetime) -> str:
    """Format a timestamp as ``YYYY-MM-DD HH:MM:SS`` in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIME_FORMAT)


def parse_time(text: str) -> datetime:
    """Exact inverse of :func:`format_time`.

    Raises:
        ValueError: If ``text`` does not match the fixed-width format
    """
    return datetime.strptime(text.strip(), TIME_FORMAT).replace(tzinfo=timezone.utc)


def duration_seconds(begin: datetime, end: datetime) -> int:
    """Whole seconds between two captured timestamps, never negative."""
    return max(0, int((end - begin).total_seconds()))


class UpdateCheckpoint(BaseModel):
    """Resume state written to the checkpoint file.

    Line 1 holds ``update_begin``; line 2 holds ``reboot_begin`` once the
    reboot phase has been reached.
    """

    update_begin: datetime = Field(..., description="When the update procedure began")
    reboot_begin: Optional[datetime] = Field(
        None, description="When the reboot hand-off began"
    )

    @field_validator("update_begin", "reboot_begin", mode="before")
    @classmethod
    def parse_formatted(cls, v):
        """Accept the persisted string form as well as datetimes."""
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str):
            return parse_time(v)
        return v

    @field_validator("update_begin", "reboot_begin")
    @classmethod
    def truncate_to_seconds(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return None
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc).replace(microsecond=0)

    @property
    def awaiting_finalize(self) -> bool:
        """True once the process has been handed off to the reboot script."""
        return self.reboot_begin is not None

    def to_lines(self) -> list[str]:
        reboot = format_time(self.reboot_begin) if self.reboot_begin else ""
        return [format_time(self.update_begin), reboot]


class FirmwarePackageReference(BaseModel):
    """Where to fetch the firmware package from."""

    source_uri: str = Field(..., min_length=1, description="Package URI")
