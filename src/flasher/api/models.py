"""Pydantic models for HTTP API requests and responses."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from flasher.models.firmware import BridgeFirmwareSource
from flasher.models.results import OperationResult, RecoveryChoice
from flasher.models.status import Action, StageEnum


class UpdateRequest(BaseModel):
    """POST /api/v1.0/update payload.

    Flashes a user-supplied controller firmware file.

    Example:
        {
            "path": "/tmp/ZWA-2_7.23.1.gbl"
        }
    """

    path: str = Field(
        ...,
        min_length=1,
        description="Local path of a .gbl, .bin or .zip firmware file",
        examples=["/tmp/ZWA-2_7.23.1.gbl", "/tmp/firmware.zip"],
    )


class RecoverRequest(BaseModel):
    """POST /api/v1.0/recover payload.

    The choice is applied only if diagnosis finds corrupted or unknown
    firmware.

    Example:
        {
            "choice": "custom",
            "path": "/tmp/ZWA-2_7.23.1.gbl"
        }
    """

    choice: RecoveryChoice = Field(
        default=RecoveryChoice.LATEST, description="latest, custom or abort"
    )
    path: Optional[str] = Field(
        None, description="Firmware file, required when choice == custom"
    )

    @model_validator(mode="after")
    def custom_needs_path(self):
        """A custom recovery must name a file."""
        if self.choice == RecoveryChoice.CUSTOM and not self.path:
            raise ValueError("path is required when choice is 'custom'")
        return self


class BridgeUpdateRequest(BaseModel):
    """POST /api/v1.0/bridge/update payload.

    Example:
        {
            "source": "manifest",
            "manifest_url": "https://example.com/firmware/manifest.json",
            "chip_family": "ESP32-S3"
        }
    """

    source: BridgeFirmwareSource = Field(
        default=BridgeFirmwareSource.LATEST, description="latest, manifest or file"
    )
    path: Optional[str] = Field(None, description="Firmware file, required when source == file")
    load_offset: int = Field(default=0, ge=0, description="Flash offset for a file source")
    manifest_url: Optional[str] = Field(
        None, pattern=r"^https?://.+", description="Overrides the configured manifest URL"
    )
    chip_family: Optional[str] = Field(None, description="Overrides the configured chip family")
    bridge_port: Optional[str] = Field(
        None, description="Port of the bridge ROM bootloader, defaults to the adapter port"
    )
    skip_if_version: Optional[str] = Field(
        None,
        description="Leave the bridge untouched if its firmware info contains this text",
        examples=["v1.2.0"],
    )

    @model_validator(mode="after")
    def file_needs_path(self):
        """A file source must name a file."""
        if self.source == BridgeFirmwareSource.FILE and not self.path:
            raise ValueError("path is required when source is 'file'")
        return self


class ProgressData(BaseModel):
    """Snapshot of the running (or last finished) action."""

    action: Optional[Action] = Field(None, description="Action being run, None when idle")
    stage: StageEnum = Field(..., description="Current stage")
    progress: int = Field(..., ge=0, le=100, description="Monotonic percentage within the action")
    message: str = Field(..., description="What the engine is doing right now")
    error: Optional[str] = Field(None, description="'KIND: explanation' once the action failed")
    result: Optional[OperationResult] = Field(
        None, description="Terminal result of the last action"
    )


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress envelope.

    HTTP status is always 200; ``code`` carries 200, 404, 409 or 500. Failed
    snapshots repeat stage and progress at the top level.
    """

    code: int = Field(..., description="Application code: 200, 404, 409 or 500")
    msg: str = Field(..., description="'success' or the failure text")
    data: ProgressData
    stage: Optional[StageEnum] = Field(None, description="Set when code != 200")
    progress: Optional[int] = Field(None, description="Set when code != 200")


class SuccessResponse(BaseModel):
    """Envelope returned once an action was accepted."""

    code: int = 200
    msg: str = "success"
    data: Optional[dict] = None


class ReportPayload(ProgressData):
    """Body POSTed to the configured report URL.

    Sent on every stage transition and once with the terminal result.
    """

    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
