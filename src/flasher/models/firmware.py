"""Firmware image models."""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FirmwareFormat(str, Enum):
    """Container format of a firmware image."""

    RAW_APPLICATION_IMAGE = "raw"
    PACKAGED_UPDATE_FILE = "packaged"


class FirmwareDigest(BaseModel):
    """Expected content digest attached to a download."""

    model_config = ConfigDict(frozen=True)

    algorithm: str = Field(default="sha256", pattern=r"^sha256$")
    expected_hex: str = Field(..., pattern=r"^[a-fA-F0-9]{64}$")

    @field_validator("expected_hex")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        return v.lower()

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["FirmwareDigest"]:
        """Parse a ``sha256:<hex>`` digest string.

        Returns None for missing values or any other algorithm.
        """
        if not value:
            return None
        match = re.match(r"^sha256:([a-fA-F0-9]{64})$", value)
        if not match:
            return None
        return cls(expected_hex=match.group(1))


class FirmwareImage(BaseModel):
    """Validated firmware ready to be written to a chip.

    Immutable once constructed.
    """

    model_config = ConfigDict(frozen=True)

    file_name: str = Field(..., min_length=1)
    data: bytes = Field(..., repr=False)
    format: FirmwareFormat
    load_offset: int = Field(default=0, ge=0, le=0xFFFFFFFF)

    @property
    def size(self) -> int:
        return len(self.data)


class BridgeFirmwareSource(str, Enum):
    """Where a bridge-chip image comes from."""

    LATEST = "latest"
    MANIFEST = "manifest"
    FILE = "file"
