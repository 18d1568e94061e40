"""Outcome tags, error kinds and terminal operation results."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from flasher.models.mode import DeviceMode


class BootloaderEntryOutcome(str, Enum):
    """Result of a bootloader entry attempt.

    NO_UPDATE_NEEDED is only reachable when a version check rejects
    continuing after the bridge command menu was observed.
    """

    SUCCESS = "success"
    FAILED = "failed"
    NO_UPDATE_NEEDED = "noUpdateNeeded"


class DiagnosisResult(str, Enum):
    """Health classification produced once per diagnosis run."""

    NO_ISSUES = "NO_ISSUES"
    END_DEVICE_FIRMWARE = "END_DEVICE_CLI"
    CORRUPTED_FIRMWARE = "CORRUPTED_FIRMWARE"
    STARTED_APPLICATION = "STARTED_APPLICATION"
    UNKNOWN_FIRMWARE = "UNKNOWN_FIRMWARE"
    CONNECTION_FAILED = "CONNECTION_FAILED"


class RecoveryOutcome(str, Enum):
    """Terminal state of a recovery attempt."""

    RECOVERED = "RECOVERED"
    RECOVERY_FAILED = "RECOVERY_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    FIXED_INVALID_CONTROLLER_ID = "FIXED_CONTROLLER_NODE_ID_239"
    FIX_INVALID_CONTROLLER_ID_FAILED = "FIXING_CONTROLLER_NODE_ID_239_FAILED"


class Remediation(str, Enum):
    """Branch taken after a diagnosis."""

    SUMMARY = "summary"
    RECOVERY = "recovery"


class UserAdvice(str, Enum):
    """What the user should do after a failure."""

    NONE = "none"
    RETRY = "retry"
    SUPPLY_DIFFERENT_FIRMWARE = "supplyDifferentFirmware"
    CHECK_WIRING = "checkWiring"
    ABANDON = "abandon"


class Severity(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Every failure the engine can surface."""

    CONNECTION_FAILED = "CONNECTION_FAILED"
    MODE_PROBE_FAILED = "MODE_PROBE_FAILED"
    BOOTLOADER_ENTRY_FAILED = "BOOTLOADER_ENTRY_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    CHIP_FAMILY_NOT_FOUND = "CHIP_FAMILY_NOT_FOUND"
    DIGEST_MISMATCH = "DIGEST_MISMATCH"
    UNSUPPORTED_ARCHIVE_CONTENTS = "UNSUPPORTED_ARCHIVE_CONTENTS"
    UNSUPPORTED_FIRMWARE_FORMAT = "UNSUPPORTED_FIRMWARE_FORMAT"
    FLASH_WRITE_FAILED = "FLASH_WRITE_FAILED"
    POST_FLASH_VERIFICATION_FAILED = "POST_FLASH_VERIFICATION_FAILED"
    ERASE_OPTION_NOT_FOUND = "ERASE_OPTION_NOT_FOUND"
    ERASE_PROMPT_TIMEOUT = "ERASE_PROMPT_TIMEOUT"
    ERASE_CONFIRMATION_TIMEOUT = "ERASE_CONFIRMATION_TIMEOUT"
    POWER_CYCLE_TIMEOUT = "POWER_CYCLE_TIMEOUT"
    UNEXPECTED_MODE = "UNEXPECTED_MODE"
    OPERATION_IN_PROGRESS = "OPERATION_IN_PROGRESS"
    CANCELLED = "CANCELLED"


_EXPLANATIONS: dict[ErrorKind, tuple[str, UserAdvice]] = {
    ErrorKind.CONNECTION_FAILED: (
        "Unable to establish a connection with the adapter. "
        "Check the USB connection and try again.",
        UserAdvice.RETRY,
    ),
    ErrorKind.MODE_PROBE_FAILED: (
        "The adapter did not respond in any known mode. "
        "Reconnect the device and try again.",
        UserAdvice.RETRY,
    ),
    ErrorKind.BOOTLOADER_ENTRY_FAILED: (
        "Could not put the adapter into bootloader mode with any known method. "
        "Check that the bridge reset and boot pins are wired correctly.",
        UserAdvice.CHECK_WIRING,
    ),
    ErrorKind.DOWNLOAD_FAILED: (
        "Failed to download the firmware. Check your internet connection "
        "and try again, or provide a firmware file.",
        UserAdvice.RETRY,
    ),
    ErrorKind.ASSET_NOT_FOUND: (
        "The latest release does not contain a matching firmware file. "
        "Provide a firmware file instead.",
        UserAdvice.SUPPLY_DIFFERENT_FIRMWARE,
    ),
    ErrorKind.CHIP_FAMILY_NOT_FOUND: (
        "The firmware manifest has no build for this chip family. "
        "Provide a firmware file instead.",
        UserAdvice.SUPPLY_DIFFERENT_FIRMWARE,
    ),
    ErrorKind.DIGEST_MISMATCH: (
        "The downloaded firmware does not match its published checksum and "
        "was rejected. Try again later.",
        UserAdvice.RETRY,
    ),
    ErrorKind.UNSUPPORTED_ARCHIVE_CONTENTS: (
        "Could not extract a valid firmware file from the archive. "
        "Provide a different firmware file.",
        UserAdvice.SUPPLY_DIFFERENT_FIRMWARE,
    ),
    ErrorKind.UNSUPPORTED_FIRMWARE_FORMAT: (
        "The firmware file format is not supported. "
        "Provide a .gbl, .bin or .zip file.",
        UserAdvice.SUPPLY_DIFFERENT_FIRMWARE,
    ),
    ErrorKind.FLASH_WRITE_FAILED: (
        "Writing the firmware failed. Reconnect the adapter and try again, "
        "or provide a different firmware file.",
        UserAdvice.RETRY,
    ),
    ErrorKind.POST_FLASH_VERIFICATION_FAILED: (
        "The firmware was written but the adapter did not start it. "
        "Provide a different firmware file.",
        UserAdvice.SUPPLY_DIFFERENT_FIRMWARE,
    ),
    ErrorKind.ERASE_OPTION_NOT_FOUND: (
        "The bootloader does not offer an NVM erase option. "
        "NVM cannot be erased on this firmware.",
        UserAdvice.ABANDON,
    ),
    ErrorKind.ERASE_PROMPT_TIMEOUT: (
        "The adapter did not confirm that the NVM was erased. "
        "Run the erase again.",
        UserAdvice.RETRY,
    ),
    ErrorKind.ERASE_CONFIRMATION_TIMEOUT: (
        "The adapter did not ask for erase confirmation. "
        "Run the erase again.",
        UserAdvice.RETRY,
    ),
    ErrorKind.POWER_CYCLE_TIMEOUT: (
        "The adapter was not power-cycled in time. Unplug it, plug it back in "
        "and run the update again.",
        UserAdvice.RETRY,
    ),
    ErrorKind.UNEXPECTED_MODE: (
        "The adapter ended up in an unexpected mode. "
        "Provide a different firmware file.",
        UserAdvice.SUPPLY_DIFFERENT_FIRMWARE,
    ),
    ErrorKind.OPERATION_IN_PROGRESS: (
        "Another operation is already running on this adapter.",
        UserAdvice.RETRY,
    ),
    ErrorKind.CANCELLED: (
        "The operation was cancelled.",
        UserAdvice.RETRY,
    ),
}


def explain(kind: ErrorKind) -> tuple[str, UserAdvice]:
    """Human-readable explanation and advice for an error kind."""
    return _EXPLANATIONS[kind]


class FlasherError(Exception):
    """Base error carrying an enumerated kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        mode: Optional[DeviceMode] = None,
    ):
        self.kind = kind
        self.mode = mode
        if message is None:
            message = explain(kind)[0]
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class FirmwareSourceError(FlasherError):
    """Firmware could not be acquired or validated."""


class BootloaderEntryError(FlasherError):
    """Device could not be driven into a bootloader."""


class FlashError(FlasherError):
    """Writing or verifying a firmware image failed."""


class EraseError(FlasherError):
    """NVM erase exchange failed."""


class OperationResult(BaseModel):
    """Terminal result of one engine operation."""

    success: bool
    severity: Severity
    message: str
    outcome: Optional[str] = Field(
        None, description="DiagnosisResult / RecoveryOutcome / BootloaderEntryOutcome tag"
    )
    error: Optional[ErrorKind] = None
    mode: Optional[DeviceMode] = None
    advice: UserAdvice = UserAdvice.NONE

    @classmethod
    def ok(
        cls,
        message: str,
        outcome: Optional[str] = None,
        severity: Severity = Severity.SUCCESS,
    ) -> "OperationResult":
        return cls(success=True, severity=severity, message=message, outcome=outcome)

    @classmethod
    def failed(
        cls,
        error: FlasherError,
        outcome: Optional[str] = None,
    ) -> "OperationResult":
        _, advice = explain(error.kind)
        return cls(
            success=False,
            severity=Severity.ERROR,
            message=error.message,
            outcome=outcome,
            error=error.kind,
            mode=error.mode,
            advice=advice,
        )


class RecoveryChoice(str, Enum):
    """User choice offered after a CORRUPTED or UNKNOWN diagnosis."""

    LATEST = "latest"
    CUSTOM = "custom"
    ABORT = "abort"


_OUTCOME_SUMMARIES: dict[Enum, tuple[Severity, str]] = {
    DiagnosisResult.NO_ISSUES: (
        Severity.SUCCESS,
        "The adapter is working correctly and is ready to use as a controller.",
    ),
    DiagnosisResult.STARTED_APPLICATION: (
        Severity.SUCCESS,
        "The adapter was in bootloader mode but has been started successfully. "
        "It is now ready to use as a controller.",
    ),
    DiagnosisResult.END_DEVICE_FIRMWARE: (
        Severity.WARNING,
        "The adapter is running an end device CLI firmware and will appear "
        "unresponsive to controller applications. Install the controller firmware.",
    ),
    DiagnosisResult.CORRUPTED_FIRMWARE: (
        Severity.ERROR,
        "The adapter has corrupted firmware and requires recovery, "
        "but no recovery was attempted.",
    ),
    DiagnosisResult.UNKNOWN_FIRMWARE: (
        Severity.WARNING,
        "The adapter is running an unknown firmware that is not recognized "
        "as a controller firmware.",
    ),
    DiagnosisResult.CONNECTION_FAILED: (
        Severity.ERROR,
        "Unable to establish a connection with the adapter. "
        "This issue cannot be recovered automatically.",
    ),
    RecoveryOutcome.RECOVERED: (
        Severity.SUCCESS,
        "The adapter has been recovered by installing fresh firmware. "
        "It is now ready to use as a controller.",
    ),
    RecoveryOutcome.RECOVERY_FAILED: (
        Severity.ERROR,
        "The recovery process failed to restore the adapter to a working state.",
    ),
    RecoveryOutcome.DOWNLOAD_FAILED: (
        Severity.ERROR,
        "Failed to download the latest firmware. Check your internet connection "
        "and try again, or provide a custom firmware file.",
    ),
    RecoveryOutcome.FIXED_INVALID_CONTROLLER_ID: (
        Severity.SUCCESS,
        "The invalid controller node ID has been corrected.",
    ),
    RecoveryOutcome.FIX_INVALID_CONTROLLER_ID_FAILED: (
        Severity.ERROR,
        "Failed to correct the invalid controller node ID.",
    ),
}


def summarize_outcome(tag: Enum) -> tuple[Severity, str]:
    """Severity and user-facing summary for a diagnosis or recovery tag."""
    return _OUTCOME_SUMMARIES[tag]
