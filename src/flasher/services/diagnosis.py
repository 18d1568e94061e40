"""Diagnosis decision tree for the controller chip."""

import logging
from typing import Awaitable, Callable, Optional

from flasher.drivers.controller import ControllerBinding
from flasher.models.mode import DeviceMode
from flasher.models.results import DiagnosisResult, Remediation

logger = logging.getLogger("flasher.diagnosis")

_REMEDIATION = {
    DiagnosisResult.NO_ISSUES: Remediation.SUMMARY,
    DiagnosisResult.CONNECTION_FAILED: Remediation.SUMMARY,
    DiagnosisResult.STARTED_APPLICATION: Remediation.SUMMARY,
    DiagnosisResult.END_DEVICE_FIRMWARE: Remediation.SUMMARY,
    DiagnosisResult.CORRUPTED_FIRMWARE: Remediation.RECOVERY,
    DiagnosisResult.UNKNOWN_FIRMWARE: Remediation.RECOVERY,
}


def remediation_for(result: DiagnosisResult) -> Remediation:
    """Branch the recover workflow takes for a diagnosis result."""
    return _REMEDIATION[result]


async def diagnose(
    binding: ControllerBinding,
    on_starting_application: Optional[Callable[[], Awaitable[None]]] = None,
) -> DiagnosisResult:
    """Classify the health of the attached controller chip.

    Connects with a fresh driver and inspects the mode it lands in. A device
    sitting in its bootloader is asked to run its application once; what it
    does next decides between a healthy, foreign or corrupted firmware.

    Args:
        binding: Controller binding over the open serial session
        on_starting_application: Awaited before a device found in its
            bootloader is asked to run the application

    Returns:
        Exactly one DiagnosisResult per run
    """
    if not await binding.create_driver():
        logger.warning("Diagnosis: driver failed to start")
        return DiagnosisResult.CONNECTION_FAILED

    mode = binding.mode
    logger.info(f"Diagnosis: device is in {mode.value} mode")

    if mode == DeviceMode.APPLICATION_PROTOCOL:
        result = DiagnosisResult.NO_ISSUES
    elif mode == DeviceMode.COMMAND_LINE_MENU:
        result = DiagnosisResult.END_DEVICE_FIRMWARE
    elif mode == DeviceMode.BOOTLOADER:
        if on_starting_application is not None:
            await on_starting_application()
        result = await _diagnose_bootloader(binding)
    else:
        result = DiagnosisResult.UNKNOWN_FIRMWARE

    logger.info(f"Diagnosis result: {result.value}")
    return result


async def _diagnose_bootloader(binding: ControllerBinding) -> DiagnosisResult:
    if not await binding.run_application():
        return DiagnosisResult.CORRUPTED_FIRMWARE

    mode = binding.mode
    logger.info(f"After running the application the device is in {mode.value} mode")
    if mode == DeviceMode.APPLICATION_PROTOCOL:
        return DiagnosisResult.STARTED_APPLICATION
    if mode == DeviceMode.COMMAND_LINE_MENU:
        return DiagnosisResult.END_DEVICE_FIRMWARE
    if mode == DeviceMode.UNKNOWN:
        return DiagnosisResult.UNKNOWN_FIRMWARE
    return DiagnosisResult.CORRUPTED_FIRMWARE
