"""Unit tests for the diagnosis decision tree."""

import pytest

from flasher.models.mode import DeviceMode
from flasher.models.results import DiagnosisResult, Remediation
from flasher.services.diagnosis import diagnose, remediation_for


@pytest.mark.unit
class TestDiagnose:
    """Test diagnose() against every row of the decision table."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "mode, expected",
        [
            (DeviceMode.APPLICATION_PROTOCOL, DiagnosisResult.NO_ISSUES),
            (DeviceMode.COMMAND_LINE_MENU, DiagnosisResult.END_DEVICE_FIRMWARE),
            (DeviceMode.UNKNOWN, DiagnosisResult.UNKNOWN_FIRMWARE),
        ],
    )
    async def test_initial_mode(self, binding, device, mode, expected):
        """Test modes that are classified without running the application."""
        device.mode = mode

        assert await diagnose(binding) == expected

    @pytest.mark.asyncio
    async def test_connection_failed(self, binding, device):
        """Test a driver that never starts."""
        device.start_fails = True

        assert await diagnose(binding) == DiagnosisResult.CONNECTION_FAILED

    @pytest.mark.asyncio
    async def test_bootloader_run_application_fails(self, binding, device):
        """Test a bootloader that cannot start its application is corrupted firmware."""
        device.mode = DeviceMode.BOOTLOADER
        device.application_mode = None

        assert await diagnose(binding) == DiagnosisResult.CORRUPTED_FIRMWARE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "application_mode, expected",
        [
            (DeviceMode.APPLICATION_PROTOCOL, DiagnosisResult.STARTED_APPLICATION),
            (DeviceMode.COMMAND_LINE_MENU, DiagnosisResult.END_DEVICE_FIRMWARE),
            (DeviceMode.UNKNOWN, DiagnosisResult.UNKNOWN_FIRMWARE),
        ],
    )
    async def test_bootloader_run_application(self, binding, device, application_mode, expected):
        """Test the mode reached after running the application."""
        device.mode = DeviceMode.BOOTLOADER
        device.application_mode = application_mode

        assert await diagnose(binding) == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "mode, announced",
        [
            (DeviceMode.BOOTLOADER, 1),
            (DeviceMode.APPLICATION_PROTOCOL, 0),
            (DeviceMode.UNKNOWN, 0),
        ],
    )
    async def test_application_start_is_announced(self, binding, device, mode, announced):
        """Test the hook runs only when the application is actually started."""
        device.mode = mode
        calls = []

        async def on_starting_application():
            calls.append(device.mode)

        await diagnose(binding, on_starting_application)

        assert calls == [DeviceMode.BOOTLOADER] * announced


@pytest.mark.unit
class TestRemediation:
    """Test the diagnosis to remediation mapping."""

    @pytest.mark.parametrize(
        "result",
        [
            DiagnosisResult.NO_ISSUES,
            DiagnosisResult.CONNECTION_FAILED,
            DiagnosisResult.STARTED_APPLICATION,
            DiagnosisResult.END_DEVICE_FIRMWARE,
        ],
    )
    def test_summary(self, result):
        assert remediation_for(result) == Remediation.SUMMARY

    @pytest.mark.parametrize(
        "result", [DiagnosisResult.CORRUPTED_FIRMWARE, DiagnosisResult.UNKNOWN_FIRMWARE]
    )
    def test_recovery(self, result):
        assert remediation_for(result) == Remediation.RECOVERY
