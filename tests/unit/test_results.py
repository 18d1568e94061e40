"""Unit tests for error kinds, outcome summaries and OperationResult."""

import pytest

from flasher.models.mode import DeviceMode
from flasher.models.results import (
    DiagnosisResult,
    ErrorKind,
    FlashError,
    FlasherError,
    OperationResult,
    RecoveryOutcome,
    Severity,
    UserAdvice,
    explain,
    summarize_outcome,
)


@pytest.mark.unit
class TestExplain:
    @pytest.mark.parametrize("kind", list(ErrorKind))
    def test_every_kind_is_explained(self, kind):
        message, advice = explain(kind)

        assert message
        assert isinstance(advice, UserAdvice)

    def test_default_message_comes_from_explanation(self):
        error = FlasherError(ErrorKind.POWER_CYCLE_TIMEOUT)

        assert error.message == explain(ErrorKind.POWER_CYCLE_TIMEOUT)[0]

    def test_wiring_advice_for_bootloader_entry(self):
        assert explain(ErrorKind.BOOTLOADER_ENTRY_FAILED)[1] == UserAdvice.CHECK_WIRING


@pytest.mark.unit
class TestSummaries:
    @pytest.mark.parametrize("tag", list(DiagnosisResult) + list(RecoveryOutcome))
    def test_every_tag_is_summarized(self, tag):
        severity, message = summarize_outcome(tag)

        assert isinstance(severity, Severity)
        assert message

    @pytest.mark.parametrize(
        "tag, severity",
        [
            (DiagnosisResult.NO_ISSUES, Severity.SUCCESS),
            (DiagnosisResult.END_DEVICE_FIRMWARE, Severity.WARNING),
            (DiagnosisResult.CORRUPTED_FIRMWARE, Severity.ERROR),
            (RecoveryOutcome.RECOVERED, Severity.SUCCESS),
            (RecoveryOutcome.FIX_INVALID_CONTROLLER_ID_FAILED, Severity.ERROR),
        ],
    )
    def test_severity(self, tag, severity):
        assert summarize_outcome(tag)[0] == severity


@pytest.mark.unit
class TestOperationResult:
    def test_ok(self):
        result = OperationResult.ok("Recovered", outcome=RecoveryOutcome.RECOVERED.value)

        assert result.success
        assert result.severity == Severity.SUCCESS
        assert result.outcome == "RECOVERED"
        assert result.error is None

    def test_failed_carries_kind_mode_and_advice(self):
        error = FlashError(
            ErrorKind.UNEXPECTED_MODE,
            "Firmware installed but device is in cli mode",
            mode=DeviceMode.COMMAND_LINE_MENU,
        )

        result = OperationResult.failed(error, outcome="RECOVERY_FAILED")

        assert not result.success
        assert result.severity == Severity.ERROR
        assert result.error == ErrorKind.UNEXPECTED_MODE
        assert result.mode == DeviceMode.COMMAND_LINE_MENU
        assert result.advice == UserAdvice.SUPPLY_DIFFERENT_FIRMWARE
        assert result.model_dump(mode="json")["mode"] == "cli"
