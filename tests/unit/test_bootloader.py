"""Unit tests for BootloaderEntry."""

import pytest

from flasher.models.mode import DeviceMode
from flasher.models.results import BootloaderEntryOutcome
from flasher.services.bootloader import BootloaderEntry


@pytest.mark.unit
class TestBootloaderEntry:
    """Test the ordered bootloader entry strategies."""

    @pytest.mark.asyncio
    async def test_direct_command_skips_hardware_reset(self, binding, session, device):
        """Test a working bootloader command wins without touching control lines."""
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.SUCCESS
        assert entry.attempted == ["bootloader command"]
        assert device.enter_bootloader_calls == 1
        assert binding.mode == DeviceMode.BOOTLOADER
        assert not [e for e in session.events if e[0] == "signals"]

    @pytest.mark.asyncio
    async def test_hardware_reset_sequence(self, binding, session, device):
        """Test the DTR/RTS toggle runs when no direct command exists."""
        device.supports_bootloader_command = False
        device.hardware_reset_works = True
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.SUCCESS
        assert entry.attempted == ["bootloader command", "hardware reset"]
        assert [e for e in session.events if e[0] == "signals"] == [
            ("signals", False, True),
            ("signals", True, False),
            ("signals", False, False),
        ]

    @pytest.mark.asyncio
    async def test_command_mode_reset_is_last_resort(self, binding, session, device):
        """Test the bridge reset runs after the hardware reset failed."""
        device.supports_bootloader_command = False
        device.bridge_reset_works = True
        session.menu_output = b"cmd> "
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.SUCCESS
        assert entry.attempted == [
            "bootloader command",
            "hardware reset",
            "command mode reset",
        ]
        assert b"BZ" in session.written
        assert binding.mode == DeviceMode.BOOTLOADER

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, binding, device):
        """Test FAILED only after every strategy was tried."""
        device.supports_bootloader_command = False
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.FAILED
        assert len(entry.attempted) == 3

    @pytest.mark.asyncio
    async def test_already_in_bootloader(self, binding, device):
        """Test nothing is attempted when the device is already there."""
        device.mode = DeviceMode.BOOTLOADER
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.SUCCESS
        assert entry.attempted == []

    @pytest.mark.asyncio
    async def test_force_resets_from_bootloader(self, binding, session, device):
        """Test force runs the strategies even from bootloader mode."""
        device.mode = DeviceMode.BOOTLOADER
        device.hardware_reset_works = True
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        outcome = await entry.enter(force=True)

        assert outcome == BootloaderEntryOutcome.SUCCESS
        assert entry.attempted == ["bootloader command", "hardware reset"]

    @pytest.mark.asyncio
    async def test_driver_that_never_starts_is_not_fatal(self, binding, device):
        """Test a driver failing to start counts as not reaching the bootloader."""
        device.supports_bootloader_command = False
        await binding.create_driver()
        device.start_fails = True
        entry = BootloaderEntry(binding)

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.FAILED
        assert binding.driver is None

    @pytest.mark.asyncio
    async def test_strategy_exception_falls_through(self, binding, device):
        """Test a raising strategy is logged and the next one runs."""
        device.supports_bootloader_command = False
        device.hardware_reset_works = True
        await binding.create_driver()
        entry = BootloaderEntry(binding)

        async def boom():
            raise RuntimeError("link lost")

        entry.strategies = lambda: [
            ("broken", boom),
            ("hardware reset", entry._via_hardware_reset),
        ]

        outcome = await entry.enter()

        assert outcome == BootloaderEntryOutcome.SUCCESS
        assert entry.attempted == ["broken", "hardware reset"]
