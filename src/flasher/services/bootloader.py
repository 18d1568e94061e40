"""Controller-chip bootloader entry via an ordered list of strategies."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from flasher.config import EngineConfig
from flasher.drivers.controller import ControllerBinding
from flasher.models.mode import DeviceMode
from flasher.models.results import BootloaderEntryOutcome
from flasher.services.bridge import BridgeCommandMode

Strategy = tuple[str, Callable[[], Awaitable[bool]]]


class BootloaderEntry:
    """Drives the controller chip into its bootloader.

    Strategies run in order and the first one that lands the device in
    BOOTLOADER mode wins:

    1. ``bootloader command``: only when the application protocol is running
       and offers a direct command
    2. ``hardware reset``: DTR/RTS toggle sequence
    3. ``command mode reset``: the bridge chip pulls the controller's reset
       line via its command menu
    """

    def __init__(
        self,
        binding: ControllerBinding,
        bridge: Optional[BridgeCommandMode] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.logger = logging.getLogger("flasher.bootloader")
        self.binding = binding
        self.config = config or binding.config
        self.bridge = bridge or BridgeCommandMode(binding.session, self.config)
        self.attempted: list[str] = []

    def strategies(self) -> list[Strategy]:
        return [
            ("bootloader command", self._via_bootloader_command),
            ("hardware reset", self._via_hardware_reset),
            ("command mode reset", self._via_command_mode),
        ]

    async def enter(self, force: bool = False) -> BootloaderEntryOutcome:
        """Reach BOOTLOADER mode from whatever mode the device is in.

        Args:
            force: Reset into a fresh bootloader even if already there

        Returns:
            SUCCESS or FAILED once every strategy was exhausted
        """
        self.attempted = []
        if not force and self.binding.mode == DeviceMode.BOOTLOADER:
            self.logger.info("Already in bootloader mode")
            return BootloaderEntryOutcome.SUCCESS

        for name, attempt in self.strategies():
            self.attempted.append(name)
            self.logger.info(f"Attempting bootloader entry via {name}")
            try:
                reached = await attempt()
            except Exception as e:
                self.logger.warning(f"Bootloader entry via {name} raised: {e}")
                reached = False

            if reached:
                self.logger.info(f"Successfully entered bootloader via {name}")
                return BootloaderEntryOutcome.SUCCESS
            self.logger.info(f"Bootloader entry via {name} failed")

        self.logger.error(f"All bootloader entry strategies failed: {', '.join(self.attempted)}")
        return BootloaderEntryOutcome.FAILED

    async def _via_bootloader_command(self) -> bool:
        driver = self.binding.driver
        if (
            driver is None
            or self.binding.mode != DeviceMode.APPLICATION_PROTOCOL
            or not getattr(driver, "supports_bootloader_command", False)
        ):
            self.logger.debug("Direct bootloader command not available")
            return False

        await driver.enter_bootloader()
        return await self.binding.redetect() == DeviceMode.BOOTLOADER

    async def _via_hardware_reset(self) -> bool:
        # The driver must let go of the link before the signals are toggled
        await self.binding.destroy_driver()
        session = self.binding.session
        if not session.is_open:
            await session.open(self.config.baudrate)

        await session.set_signals(data_terminal_ready=False, request_to_send=True)
        await asyncio.sleep(self.config.reset_settle_delay)
        await session.set_signals(data_terminal_ready=True, request_to_send=False)
        await asyncio.sleep(self.config.reset_hold_delay)
        await session.set_signals(data_terminal_ready=False, request_to_send=False)
        await asyncio.sleep(self.config.reset_release_delay)

        return await self.binding.redetect() == DeviceMode.BOOTLOADER

    async def _via_command_mode(self) -> bool:
        await self.binding.destroy_driver()
        if not await self.bridge.reset_controller():
            return False

        await asyncio.sleep(self.config.post_reset_delay)
        return await self.binding.redetect() == DeviceMode.BOOTLOADER
