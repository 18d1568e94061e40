"""Flash pipeline for the controller chip and the bridge chip."""

import logging
from typing import Awaitable, Callable, Optional

from flasher.config import EngineConfig
from flasher.drivers.controller import ControllerBinding
from flasher.models.firmware import FirmwareImage
from flasher.models.mode import DeviceMode
from flasher.models.results import (
    BootloaderEntryError,
    BootloaderEntryOutcome,
    ErrorKind,
    FlashError,
)
from flasher.services.bootloader import BootloaderEntry
from flasher.services.esp_flasher import BridgeFlasher
from flasher.utils.progress import MonotonicProgress, ProgressCallback

StageHook = Callable[[], Awaitable[None]]


class FlashPipeline:
    """Streams validated images to the device and verifies the result."""

    def __init__(
        self,
        binding: ControllerBinding,
        bootloader_entry: Optional[BootloaderEntry] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.logger = logging.getLogger("flasher.flash")
        self.binding = binding
        self.config = config or binding.config
        self.bootloader_entry = bootloader_entry or BootloaderEntry(binding, config=self.config)

    async def flash_controller(
        self,
        image: FirmwareImage,
        on_progress: Optional[ProgressCallback] = None,
        on_bootloader_entry: Optional[StageHook] = None,
        on_flashing: Optional[StageHook] = None,
    ) -> DeviceMode:
        """Write a controller image over the application protocol's OTW update.

        Args:
            image: Validated firmware
            on_progress: Receives monotonic percentages 0-100
            on_bootloader_entry: Awaited before a bootloader entry is attempted
            on_flashing: Awaited once the device is in its bootloader, before
                the image is written

        Returns:
            APPLICATION_PROTOCOL, the mode the device is in afterwards

        Raises:
            BootloaderEntryError: If the bootloader could not be reached
            FlashError: FLASH_WRITE_FAILED, MODE_PROBE_FAILED or UNEXPECTED_MODE
        """
        progress = MonotonicProgress(on_progress)

        if self.binding.driver is None and not await self.binding.create_driver():
            raise FlashError(ErrorKind.CONNECTION_FAILED, "Failed to initialize the controller driver")

        if self.binding.mode != DeviceMode.BOOTLOADER:
            if on_bootloader_entry is not None:
                await on_bootloader_entry()
            outcome = await self.bootloader_entry.enter()
            if outcome != BootloaderEntryOutcome.SUCCESS:
                raise BootloaderEntryError(
                    ErrorKind.BOOTLOADER_ENTRY_FAILED, "Failed to reset to bootloader"
                )

        if on_flashing is not None:
            await on_flashing()
        self.logger.info(
            f"Flashing {image.file_name} ({image.size} bytes, {image.format.value})"
        )
        progress(0)
        try:
            result = await self.binding.driver.firmware_update_otw(image.data, progress)
        except Exception as e:
            self.logger.error(f"Firmware update raised: {e}", exc_info=True)
            raise FlashError(
                ErrorKind.FLASH_WRITE_FAILED, f"Failed to flash firmware: {e}"
            ) from e

        if not result.success:
            self.logger.error(f"Firmware update failed: {result.status}")
            raise FlashError(
                ErrorKind.FLASH_WRITE_FAILED, f"Failed to flash firmware: {result.status}"
            )
        progress.complete()

        mode = await self.binding.redetect()
        if mode is None:
            raise FlashError(
                ErrorKind.MODE_PROBE_FAILED,
                "Firmware installed but the device did not respond in any mode afterwards",
            )
        if mode != DeviceMode.APPLICATION_PROTOCOL:
            raise FlashError(
                ErrorKind.UNEXPECTED_MODE,
                f"Firmware installed but device is in {mode.value} mode "
                f"instead of application mode",
                mode=mode,
            )

        self.logger.info("Firmware installed, application is running")
        return mode

    async def flash_bridge(
        self,
        flasher: BridgeFlasher,
        image: FirmwareImage,
        on_progress: Optional[ProgressCallback] = None,
        on_waiting_power_cycle: Optional[Callable[[], None]] = None,
    ) -> None:
        """Write a bridge image through the ROM bootloader, then wait for a power cycle.

        The bridge must already be in its ROM bootloader.

        Raises:
            FlashError: CONNECTION_FAILED, FLASH_WRITE_FAILED,
                POST_FLASH_VERIFICATION_FAILED or POWER_CYCLE_TIMEOUT
        """
        progress = MonotonicProgress(on_progress)
        try:
            try:
                await flasher.connect()
            except Exception as e:
                self.logger.error(f"Bridge bootloader handshake failed: {e}")
                raise FlashError(
                    ErrorKind.CONNECTION_FAILED, f"Failed to connect to the bridge bootloader: {e}"
                ) from e

            progress(0)
            try:
                await flasher.write_flash(image.data, image.load_offset, progress)
            except Exception as e:
                self.logger.error(f"Bridge flash write failed: {e}", exc_info=True)
                raise FlashError(
                    ErrorKind.FLASH_WRITE_FAILED, f"Failed to install bridge firmware: {e}"
                ) from e
            progress.complete()

            try:
                await flasher.reset()
            except Exception as e:
                raise FlashError(
                    ErrorKind.POST_FLASH_VERIFICATION_FAILED,
                    f"Bridge firmware written but reset failed: {e}",
                ) from e

            self.logger.info("Waiting for the adapter to be power-cycled")
            if on_waiting_power_cycle is not None:
                on_waiting_power_cycle()
            if not await flasher.wait_for_disconnect(self.config.power_cycle_timeout):
                raise FlashError(
                    ErrorKind.POWER_CYCLE_TIMEOUT,
                    f"Adapter was not power-cycled within {self.config.power_cycle_timeout:.0f}s",
                )
            self.logger.info("Power cycle detected")
        finally:
            await flasher.disconnect()
