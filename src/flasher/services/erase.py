"""NVM erase through the controller bootloader menu."""

import asyncio
import logging
from typing import Optional

from flasher.config import EngineConfig
from flasher.drivers.controller import ControllerBinding
from flasher.models.results import (
    BootloaderEntryError,
    BootloaderEntryOutcome,
    EraseError,
    ErrorKind,
)
from flasher.services.bootloader import BootloaderEntry

ERASE_OPTION_LABEL = "erase nvm"
CONFIRMATION_TEXT = "are you sure"
COMPLETION_TEXT = "erased"
CONFIRM_BYTE = b"y"


class NVMEraser:
    """Two-phase erase exchange with the bootloader menu."""

    def __init__(
        self,
        binding: ControllerBinding,
        bootloader_entry: Optional[BootloaderEntry] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.logger = logging.getLogger("flasher.erase")
        self.binding = binding
        self.config = config or binding.config
        self.bootloader_entry = bootloader_entry or BootloaderEntry(binding, config=self.config)

    async def erase(self) -> None:
        """Reset into a fresh bootloader and wipe the NVM.

        Raises:
            BootloaderEntryError: If the bootloader could not be reached
            EraseError: See erase_nvm
        """
        await self.enter_bootloader()
        await self.erase_nvm()

    async def enter_bootloader(self) -> None:
        """Reset into a fresh bootloader, even if the device is already in one."""
        if await self.bootloader_entry.enter(force=True) != BootloaderEntryOutcome.SUCCESS:
            raise BootloaderEntryError(
                ErrorKind.BOOTLOADER_ENTRY_FAILED, "Failed to reset to bootloader"
            )

    async def erase_nvm(self) -> None:
        """Select the erase option and confirm it.

        Raises:
            EraseError: ERASE_OPTION_NOT_FOUND, ERASE_CONFIRMATION_TIMEOUT
                (no "are you sure" prompt) or ERASE_PROMPT_TIMEOUT (no
                "erased" message)
        """
        driver = self.binding.driver
        option = driver.find_bootloader_option(lambda label: label == ERASE_OPTION_LABEL)
        if option is None:
            raise EraseError(ErrorKind.ERASE_OPTION_NOT_FOUND, "Erase NVM option not found")

        # Listen before selecting so the prompt cannot slip past
        confirmation = asyncio.create_task(
            driver.wait_for_bootloader_message(
                lambda message: CONFIRMATION_TEXT in message.lower(),
                self.config.erase_confirmation_timeout,
            )
        )
        try:
            await driver.select_bootloader_option(option)
            await confirmation
        except asyncio.TimeoutError:
            raise EraseError(
                ErrorKind.ERASE_CONFIRMATION_TIMEOUT, "Erase NVM confirmation not received"
            )
        finally:
            if not confirmation.done():
                confirmation.cancel()
        self.logger.info("Erase confirmation prompt received")

        completion = asyncio.create_task(
            driver.wait_for_bootloader_message(
                lambda message: COMPLETION_TEXT in message.lower(),
                self.config.erase_completion_timeout,
            )
        )
        try:
            await driver.write_serial(CONFIRM_BYTE)
            await completion
        except asyncio.TimeoutError:
            raise EraseError(
                ErrorKind.ERASE_PROMPT_TIMEOUT, "NVM erase success message not received"
            )
        finally:
            if not completion.done():
                completion.cancel()
        self.logger.info("NVM erased")
