"""Bridge-chip command mode: magic baud rates, command menu and resets."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from flasher.config import EngineConfig
from flasher.models.results import BootloaderEntryOutcome
from flasher.transport.session import (
    DisconnectSignal,
    SerialSession,
    StreamReader,
    StreamWriter,
)

# Returns True to continue with the update after reading firmware info
VersionCheck = Callable[[str], bool]

CMD_ENTER_BRIDGE_BOOTLOADER = b"BE"
CMD_RESET_CONTROLLER = b"BZ"
CMD_FIRMWARE_INFO = b"I"
CMD_EXIT = b"X"


class MenuState(str, Enum):
    """What the bridge did after the magic baud rate sequence."""

    DISCONNECTED = "disconnected"
    MENU = "menu"
    SILENT = "silent"


class BridgeCommandMode:
    """Talks to the bridge chip's text command menu over the shared link.

    The controller driver must be detached from the session before any of
    these operations run.
    """

    def __init__(self, session: SerialSession, config: Optional[EngineConfig] = None):
        self.logger = logging.getLogger("flasher.bridge")
        self.session = session
        self.config = config or EngineConfig()

    async def enter_bootloader(
        self, version_check: Optional[VersionCheck] = None
    ) -> BootloaderEntryOutcome:
        """Reset the bridge chip into its ROM bootloader.

        Args:
            version_check: Called with the firmware info text when the command
                menu answers; returning False aborts with NO_UPDATE_NEEDED

        Returns:
            SUCCESS once the bridge dropped off the link, FAILED if it never
            did, NO_UPDATE_NEEDED if the version check declined the update
        """
        signal = DisconnectSignal()
        self.session.add_disconnect_listener(signal.fire)
        reader: Optional[StreamReader] = None
        writer: Optional[StreamWriter] = None
        try:
            if not await self.send_magic_baudrates(signal) or signal.fired:
                self.logger.info("Bridge reset during magic baud rate sequence")
                return BootloaderEntryOutcome.SUCCESS

            reader, writer = await self._acquire_streams()
            if reader is None or writer is None:
                self.logger.info("Link handles unavailable after magic sequence, assuming reset")
                return BootloaderEntryOutcome.SUCCESS

            state = await self.check_menu(reader, signal)
            if state == MenuState.DISCONNECTED:
                self.logger.info("Bridge disconnected, entered bootloader via magic sequence")
                return BootloaderEntryOutcome.SUCCESS

            if state == MenuState.MENU and version_check is not None:
                info = await self.request_firmware_info(reader, writer)
                if not version_check(info):
                    self.logger.info("Version check declined the update, leaving command menu")
                    await writer.write(CMD_EXIT)
                    return BootloaderEntryOutcome.NO_UPDATE_NEEDED

            await writer.write(CMD_ENTER_BRIDGE_BOOTLOADER)
            self.logger.info("Sent 'BE' to enter bridge bootloader")
            self._release(reader, writer)
            reader = writer = None

            if await signal.wait(self.config.bridge_disconnect_timeout):
                return BootloaderEntryOutcome.SUCCESS
            self.logger.error(
                f"Bridge did not disconnect within {self.config.bridge_disconnect_timeout}s"
            )
            return BootloaderEntryOutcome.FAILED

        except Exception as e:
            if signal.fired:
                self.logger.info(f"Link dropped during bootloader entry ({e}), assuming reset")
                return BootloaderEntryOutcome.SUCCESS
            self.logger.error(f"Failed to enter bridge bootloader: {e}", exc_info=True)
            return BootloaderEntryOutcome.FAILED
        finally:
            self._release(reader, writer)
            self.session.remove_disconnect_listener(signal.fire)

    async def reset_controller(self) -> bool:
        """Ask the bridge to reset the controller chip into its bootloader.

        Returns:
            False only if the exchange itself failed; whether the controller
            reached its bootloader is left to the caller's re-detection
        """
        signal = DisconnectSignal()
        self.session.add_disconnect_listener(signal.fire)
        reader: Optional[StreamReader] = None
        writer: Optional[StreamWriter] = None
        try:
            self.logger.info("Attempting controller reset via bridge command mode")
            if not await self.send_magic_baudrates(signal) or signal.fired:
                return True

            reader, writer = await self._acquire_streams()
            if reader is None or writer is None:
                self.logger.info("Link handles unavailable after magic sequence, assuming reset")
                return True

            state = await self.check_menu(reader, signal)
            if state == MenuState.MENU:
                await writer.write(CMD_RESET_CONTROLLER)
                self.logger.info("Sent 'BZ' to reset the controller chip")
            elif state == MenuState.DISCONNECTED:
                self.logger.info("Link dropped while waiting for the command menu")
            else:
                self.logger.info("Did not enter command mode, command mode may not be supported")
            return True

        except Exception as e:
            if signal.fired:
                return True
            self.logger.error(f"Failed to reset controller via command mode: {e}", exc_info=True)
            return False
        finally:
            self._release(reader, writer)
            self.session.remove_disconnect_listener(signal.fire)

    async def send_magic_baudrates(self, signal: DisconnectSignal) -> bool:
        """Close and reopen the link at each magic baud rate in turn.

        Returns:
            False if the link could not be reopened, which means the bridge
            already reset
        """
        for index, baudrate in enumerate(self.config.magic_baudrates):
            if signal.fired:
                return True
            if index > 0:
                await asyncio.sleep(self.config.magic_baudrate_delay)
            if self.session.is_open:
                await self.session.close()
            try:
                await self.session.open(baudrate)
            except Exception as e:
                self.logger.info(f"Could not reopen link at {baudrate} baud: {e}")
                return False
        await asyncio.sleep(self.config.magic_baudrate_delay)
        self.logger.info("Sent magic baudrate sequence")
        return True

    async def check_menu(self, reader: StreamReader, signal: DisconnectSignal) -> MenuState:
        """Race a disconnect against the command menu prompt."""
        timeout = self.config.menu_timeout
        menu_task = asyncio.create_task(self._read_until_prompt(reader, timeout))
        disconnect_task = asyncio.create_task(signal.wait(timeout))
        done, pending = await asyncio.wait(
            {menu_task, disconnect_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if disconnect_task in done and disconnect_task.result():
            return MenuState.DISCONNECTED
        if menu_task in done and menu_task.result() is not None:
            self.logger.info("Bridge command menu detected")
            return MenuState.MENU
        return MenuState.SILENT

    async def request_firmware_info(self, reader: StreamReader, writer: StreamWriter) -> str:
        """Send the info command and collect the text up to the next prompt."""
        await writer.write(CMD_FIRMWARE_INFO)
        text = await self._read_until_prompt(reader, self.config.firmware_info_timeout)
        info = (text or "").replace(self.config.menu_prompt, "").strip()
        self.logger.info(f"Bridge firmware info: {info!r}")
        return info

    async def _acquire_streams(self) -> tuple[Optional[StreamReader], Optional[StreamWriter]]:
        if self.session.is_open:
            await self.session.close()
        try:
            await self.session.open(self.config.bridge_baudrate)
        except Exception as e:
            self.logger.info(f"Could not reopen link for the command menu: {e}")
            return None, None
        return self.session.get_reader(), self.session.get_writer()

    async def _read_until_prompt(self, reader: StreamReader, timeout: float) -> Optional[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        buffer = ""
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            chunk = await reader.read(remaining)
            if chunk is None:
                return None
            buffer += chunk.decode("utf-8", errors="replace")
            if self.config.menu_prompt in buffer:
                return buffer

    @staticmethod
    def _release(reader: Optional[StreamReader], writer: Optional[StreamWriter]) -> None:
        if writer is not None:
            writer.release()
        if reader is not None:
            reader.release()
