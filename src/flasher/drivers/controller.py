"""Controller-chip driver interface and its binding to the serial session."""

import asyncio
import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from flasher.config import EngineConfig
from flasher.models.mode import DeviceMode
from flasher.transport.session import SerialSession

ProgressCallback = Callable[[float], None]
MessagePredicate = Callable[[str], bool]


@dataclass
class OTWUpdateResult:
    """Result of an over-the-wire firmware update."""

    success: bool
    status: str = ""


class ControllerDriver(Protocol):
    """Application-protocol library driving the controller chip.

    ``start`` resolves once the driver is ready in any mode (application,
    bootloader or command-line menu) and raises if it never becomes ready.
    ``wait_for_bootloader_message`` raises ``asyncio.TimeoutError`` when no
    matching message arrives in time.
    """

    supports_bootloader_command: bool

    @property
    def mode(self) -> DeviceMode:
        ...

    async def start(self) -> None:
        ...

    async def destroy(self) -> None:
        ...

    async def enter_bootloader(self) -> None:
        ...

    async def leave_bootloader(self) -> None:
        ...

    async def firmware_update_otw(
        self, data: bytes, on_progress: ProgressCallback
    ) -> OTWUpdateResult:
        ...

    def find_bootloader_option(self, predicate: MessagePredicate) -> Optional[int]:
        ...

    async def select_bootloader_option(self, option: int) -> None:
        ...

    async def write_serial(self, data: bytes) -> None:
        ...

    async def wait_for_bootloader_message(
        self, predicate: MessagePredicate, timeout: float
    ) -> str:
        ...

    async def get_own_node_id(self) -> int:
        ...

    async def repair_own_node_id(self) -> bool:
        ...


DriverFactory = Callable[[SerialSession], ControllerDriver]


def load_driver_factory(import_string: str) -> DriverFactory:
    """Resolve a driver factory from a 'module:attribute' import string.

    Raises:
        ValueError: If the string is malformed or the attribute is not callable
        ImportError: If the module cannot be imported
        AttributeError: If the module has no such attribute
    """
    module_name, sep, attribute = import_string.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got {import_string!r}")

    target = importlib.import_module(module_name)
    for part in attribute.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise ValueError(f"{import_string} is not callable")
    return target


class ControllerBinding:
    """Owns the controller driver for one serial session.

    The driver must be destroyed before the engine takes raw control of the
    link, and is recreated against the link (reopened at the default baud
    rate if needed) on every re-detection.
    """

    def __init__(
        self,
        session: SerialSession,
        driver_factory: DriverFactory,
        config: Optional[EngineConfig] = None,
    ):
        self.logger = logging.getLogger("flasher.binding")
        self.session = session
        self.driver_factory = driver_factory
        self.config = config or EngineConfig()
        self.driver: Optional[ControllerDriver] = None

    @property
    def mode(self) -> DeviceMode:
        if self.driver is None:
            return DeviceMode.UNKNOWN
        return self.driver.mode

    async def create_driver(self) -> bool:
        """(Re)create the driver and wait until it is ready.

        Returns:
            True if the driver started within its timeout, False otherwise
        """
        await self.destroy_driver()

        try:
            await self._ensure_link()
            driver = self.driver_factory(self.session)
            self.driver = driver
            await asyncio.wait_for(driver.start(), self.config.driver_start_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Driver did not become ready within {self.config.driver_start_timeout}s"
            )
            await self.destroy_driver()
            return False
        except Exception as e:
            self.logger.warning(f"Failed to start the driver: {e}")
            await self.destroy_driver()
            return False

        self.logger.info(f"Driver ready, mode={self.mode.value}")
        return True

    async def redetect(self) -> Optional[DeviceMode]:
        """Recreate the driver and report the resulting mode.

        Returns:
            The current mode, or None if the driver could not start
        """
        if not await self.create_driver():
            return None
        return self.mode

    async def destroy_driver(self) -> None:
        """Detach the driver from the link."""
        if self.driver is None:
            return
        driver, self.driver = self.driver, None
        try:
            await driver.destroy()
        except Exception as e:
            self.logger.debug(f"Ignoring error while destroying driver: {e}")

    async def run_application(self) -> bool:
        """Leave the bootloader and start the application firmware.

        Returns:
            True if the device left bootloader mode
        """
        if self.driver is None or self.mode != DeviceMode.BOOTLOADER:
            self.logger.error("Not in bootloader mode")
            return False

        try:
            await self.driver.leave_bootloader()
        except Exception as e:
            self.logger.error(f"Failed to run application: {e}")
            return False

        started = self.mode != DeviceMode.BOOTLOADER
        self.logger.info(f"Run application: started={started}, mode={self.mode.value}")
        return started

    async def _ensure_link(self) -> None:
        if self.session.is_open and self.session.baudrate == self.config.baudrate:
            return
        if self.session.is_open:
            await self.session.close()
        await self.session.open(self.config.baudrate)
