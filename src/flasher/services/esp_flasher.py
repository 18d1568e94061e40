"""Bridge-chip flashing through esptool."""

import asyncio
import logging
from typing import Callable, Optional, Protocol

import serial.tools.list_ports
from esptool.cmds import detect_chip

WriteProgress = Callable[[int], None]

# USB vendor/product IDs of the ESP32-S3 ROM bootloader
ESP32_ROM_USB_IDS = ((0x303A, 0x0009),)


class BridgeFlasher(Protocol):
    """Flashing library session with the bridge chip's ROM bootloader."""

    async def connect(self) -> None:
        ...

    async def write_flash(self, data: bytes, offset: int, on_progress: WriteProgress) -> None:
        ...

    async def reset(self) -> None:
        ...

    async def wait_for_disconnect(self, timeout: float) -> bool:
        """True once the bridge dropped off the bus, False on timeout."""

    async def disconnect(self) -> None:
        ...


class EsptoolFlasher:
    """BridgeFlasher over the ROM bootloader's serial port.

    esptool is synchronous, so every call runs in a worker thread and
    progress is handed back to the event loop thread.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        poll_interval: float = 0.25,
        port_timeout: float = 10.0,
        usb_ids: tuple[tuple[int, int], ...] = ESP32_ROM_USB_IDS,
    ):
        self.logger = logging.getLogger("flasher.esptool")
        self.port = port
        self.baudrate = baudrate
        self.poll_interval = poll_interval
        self.port_timeout = port_timeout
        self.usb_ids = usb_ids
        self._esp = None

    async def connect(self) -> None:
        """Wait for the ROM bootloader port, then handshake and upload the stub.

        Raises:
            TimeoutError: If no bootloader port enumerates within port_timeout
        """
        self.port = await self.wait_for_port(self.port_timeout)
        self._esp = await asyncio.to_thread(self._connect_sync)
        self.logger.info(f"Connected to {self._esp.CHIP_NAME} on {self.port}")

    async def wait_for_port(self, timeout: float) -> str:
        """Wait for the bridge ROM bootloader to enumerate.

        The bootloader may come up on a different device node than the
        application did, so a port with a ROM bootloader USB ID is accepted
        when the configured one is absent.

        Returns:
            Device path to connect to

        Raises:
            TimeoutError: If no matching port appears in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            found = await asyncio.to_thread(self._find_port)
            if found is not None:
                if found != self.port:
                    self.logger.info(f"Bridge bootloader enumerated on {found} instead of {self.port}")
                return found
            if loop.time() >= deadline:
                raise TimeoutError(
                    f"No bridge bootloader port appeared within {timeout:g}s"
                )
            await asyncio.sleep(self.poll_interval)

    def _connect_sync(self):
        esp = detect_chip(port=self.port, baud=self.baudrate)
        return esp.run_stub()

    async def write_flash(self, data: bytes, offset: int, on_progress: WriteProgress) -> None:
        """Write an image in FLASH_WRITE_SIZE blocks starting at offset."""
        if self._esp is None:
            raise RuntimeError("Not connected to the bridge bootloader")

        loop = asyncio.get_running_loop()

        def report(percent: int) -> None:
            loop.call_soon_threadsafe(on_progress, percent)

        await asyncio.to_thread(self._write_sync, data, offset, report)

    def _write_sync(self, data: bytes, offset: int, report: WriteProgress) -> None:
        esp = self._esp
        block_size = esp.FLASH_WRITE_SIZE
        num_blocks = esp.flash_begin(len(data), offset)
        self.logger.info(f"Writing {len(data)} bytes at 0x{offset:08x} in {num_blocks} blocks")

        for seq in range(num_blocks):
            block = data[seq * block_size : (seq + 1) * block_size]
            # Last block is padded with erased-flash bytes
            block = block + b"\xff" * (block_size - len(block))
            esp.flash_block(block, seq)
            report(round((seq + 1) * 100 / num_blocks))

        esp.flash_finish(False)

    async def reset(self) -> None:
        """Hard reset the bridge chip out of its bootloader."""
        if self._esp is None:
            return
        await asyncio.to_thread(self._esp.hard_reset)
        self.logger.info("Bridge chip reset")

    async def wait_for_disconnect(self, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            present = await asyncio.to_thread(self._port_present)
            if not present:
                self.logger.info(f"{self.port} disconnected")
                return True
            await asyncio.sleep(self.poll_interval)
        return False

    async def disconnect(self) -> None:
        if self._esp is None:
            return
        esp, self._esp = self._esp, None
        port = getattr(esp, "_port", None)
        if port is not None:
            await asyncio.to_thread(port.close)

    def _find_port(self) -> Optional[str]:
        ports = serial.tools.list_ports.comports()
        for p in ports:
            if p.device == self.port:
                return p.device
        for p in ports:
            if (getattr(p, "vid", None), getattr(p, "pid", None)) in self.usb_ids:
                return p.device
        return None

    def _port_present(self) -> bool:
        return any(p.device == self.port for p in serial.tools.list_ports.comports())
