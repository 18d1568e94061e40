"""Serial session: the single point-to-point link to the adapter."""

import asyncio
import logging
from typing import Callable, Optional, Protocol

import serial
import serial.tools.list_ports

DisconnectListener = Callable[[], None]


class DisconnectSignal:
    """One-shot notification resolved exactly once.

    Register ``fire`` as a disconnect listener and race ``wait`` against a
    timer.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def fire(self) -> None:
        if not self._event.is_set():
            self._event.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the signal.

        Returns:
            True if fired, False if the timeout elapsed first
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False


class StreamReader(Protocol):
    async def read(self, timeout: float) -> Optional[bytes]:
        """Read the next chunk; None on timeout or end of stream."""

    def release(self) -> None:
        ...


class StreamWriter(Protocol):
    async def write(self, data: bytes) -> None:
        ...

    def release(self) -> None:
        ...


class SerialSession(Protocol):
    """Link-layer collaborator consumed by the engine."""

    @property
    def is_open(self) -> bool:
        ...

    @property
    def baudrate(self) -> Optional[int]:
        ...

    async def open(self, baudrate: int) -> None:
        ...

    async def close(self) -> None:
        ...

    async def set_signals(
        self,
        data_terminal_ready: Optional[bool] = None,
        request_to_send: Optional[bool] = None,
    ) -> None:
        ...

    def get_reader(self) -> Optional[StreamReader]:
        """Lock and return the reader, or None if unavailable."""

    def get_writer(self) -> Optional[StreamWriter]:
        """Lock and return the writer, or None if unavailable."""

    def release_locks(self) -> None:
        """Release any reader/writer lock still held."""

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        ...

    def remove_disconnect_listener(self, listener: DisconnectListener) -> None:
        ...


class _PySerialReader:
    def __init__(self, session: "PySerialSession"):
        self._session = session
        self._released = False

    async def read(self, timeout: float) -> Optional[bytes]:
        if self._released:
            return None
        try:
            data = await asyncio.wait_for(self._session._read_chunk(), timeout)
        except asyncio.TimeoutError:
            return None
        return data or None

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._session._reader = None


class _PySerialWriter:
    def __init__(self, session: "PySerialSession"):
        self._session = session
        self._released = False

    async def write(self, data: bytes) -> None:
        if self._released:
            raise RuntimeError("Writer lock was released")
        await self._session._write(data)

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._session._writer = None


class PySerialSession:
    """SerialSession backed by pyserial.

    Blocking pyserial calls run in worker threads. A watcher task polls the
    OS port list and notifies disconnect listeners once the device vanishes.
    """

    def __init__(self, port: str, poll_interval: float = 0.25):
        self.logger = logging.getLogger("flasher.serial")
        self.port = port
        self.poll_interval = poll_interval
        self._serial: Optional[serial.Serial] = None
        self._reader: Optional[_PySerialReader] = None
        self._writer: Optional[_PySerialWriter] = None
        self._listeners: list[DisconnectListener] = []
        self._watcher: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def baudrate(self) -> Optional[int]:
        return self._serial.baudrate if self._serial is not None else None

    async def open(self, baudrate: int) -> None:
        """Open the port at a baud rate.

        Raises:
            serial.SerialException: If the port cannot be opened
        """
        if self.is_open:
            raise serial.SerialException(f"{self.port} is already open")
        try:
            self._serial = await asyncio.to_thread(
                serial.Serial, self.port, baudrate, timeout=0.05, write_timeout=2
            )
        except serial.SerialException:
            self._notify_if_gone()
            raise
        self.logger.debug(f"Opened {self.port} at {baudrate} baud")
        if self._watcher is None or self._watcher.done():
            self._watcher = asyncio.create_task(self._watch_presence())

    async def close(self) -> None:
        self.release_locks()
        if self._serial is not None:
            port, self._serial = self._serial, None
            await asyncio.to_thread(port.close)
            self.logger.debug(f"Closed {self.port}")

    async def set_signals(
        self,
        data_terminal_ready: Optional[bool] = None,
        request_to_send: Optional[bool] = None,
    ) -> None:
        if not self.is_open:
            raise serial.SerialException(f"{self.port} is not open")
        if data_terminal_ready is not None:
            self._serial.dtr = data_terminal_ready
        if request_to_send is not None:
            self._serial.rts = request_to_send
        self.logger.debug(f"Signals: DTR={data_terminal_ready} RTS={request_to_send}")

    def get_reader(self) -> Optional[_PySerialReader]:
        if not self.is_open or self._reader is not None:
            return None
        self._reader = _PySerialReader(self)
        return self._reader

    def get_writer(self) -> Optional[_PySerialWriter]:
        if not self.is_open or self._writer is not None:
            return None
        self._writer = _PySerialWriter(self)
        return self._writer

    def release_locks(self) -> None:
        if self._reader is not None:
            self._reader.release()
        if self._writer is not None:
            self._writer.release()

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._listeners.append(listener)

    def remove_disconnect_listener(self, listener: DisconnectListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def dispose(self) -> None:
        """Close the port and stop watching for disconnects."""
        await self.close()
        if self._watcher is not None:
            self._watcher.cancel()
            try:
                await self._watcher
            except asyncio.CancelledError:
                pass
            self._watcher = None

    async def _read_chunk(self) -> bytes:
        while True:
            port = self._serial
            if port is None:
                return b""
            try:
                waiting = await asyncio.to_thread(lambda: port.in_waiting)
                data = await asyncio.to_thread(port.read, max(1, waiting))
            except serial.SerialException as e:
                self.logger.warning(f"Read from {self.port} failed: {e}")
                self._notify_if_gone()
                return b""
            if data:
                self.logger.debug(f"RX {data!r}")
                return data

    async def _write(self, data: bytes) -> None:
        if self._serial is None:
            raise serial.SerialException(f"{self.port} is not open")
        self.logger.debug(f"TX {data!r}")
        await asyncio.to_thread(self._serial.write, data)
        await asyncio.to_thread(self._serial.flush)

    def _port_present(self) -> bool:
        return any(p.device == self.port for p in serial.tools.list_ports.comports())

    def _notify_if_gone(self) -> None:
        if not self._port_present():
            self._notify_disconnect()

    def _notify_disconnect(self) -> None:
        self.logger.info(f"{self.port} disconnected")
        for listener in list(self._listeners):
            listener()

    async def _watch_presence(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            present = await asyncio.to_thread(self._port_present)
            if not present:
                if self._serial is not None:
                    port, self._serial = self._serial, None
                    self.release_locks()
                    await asyncio.to_thread(port.close)
                self._notify_disconnect()
                return
