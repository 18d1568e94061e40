"""Unit tests for the pyserial-backed session."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import serial

from flasher.transport.session import DisconnectSignal, PySerialSession

PORT = "/dev/ttyFAKE"


def make_port(chunks=()):
    """MagicMock standing in for serial.Serial."""
    port = MagicMock()
    port.is_open = True
    port.baudrate = 115200
    port.in_waiting = 0
    pending = list(chunks)
    port.read.side_effect = lambda size: pending.pop(0) if pending else b""
    return port


@pytest.fixture
def present():
    """Report PORT in the OS port list."""
    with patch(
        "flasher.transport.session.serial.tools.list_ports.comports",
        return_value=[SimpleNamespace(device=PORT)],
    ) as comports:
        yield comports


@pytest.mark.unit
class TestDisconnectSignal:
    @pytest.mark.asyncio
    async def test_fired(self):
        signal = DisconnectSignal()
        signal.fire()
        signal.fire()

        assert signal.fired
        assert await signal.wait(0.1) is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        assert await DisconnectSignal().wait(0.01) is False


@pytest.mark.unit
class TestPySerialSession:
    @pytest.mark.asyncio
    async def test_open_and_close(self, present):
        port = make_port()
        session = PySerialSession(PORT, poll_interval=10)

        with patch("flasher.transport.session.serial.Serial", return_value=port) as ctor:
            await session.open(115200)

            ctor.assert_called_once_with(PORT, 115200, timeout=0.05, write_timeout=2)
            assert session.is_open
            assert session.baudrate == 115200

            with pytest.raises(serial.SerialException, match="already open"):
                await session.open(9600)

        await session.dispose()

        port.close.assert_called_once()
        assert not session.is_open
        assert session.baudrate is None

    @pytest.mark.asyncio
    async def test_open_failure_on_missing_port_notifies(self):
        session = PySerialSession(PORT, poll_interval=10)
        signal = DisconnectSignal()
        session.add_disconnect_listener(signal.fire)

        with patch(
            "flasher.transport.session.serial.Serial",
            side_effect=serial.SerialException("could not open port"),
        ), patch("flasher.transport.session.serial.tools.list_ports.comports", return_value=[]):
            with pytest.raises(serial.SerialException):
                await session.open(115200)

        assert signal.fired

    @pytest.mark.asyncio
    async def test_reader_and_writer_are_exclusive(self, present):
        session = PySerialSession(PORT, poll_interval=10)
        assert session.get_reader() is None

        with patch("flasher.transport.session.serial.Serial", return_value=make_port()):
            await session.open(115200)

        reader = session.get_reader()
        writer = session.get_writer()
        assert reader is not None and writer is not None
        assert session.get_reader() is None
        assert session.get_writer() is None

        session.release_locks()

        assert session.get_reader() is not None
        assert session.get_writer() is not None
        await session.dispose()

    @pytest.mark.asyncio
    async def test_read_and_write(self, present):
        port = make_port([b"Gecko Bootloader"])
        port.in_waiting = 16
        session = PySerialSession(PORT, poll_interval=10)

        with patch("flasher.transport.session.serial.Serial", return_value=port):
            await session.open(115200)

        reader = session.get_reader()
        writer = session.get_writer()
        await writer.write(b"3")

        assert await reader.read(1) == b"Gecko Bootloader"
        port.write.assert_called_once_with(b"3")
        port.flush.assert_called_once()

        port.in_waiting = 0
        assert await reader.read(0.05) is None

        writer.release()
        with pytest.raises(RuntimeError, match="released"):
            await writer.write(b"2")
        await session.dispose()

    @pytest.mark.asyncio
    async def test_set_signals(self, present):
        port = make_port()
        session = PySerialSession(PORT, poll_interval=10)

        with pytest.raises(serial.SerialException, match="not open"):
            await session.set_signals(data_terminal_ready=False)

        with patch("flasher.transport.session.serial.Serial", return_value=port):
            await session.open(115200)
        await session.set_signals(data_terminal_ready=False, request_to_send=True)

        assert port.dtr is False
        assert port.rts is True
        await session.dispose()

    @pytest.mark.asyncio
    async def test_watcher_reports_unplug(self, present):
        port = make_port()
        session = PySerialSession(PORT, poll_interval=0.01)
        signal = DisconnectSignal()
        session.add_disconnect_listener(signal.fire)

        with patch("flasher.transport.session.serial.Serial", return_value=port):
            await session.open(115200)
        reader = session.get_reader()
        present.return_value = []

        assert await signal.wait(1) is True
        assert not session.is_open
        port.close.assert_called_once()
        assert await reader.read(0.05) is None
        await session.dispose()

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, present):
        session = PySerialSession(PORT, poll_interval=0.01)
        listener = MagicMock()
        session.add_disconnect_listener(listener)
        session.remove_disconnect_listener(listener)
        session.remove_disconnect_listener(listener)

        with patch("flasher.transport.session.serial.Serial", return_value=make_port()):
            await session.open(115200)
        present.return_value = []
        await asyncio.sleep(0.1)

        listener.assert_not_called()
        await session.dispose()
