"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path

import pytest

# Add src and the test helpers to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeBridgeFlasher, FakeDevice, FakeDriver, FakeSession  # noqa: E402

from flasher.config import EngineConfig  # noqa: E402
from flasher.drivers.controller import ControllerBinding  # noqa: E402
from flasher.models.mode import DeviceMode  # noqa: E402
from flasher.services.state_manager import StateManager  # noqa: E402

# Gecko bootloader file tag followed by filler
GBL_BYTES = b"\xeb\x17\xa6\x03" + b"\x00" * 60
# ESP image magic followed by filler
ESP_BYTES = b"\xe9\x03\x02\x20" + b"\xff" * 60


@pytest.fixture
def fast_config():
    """EngineConfig with every delay shrunk so protocol tests run quickly."""
    return EngineConfig(
        port="/dev/ttyFAKE",
        magic_baudrate_delay=0,
        menu_timeout=0.2,
        firmware_info_timeout=0.2,
        bridge_disconnect_timeout=0.2,
        reset_settle_delay=0,
        reset_hold_delay=0,
        reset_release_delay=0,
        post_reset_delay=0,
        driver_start_timeout=1,
        erase_confirmation_timeout=0.1,
        erase_completion_timeout=0.1,
        bridge_port_timeout=0.2,
        power_cycle_timeout=0.2,
        download_proxy=None,
    )


@pytest.fixture
def device():
    """Adapter running the controller application."""
    return FakeDevice(DeviceMode.APPLICATION_PROTOCOL)


@pytest.fixture
def session(device):
    return FakeSession(device)


@pytest.fixture
def binding(session, device, fast_config):
    """ControllerBinding whose driver factory builds FakeDrivers."""
    return ControllerBinding(session, lambda s: FakeDriver(device), fast_config)


@pytest.fixture
def bridge_flasher():
    return FakeBridgeFlasher()


@pytest.fixture
def gbl_bytes():
    return GBL_BYTES


@pytest.fixture
def esp_bytes():
    return ESP_BYTES


@pytest.fixture(autouse=True)
def reset_state_manager():
    """Each test starts with a fresh StateManager singleton."""
    StateManager._instance = None
    yield
    StateManager._instance = None
