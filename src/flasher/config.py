"""Engine configuration."""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Timeouts, endpoints and conventions used by the engine.

    All durations are in seconds.
    """

    # Serial link
    port: str = Field(default="/dev/ttyUSB0", description="Serial device path")
    baudrate: int = Field(default=115200, gt=0)
    bridge_baudrate: int = Field(default=115200, gt=0)
    poll_interval: float = Field(default=0.25, gt=0)

    # Bridge command menu
    magic_baudrates: list[int] = Field(default=[150, 300, 600], min_length=1)
    magic_baudrate_delay: float = Field(default=0.1, ge=0)
    menu_prompt: str = Field(default="cmd>")
    menu_timeout: float = Field(default=2.0, gt=0)
    firmware_info_timeout: float = Field(default=1.0, gt=0)
    bridge_disconnect_timeout: float = Field(default=5.0, gt=0)

    # Controller bootloader entry
    reset_settle_delay: float = Field(default=0.1, ge=0)
    reset_hold_delay: float = Field(default=0.5, ge=0)
    reset_release_delay: float = Field(default=0.5, ge=0)
    post_reset_delay: float = Field(default=0.5, ge=0)
    driver_start_timeout: float = Field(default=30.0, gt=0)

    # NVM erase
    erase_confirmation_timeout: float = Field(default=1.0, gt=0)
    erase_completion_timeout: float = Field(default=1.0, gt=0)

    # Bridge flashing
    bridge_port_timeout: float = Field(
        default=10.0, gt=0, description="Wait for the ROM bootloader port to enumerate"
    )
    power_cycle_timeout: float = Field(default=120.0, gt=0)

    # Firmware source
    controller_release_url: str = Field(
        default="https://api.github.com/repos/NabuCasa/zwave-firmware/releases/latest"
    )
    bridge_release_url: str = Field(
        default="https://api.github.com/repos/NabuCasa/zwave-esp-bridge/releases/latest"
    )
    controller_asset_suffix: str = Field(default=".gbl")
    bridge_asset_prefix: str = Field(default="zwa2")
    bridge_asset_suffix: str = Field(default=".factory.bin")
    manifest_url: Optional[str] = Field(default=None)
    chip_family: str = Field(default="ESP32-S3")
    download_proxy: Optional[str] = Field(
        default="https://corsproxy.io/?{url}",
        description="Proxy template with an {url} placeholder; None downloads directly",
    )
    http_timeout: float = Field(default=30.0, gt=0)

    # Ambient
    log_file: str = Field(default="./logs/flasher.log")
    log_level: str = Field(default="INFO")
    report_url: Optional[str] = Field(default=None)
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=12316, gt=0)
    driver_factory: Optional[str] = Field(
        default=None,
        description="Import string 'module:attribute' of the controller driver factory",
    )


def load_config(path: Union[str, Path, None] = None) -> EngineConfig:
    """Load configuration from a JSON file.

    Args:
        path: Path to a JSON file; defaults are used if None or missing

    Returns:
        Validated EngineConfig

    Raises:
        pydantic.ValidationError: If the file content is invalid
    """
    logger = logging.getLogger("flasher.config")
    if path is None or not Path(path).exists():
        logger.debug(f"No config file at {path}, using defaults")
        return EngineConfig()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    config = EngineConfig(**data)
    logger.info(f"Loaded config from {path}")
    return config
