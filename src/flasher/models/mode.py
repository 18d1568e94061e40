"""Device mode of the attached adapter."""

from enum import Enum


class DeviceMode(str, Enum):
    """Mode the controller chip is currently running in.

    Re-derived from the physical device after every mode-changing
    operation. Never cached across reconnects.
    """

    UNKNOWN = "unknown"
    BOOTLOADER = "bootloader"
    COMMAND_LINE_MENU = "cli"
    APPLICATION_PROTOCOL = "serialApi"
