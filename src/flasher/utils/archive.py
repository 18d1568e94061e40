"""Firmware container handling: ZIP unpacking and format detection."""

import io
import logging
import zipfile
from pathlib import PurePosixPath
from typing import Optional

from flasher.models.firmware import FirmwareFormat, FirmwareImage
from flasher.models.results import ErrorKind, FirmwareSourceError

# Gecko bootloader file header tag 0x03A617EB, little-endian
GBL_MAGIC = b"\xeb\x17\xa6\x03"
# First byte of an ESP application / factory image
ESP_IMAGE_MAGIC = 0xE9

_EXTENSION_FORMATS = {
    ".gbl": FirmwareFormat.PACKAGED_UPDATE_FILE,
    ".bin": FirmwareFormat.RAW_APPLICATION_IMAGE,
}


def guess_firmware_format(file_name: str, data: bytes) -> Optional[FirmwareFormat]:
    """Guess the format from the file extension, then from content magic."""
    suffix = PurePosixPath(file_name.lower()).suffix
    if suffix in _EXTENSION_FORMATS:
        return _EXTENSION_FORMATS[suffix]
    if data[:4] == GBL_MAGIC:
        return FirmwareFormat.PACKAGED_UPDATE_FILE
    if data[:1] and data[0] == ESP_IMAGE_MAGIC:
        return FirmwareFormat.RAW_APPLICATION_IMAGE
    return None


def try_unzip_firmware(data: bytes) -> Optional[tuple[str, bytes]]:
    """Extract the first firmware member of a ZIP archive.

    Returns:
        (member file name, member bytes), or None if the archive holds no
        recognizable firmware
    """
    logger = logging.getLogger("flasher.archive")
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                name = PurePosixPath(info.filename).name
                member = zf.read(info)
                if guess_firmware_format(name, member) is not None:
                    logger.info(f"Found firmware {name} in archive ({len(member)} bytes)")
                    return name, member
    except zipfile.BadZipFile as e:
        logger.error(f"Invalid ZIP archive: {e}")
        return None

    logger.warning("Archive contains no firmware file")
    return None


def prepare_firmware_image(
    file_name: str,
    data: bytes,
    load_offset: int = 0,
) -> FirmwareImage:
    """Turn downloaded or user-supplied bytes into a FirmwareImage.

    Archives are unpacked to the real image first.

    Raises:
        FirmwareSourceError: UNSUPPORTED_ARCHIVE_CONTENTS or
            UNSUPPORTED_FIRMWARE_FORMAT
    """
    if file_name.lower().endswith(".zip"):
        extracted = try_unzip_firmware(data)
        if extracted is None:
            raise FirmwareSourceError(
                ErrorKind.UNSUPPORTED_ARCHIVE_CONTENTS,
                "Could not extract a valid firmware file from the ZIP archive.",
            )
        file_name, data = extracted

    firmware_format = guess_firmware_format(file_name, data)
    if firmware_format is None:
        raise FirmwareSourceError(
            ErrorKind.UNSUPPORTED_FIRMWARE_FORMAT,
            f"Unsupported firmware format: {file_name}",
        )

    return FirmwareImage(
        file_name=file_name,
        data=data,
        format=firmware_format,
        load_offset=load_offset,
    )
