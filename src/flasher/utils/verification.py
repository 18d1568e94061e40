"""SHA-256 verification utilities for firmware integrity checking."""

import hashlib
import logging
from typing import Optional

from flasher.models.firmware import FirmwareDigest
from flasher.models.results import ErrorKind, FirmwareSourceError


def compute_sha256(data: bytes, chunk_size: int = 64 * 1024) -> str:
    """Compute SHA-256 of a byte payload.

    Args:
        data: Firmware bytes
        chunk_size: Hash update granularity

    Returns:
        64-character lowercase hex digest
    """
    sha = hashlib.sha256()
    view = memoryview(data)
    for start in range(0, len(view), chunk_size):
        sha.update(view[start : start + chunk_size])
    return sha.hexdigest()


def verify_sha256(data: bytes, expected_hex: str) -> bool:
    """Check a payload against an expected SHA-256.

    Raises:
        ValueError: If expected_hex is not a 64-char hex string
    """
    logger = logging.getLogger("flasher.verification")

    if not isinstance(expected_hex, str) or len(expected_hex) != 64:
        raise ValueError(f"Invalid SHA-256 format: {expected_hex} (must be 64-char hex)")

    actual = compute_sha256(data)
    match = actual == expected_hex.lower()
    if match:
        logger.info(f"SHA-256 verification passed: {actual}")
    else:
        logger.error(f"SHA-256 mismatch: expected {expected_hex.lower()}, got {actual}")
    return match


def verify_digest_or_raise(data: bytes, digest: Optional[FirmwareDigest]) -> None:
    """Verify a payload against an optional digest.

    A missing digest is logged and accepted; a mismatch is always fatal.

    Raises:
        FirmwareSourceError: DIGEST_MISMATCH if the digest does not match
    """
    logger = logging.getLogger("flasher.verification")
    if digest is None:
        logger.warning("No checksum available for verification, proceeding without it")
        return

    if not verify_sha256(data, digest.expected_hex):
        actual = compute_sha256(data)
        raise FirmwareSourceError(
            ErrorKind.DIGEST_MISMATCH,
            f"Checksum verification failed. Expected: {digest.expected_hex}, Got: {actual}",
        )
