"""Unit tests for verification utilities."""

import hashlib

import pytest

from flasher.models.firmware import FirmwareDigest
from flasher.models.results import ErrorKind, FirmwareSourceError
from flasher.utils.verification import (
    compute_sha256,
    verify_digest_or_raise,
    verify_sha256,
)


@pytest.mark.unit
class TestVerification:
    """Test verification utilities in isolation."""

    def calculate_sha256(self, content: bytes) -> str:
        """Helper to calculate SHA-256 hash."""
        return hashlib.sha256(content).hexdigest()

    def test_compute_sha256(self):
        """Test SHA-256 computation."""
        content = b"test firmware content for SHA-256 verification"

        result = compute_sha256(content)

        assert result == self.calculate_sha256(content)
        assert len(result) == 64
        assert result.islower()

    def test_compute_sha256_chunked(self):
        """Test chunk boundaries do not change the digest."""
        content = bytes(range(256)) * 1000

        assert compute_sha256(content, chunk_size=1000) == self.calculate_sha256(content)

    def test_compute_sha256_empty(self):
        assert compute_sha256(b"") == self.calculate_sha256(b"")

    def test_verify_sha256_case_insensitive(self):
        content = b"firmware"

        assert verify_sha256(content, self.calculate_sha256(content).upper())

    def test_verify_sha256_single_byte_mutation(self):
        """Test flipping one byte is detected."""
        content = bytearray(b"\xeb\x17\xa6\x03" + b"\x00" * 1024)
        expected = self.calculate_sha256(bytes(content))
        content[512] ^= 0x01

        assert not verify_sha256(bytes(content), expected)

    @pytest.mark.parametrize("bad", ["a" * 63, "a" * 65, None])
    def test_verify_sha256_invalid_format(self, bad):
        with pytest.raises(ValueError, match="Invalid SHA-256 format"):
            verify_sha256(b"data", bad)

    def test_verify_digest_or_raise_success(self):
        content = b"firmware"
        digest = FirmwareDigest(expected_hex=self.calculate_sha256(content))

        verify_digest_or_raise(content, digest)

    def test_verify_digest_or_raise_without_digest(self):
        """Test a missing digest is accepted."""
        verify_digest_or_raise(b"firmware", None)

    def test_verify_digest_or_raise_mismatch(self):
        digest = FirmwareDigest(expected_hex="b" * 64)

        with pytest.raises(FirmwareSourceError) as exc_info:
            verify_digest_or_raise(b"firmware", digest)

        assert exc_info.value.kind == ErrorKind.DIGEST_MISMATCH
        assert "b" * 64 in exc_info.value.message
        assert self.calculate_sha256(b"firmware") in exc_info.value.message


@pytest.mark.unit
class TestFirmwareDigest:
    """Test digest string parsing."""

    def test_parse_sha256(self):
        hex_digest = "A" * 64

        digest = FirmwareDigest.parse(f"sha256:{hex_digest}")

        assert digest.expected_hex == "a" * 64

    @pytest.mark.parametrize(
        "value", [None, "", "md5:" + "a" * 32, "sha256:xyz", "a" * 64]
    )
    def test_parse_rejects(self, value):
        assert FirmwareDigest.parse(value) is None
