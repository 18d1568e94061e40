"""Firmware source: release index and manifest lookups, downloads, verification."""

import logging
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import quote, urljoin

import aiofiles
import httpx
from pydantic import ValidationError

from flasher.config import EngineConfig
from flasher.models.firmware import FirmwareDigest, FirmwareImage
from flasher.models.manifest import FirmwareManifest, Release, ReleaseAsset
from flasher.models.results import ErrorKind, FirmwareSourceError
from flasher.utils.archive import prepare_firmware_image
from flasher.utils.verification import verify_digest_or_raise

DownloadProgress = Callable[[int], None]
AssetPredicate = Callable[[ReleaseAsset], bool]


class FirmwareSource:
    """Resolves a firmware selection to validated bytes."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.logger = logging.getLogger("flasher.download")
        self.config = config or EngineConfig()
        self.chunk_size = 64 * 1024  # 64KB chunks for progress granularity

    async def download_latest_controller_firmware(
        self, on_progress: Optional[DownloadProgress] = None
    ) -> FirmwareImage:
        """Download the newest controller-chip release image.

        Raises:
            FirmwareSourceError: DOWNLOAD_FAILED, ASSET_NOT_FOUND,
                DIGEST_MISMATCH or an archive/format error
        """
        suffix = self.config.controller_asset_suffix.lower()
        return await self.download_latest_release_asset(
            self.config.controller_release_url,
            lambda asset: asset.name.lower().endswith(suffix),
            on_progress=on_progress,
        )

    async def download_latest_bridge_firmware(
        self, on_progress: Optional[DownloadProgress] = None
    ) -> FirmwareImage:
        """Download the newest bridge-chip factory image (loaded at offset 0)."""
        prefix = self.config.bridge_asset_prefix.lower()
        suffix = self.config.bridge_asset_suffix.lower()
        return await self.download_latest_release_asset(
            self.config.bridge_release_url,
            lambda asset: asset.name.lower().startswith(prefix)
            and asset.name.lower().endswith(suffix),
            on_progress=on_progress,
        )

    async def download_latest_release_asset(
        self,
        release_url: str,
        predicate: AssetPredicate,
        on_progress: Optional[DownloadProgress] = None,
    ) -> FirmwareImage:
        """Select, download, verify and unpack an asset of the newest release."""
        release = await self.fetch_latest_release(release_url)
        asset = self.select_asset(release, predicate)
        digest = FirmwareDigest.parse(asset.digest)

        self.logger.info(
            f"Downloading {asset.name} from release {release.tag_name} "
            f"(digest={'yes' if digest else 'no'})"
        )
        data = await self.download(
            self.proxied(asset.browser_download_url), on_progress=on_progress
        )
        verify_digest_or_raise(data, digest)
        return prepare_firmware_image(asset.name, data)

    async def fetch_latest_release(self, release_url: str) -> Release:
        """Query a release index for its newest release."""
        payload = await self._get_json(release_url, "release information")
        try:
            if isinstance(payload, list):
                if not payload:
                    raise FirmwareSourceError(
                        ErrorKind.ASSET_NOT_FOUND, "Release index contains no releases"
                    )
                releases = [Release(**item) for item in payload]
                return max(releases, key=lambda r: r.published_at or "")
            return Release(**payload)
        except ValidationError as e:
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Invalid release information: {e}"
            ) from e

    def select_asset(self, release: Release, predicate: AssetPredicate) -> ReleaseAsset:
        """Pick the first matching asset.

        Raises:
            FirmwareSourceError: ASSET_NOT_FOUND if nothing matches
        """
        for asset in release.assets:
            if predicate(asset):
                return asset
        raise FirmwareSourceError(
            ErrorKind.ASSET_NOT_FOUND,
            f"No matching firmware file found in release {release.tag_name}",
        )

    def proxied(self, url: str) -> str:
        """Route a download URL through the configured proxy."""
        if not self.config.download_proxy:
            return url
        return self.config.download_proxy.format(url=quote(url, safe=""))

    async def fetch_manifest(self, manifest_url: Optional[str] = None) -> FirmwareManifest:
        """Fetch and validate a firmware manifest."""
        manifest_url = manifest_url or self.config.manifest_url
        if not manifest_url:
            raise FirmwareSourceError(ErrorKind.DOWNLOAD_FAILED, "No manifest URL configured")

        payload = await self._get_json(manifest_url, "firmware manifest")
        try:
            return FirmwareManifest(**payload)
        except (ValidationError, TypeError) as e:
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Invalid firmware manifest: {e}"
            ) from e

    async def download_from_manifest(
        self,
        manifest_url: Optional[str] = None,
        chip_family: Optional[str] = None,
        on_progress: Optional[DownloadProgress] = None,
    ) -> FirmwareImage:
        """Download the image of the build matching a chip family.

        Raises:
            FirmwareSourceError: CHIP_FAMILY_NOT_FOUND if the manifest has no
                build for the chip family
        """
        manifest_url = manifest_url or self.config.manifest_url
        chip_family = chip_family or self.config.chip_family
        manifest = await self.fetch_manifest(manifest_url)

        build = manifest.build_for(chip_family)
        if build is None:
            raise FirmwareSourceError(
                ErrorKind.CHIP_FAMILY_NOT_FOUND,
                f"Manifest {manifest.name} {manifest.version} has no build for {chip_family}",
            )
        if len(build.parts) > 1:
            self.logger.warning(
                f"Build for {chip_family} has {len(build.parts)} parts, using the first"
            )
        part = build.parts[0]

        image_url = urljoin(manifest_url, part.path)
        digest = FirmwareDigest(expected_hex=part.sha256) if part.sha256 else None
        self.logger.info(
            f"Downloading {manifest.name} {manifest.version} for {chip_family}: "
            f"{image_url} @ 0x{part.offset:x}"
        )
        data = await self.download(image_url, on_progress=on_progress)
        verify_digest_or_raise(data, digest)
        return prepare_firmware_image(Path(part.path).name, data, load_offset=part.offset)

    async def fetch_changelog(self, url: str) -> str:
        """Fetch a plain-text changelog."""
        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            self.logger.error(f"Failed to fetch changelog from {url}: {e}")
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Failed to fetch changelog: {e}"
            ) from e

    async def fetch_release_notes(self, repo_api_url: str, tag: str) -> Optional[str]:
        """Fetch the notes of a tagged release from the issue tracker API.

        Args:
            repo_api_url: Repository API base, e.g.
                https://api.github.com/repos/<owner>/<repo>
            tag: Release tag name
        """
        url = f"{repo_api_url.rstrip('/')}/releases/tags/{quote(tag, safe='')}"
        payload = await self._get_json(url, "release notes")
        try:
            return Release(**payload).body
        except (ValidationError, TypeError) as e:
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Invalid release information: {e}"
            ) from e

    async def open_firmware_file(
        self, path: Union[str, Path], load_offset: int = 0
    ) -> FirmwareImage:
        """Read a user-supplied firmware file.

        Raises:
            FirmwareSourceError: If the file cannot be read or its format is
                not supported
        """
        path = Path(path)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except OSError as e:
            self.logger.error(f"Failed to read firmware file {path}: {e}")
            raise FirmwareSourceError(
                ErrorKind.UNSUPPORTED_FIRMWARE_FORMAT, f"Cannot read firmware file {path}: {e}"
            ) from e

        self.logger.info(f"Opened firmware file {path.name} ({len(data)} bytes)")
        return prepare_firmware_image(path.name, data, load_offset=load_offset)

    async def download(
        self, url: str, on_progress: Optional[DownloadProgress] = None
    ) -> bytes:
        """Download a file into memory, reporting progress every 5%.

        Raises:
            FirmwareSourceError: DOWNLOAD_FAILED on any HTTP error
        """
        buffer = bytearray()
        try:
            async with httpx.AsyncClient(
                timeout=self.config.http_timeout, follow_redirects=True
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    total = int(response.headers.get("Content-Length") or 0)
                    last_progress = -5
                    async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                        buffer.extend(chunk)
                        if total and on_progress is not None:
                            current = min(100, int(len(buffer) * 100 / total))
                            if current >= last_progress + 5:
                                last_progress = current
                                on_progress(current)
        except httpx.HTTPError as e:
            self.logger.error(f"Download failed: {e}", exc_info=True)
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Failed to download firmware: {e}"
            ) from e

        if on_progress is not None:
            on_progress(100)
        self.logger.info(f"Downloaded {len(buffer)} bytes")
        return bytes(buffer)

    async def _get_json(self, url: str, what: str):
        try:
            async with httpx.AsyncClient(
                timeout=self.config.http_timeout, follow_redirects=True
            ) as client:
                response = await client.get(url, headers={"Accept": "application/json"})
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            self.logger.error(f"Failed to fetch {what} from {url}: {e}")
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Failed to fetch {what}: {e}"
            ) from e
        except ValueError as e:
            raise FirmwareSourceError(
                ErrorKind.DOWNLOAD_FAILED, f"Invalid {what}: {e}"
            ) from e
