"""Release index and firmware manifest models."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ReleaseAsset(BaseModel):
    """Downloadable file attached to a release."""

    name: str = Field(..., description="Asset file name")
    browser_download_url: str = Field(..., pattern=r"^https?://.+")
    digest: Optional[str] = Field(
        None, description="Content digest in 'sha256:<hex>' form, if published"
    )
    size: Optional[int] = Field(None, ge=0)


class Release(BaseModel):
    """Entry of a release index (GitHub releases API shape)."""

    tag_name: str
    name: Optional[str] = None
    body: Optional[str] = Field(None, description="Release notes")
    published_at: Optional[str] = None
    assets: list[ReleaseAsset] = Field(default_factory=list)


class ManifestPart(BaseModel):
    """One image of a build and where it is loaded."""

    path: str = Field(..., description="Image path relative to the manifest URL")
    offset: int = Field(default=0, ge=0, le=0xFFFFFFFF)
    sha256: Optional[str] = Field(None, pattern=r"^[a-fA-F0-9]{64}$")

    @field_validator("path")
    @classmethod
    def no_directory_traversal(cls, v: str) -> str:
        """Prevent escaping the manifest location."""
        if ".." in v:
            raise ValueError("Part path must not contain '..'")
        return v


class ManifestBuild(BaseModel):
    """Build of the firmware for one chip family."""

    chip_family: str = Field(..., alias="chipFamily")
    parts: list[ManifestPart] = Field(..., min_length=1)

    model_config = {"populate_by_name": True}


class FirmwareManifest(BaseModel):
    """Root manifest JSON describing available builds per chip family."""

    name: str
    version: str
    changelog_url: Optional[str] = Field(None, alias="changelogUrl")
    builds: list[ManifestBuild] = Field(..., min_length=1)

    model_config = {"populate_by_name": True}

    def build_for(self, chip_family: str) -> Optional[ManifestBuild]:
        """Return the build for a chip family (case-insensitive)."""
        for build in self.builds:
            if build.chip_family.lower() == chip_family.lower():
                return build
        return None
