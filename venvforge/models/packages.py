"""Package, staged artifact, and install plan models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class Package(BaseModel):
    """A concrete package: immutable once created from the manifest.

    ``name`` is the canonicalized (PEP 503) name; ``content_hash`` is the
    bare SHA-256 hex digest of the source archive.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: str
    content_hash: str
    depends_on: tuple[str, ...] = ()
    declaration_index: int = 0  # position in the manifest, used as tie-break
    is_root: bool = False

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class StagedArtifact(BaseModel):
    """A fetched, hash-verified, extracted archive ready for installation."""

    model_config = ConfigDict(frozen=True)

    package: Package
    archive_path: Path  # write-once entry in the content-addressed cache
    staging_path: Path  # per-hash staging directory
    install_target: Path  # what the install step consumes (wheel or source tree)
    from_cache: bool = False  # True when no download was needed


class InstallPlan(BaseModel):
    """A validated, topologically ordered set of packages for one root."""

    model_config = ConfigDict(frozen=True)

    root: str
    order: tuple[Package, ...]
    edges: tuple[tuple[str, str], ...] = ()  # (dependent, dependency)

    def dependencies_of(self, name: str) -> list[str]:
        """Return the direct dependency names of a package."""
        return [dep for dependent, dep in self.edges if dependent == name]
