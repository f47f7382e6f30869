"""InstallRecord models — what has been installed into an environment.

The record is keyed by package name, so an environment can never hold two
versions of the same package. It makes re-installation idempotent (a
``(name, hash)`` already present is skipped) and supports rollback.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class InstalledPackage(BaseModel):
    """One package installed into an environment."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    content_hash: str  # the hash actually fetched and installed
    installed_path: Path
    installed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class LinkRecord(BaseModel):
    """One entry point exposed in the shared link directory."""

    model_config = ConfigDict(frozen=True)

    name: str
    link_path: Path
    target: Path
    verified: bool = False
    created: bool = False  # False when an existing identical link was kept


class InstallRecord(BaseModel):
    """Snapshot of an environment's install record."""

    model_config = ConfigDict(frozen=True)

    environment_root: Path
    packages: dict[str, InstalledPackage] = {}
    links: dict[str, LinkRecord] = {}

    def is_satisfied(self, name: str, content_hash: str) -> bool:
        """True when exactly this (name, hash) pair is already installed."""
        installed = self.packages.get(name)
        return installed is not None and installed.content_hash == content_hash

    @property
    def all_links_verified(self) -> bool:
        return bool(self.links) and all(link.verified for link in self.links.values())
