"""Manifest models — the external description of a package and its dependencies.

The manifest is produced by an external collaborator (a formula, a lock
file exporter, a release pipeline). venvforge only validates and consumes
it; it never authors one.
"""

from __future__ import annotations

import re
from pathlib import Path

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.utils import canonicalize_name
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


def _normalize_sha256(value: str) -> str:
    digest = value.strip().lower().removeprefix("sha256:")
    if not _SHA256_RE.match(digest):
        raise ValueError(f"not a SHA-256 hex digest: {value!r}")
    return digest


class RuntimePrerequisite(BaseModel):
    """The language runtime the environment is built from."""

    model_config = ConfigDict(frozen=True)

    name: str = "python3"  # executable name on PATH, or an absolute path
    minimum_version: str | None = None


class ServicePrerequisite(BaseModel):
    """An external service that must be present but is never managed.

    Presence is checked by locating ``probe`` (defaults to ``name``) on PATH.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    probe: str | None = None
    hint: str = ""  # shown to the user when the service is missing

    @property
    def probe_command(self) -> str:
        return self.probe or self.name


class DependencySpec(BaseModel):
    """A declared dependency: a concrete package plus the constraint it must meet."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    version_constraint: str = ""  # PEP 440 specifier; empty means any
    source: str
    sha256: str
    depends_on: list[str] = []  # names of other packages in the manifest

    @field_validator("sha256")
    @classmethod
    def _check_sha256(cls, value: str) -> str:
        return _normalize_sha256(value)

    @field_validator("version_constraint")
    @classmethod
    def _check_constraint(cls, value: str) -> str:
        try:
            SpecifierSet(value)
        except InvalidSpecifier as exc:
            raise ValueError(f"invalid version constraint {value!r}: {exc}") from exc
        return value


class PackageManifest(BaseModel):
    """Top-level manifest for one installable package."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: str
    sha256: str
    dependencies: list[DependencySpec] = []
    runtime: RuntimePrerequisite = RuntimePrerequisite()
    services: list[ServicePrerequisite] = []
    entry_points: list[str] = Field(default_factory=list)

    # Descriptive metadata, displayed but never interpreted
    description: str = ""
    homepage: str = ""
    license: str = ""

    @field_validator("sha256")
    @classmethod
    def _check_sha256(cls, value: str) -> str:
        return _normalize_sha256(value)

    @model_validator(mode="after")
    def _default_entry_points(self) -> PackageManifest:
        if not self.entry_points:
            object.__setattr__(self, "entry_points", [f"bin/{self.name}"])
        for entry in self.entry_points:
            if Path(entry).is_absolute() or ".." in Path(entry).parts:
                raise ValueError(
                    f"entry point must be relative to the environment: {entry!r}"
                )
        return self

    @property
    def canonical_name(self) -> str:
        return canonicalize_name(self.name)

    @classmethod
    def from_file(cls, path: Path) -> PackageManifest:
        """Load and validate a JSON manifest file."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
