"""Environment model: one isolated virtual environment per installation."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

METADATA_DIRNAME = ".venvforge"
MARKER_FILENAME = "environment.json"
RECORD_FILENAME = "record.db"


class EnvironmentMarker(BaseModel):
    """Written into ``<root>/.venvforge/environment.json`` at provisioning.

    The marker is how the provisioner recognizes a prior installation as
    its own instead of a foreign, non-empty directory.
    """

    model_config = ConfigDict(frozen=True)

    package: str
    interpreter: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class Environment(BaseModel):
    """An isolated runtime directory owned by exactly one top-level package."""

    model_config = ConfigDict(frozen=True)

    root: Path
    package: str
    interpreter: str

    @property
    def bin_dir(self) -> Path:
        return self.root / ("Scripts" if sys.platform == "win32" else "bin")

    @property
    def lib_dir(self) -> Path:
        return self.root / ("Lib" if sys.platform == "win32" else "lib")

    @property
    def python(self) -> Path:
        exe = "python.exe" if sys.platform == "win32" else "python"
        return self.bin_dir / exe

    @property
    def metadata_dir(self) -> Path:
        return self.root / METADATA_DIRNAME

    @property
    def marker_path(self) -> Path:
        return self.metadata_dir / MARKER_FILENAME

    @property
    def record_path(self) -> Path:
        return self.metadata_dir / RECORD_FILENAME

    def env_vars(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Process environment with this environment's search path first."""
        env = dict(os.environ if base is None else base)
        env["VIRTUAL_ENV"] = str(self.root)
        env["PATH"] = os.pathsep.join(
            p for p in (str(self.bin_dir), env.get("PATH", "")) if p
        )
        env.pop("PYTHONHOME", None)
        return env
