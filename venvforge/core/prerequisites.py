"""Declarative prerequisite checks, run once before provisioning.

Runtime prerequisite: the runtime must be locatable and, when a minimum
version is declared, report at least that version.

Service prerequisite: the service's probe executable must be present on
PATH. venvforge only checks presence; it never starts or manages services.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

from packaging.version import InvalidVersion, Version

from venvforge.core.errors import PrerequisiteError
from venvforge.models.manifest import RuntimePrerequisite, ServicePrerequisite

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


def locate_executable(reference: str) -> Path | None:
    """Resolve an executable reference: an existing path or a name on PATH."""
    candidate = Path(reference)
    if candidate.is_absolute() or candidate.parent != Path("."):
        return candidate if candidate.is_file() else None
    found = shutil.which(reference)
    return Path(found) if found else None


def probe_version(executable: Path, *, timeout_seconds: float = 10.0) -> Version | None:
    """Run ``<executable> --version`` and parse the first version number."""
    try:
        proc = subprocess.run(
            [str(executable), "--version"],
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except (subprocess.SubprocessError, OSError) as exc:
        logger.warning("Could not query version of %s: %s", executable, exc)
        return None
    match = _VERSION_RE.search(proc.stdout + proc.stderr)
    if not match:
        return None
    try:
        return Version(match.group(1))
    except InvalidVersion:
        return None


class PrerequisiteChecker:
    """Evaluates runtime and service prerequisites and reports all failures at once."""

    def __init__(self, *, timeout_seconds: float = 10.0) -> None:
        self._timeout = timeout_seconds

    def check(
        self,
        runtime: RuntimePrerequisite,
        services: list[ServicePrerequisite] | None = None,
        *,
        package: str = "",
    ) -> Path:
        """Check every prerequisite; return the located runtime executable.

        Raises ``PrerequisiteError`` listing every unmet prerequisite.
        """
        problems: list[str] = []
        runtime_path = locate_executable(runtime.name)

        if runtime_path is None:
            problems.append(f"runtime {runtime.name!r} not found")
        elif runtime.minimum_version:
            found = probe_version(runtime_path, timeout_seconds=self._timeout)
            required = Version(runtime.minimum_version)
            if found is None:
                problems.append(
                    f"runtime {runtime.name!r} did not report a version "
                    f"(need >= {required})"
                )
            elif found < required:
                problems.append(
                    f"runtime {runtime.name!r} is {found}, need >= {required}"
                )

        for service in services or []:
            if locate_executable(service.probe_command) is None:
                message = f"service {service.name!r} not found (probe {service.probe_command!r})"
                if service.hint:
                    message += f": {service.hint}"
                problems.append(message)

        if problems or runtime_path is None:
            raise PrerequisiteError(
                "Unmet prerequisites: " + "; ".join(problems),
                package=package,
                stage="prerequisites",
                details={"problems": problems},
            )

        logger.info("Prerequisites satisfied; runtime %s", runtime_path)
        return runtime_path
