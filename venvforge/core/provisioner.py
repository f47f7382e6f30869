"""Environment Provisioner — creates isolated virtual environments.

One environment per top-level package. Provisioning is idempotent: a root
that already carries this package's marker is reused as-is, while a
non-empty root without one (or with another package's) is refused.
Filesystem side effects only; no network access.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from pydantic import ValidationError

from venvforge.core.errors import ProvisionError
from venvforge.core.prerequisites import locate_executable
from venvforge.models.environment import (
    METADATA_DIRNAME,
    Environment,
    EnvironmentMarker,
)

logger = logging.getLogger(__name__)


class EnvironmentProvisioner:
    """Creates and tears down per-package virtual environments.

    Parameters
    ----------
    with_pip:
        Seed pip into new environments (``python -m venv`` default). Turn
        off when the install step does not use the environment's own pip.
    timeout_seconds:
        Upper bound on ``python -m venv``.
    """

    def __init__(self, *, with_pip: bool = True, timeout_seconds: float = 300.0) -> None:
        self._with_pip = with_pip
        self._timeout = timeout_seconds

    # ------------------------------------------------------------------
    # Provision
    # ------------------------------------------------------------------

    def provision(self, root: Path, package: str, runtime: str) -> Environment:
        """Create (or recognize) the environment for ``package`` at ``root``.

        Raises ``ProvisionError`` when the runtime cannot be located, when
        ``root`` is a non-empty directory that is not this package's
        environment, or when the environment cannot be created.
        """
        root = Path(root).absolute()
        interpreter = locate_executable(runtime)
        if interpreter is None:
            raise ProvisionError(
                f"Runtime {runtime!r} could not be located",
                package=package,
                stage="provision",
                details={"runtime": runtime},
            )

        existing = self.load(root)
        if existing is not None:
            if existing.package != package:
                raise ProvisionError(
                    f"{root} belongs to package {existing.package!r}, not {package!r}",
                    package=package,
                    stage="provision",
                    details={"root": str(root), "owner": existing.package},
                )
            if existing.python.exists():
                logger.info("Environment for %s already provisioned at %s", package, root)
                return existing
            logger.warning("Environment at %s lost its interpreter; repairing", root)
            self._create_venv(existing.interpreter, root, package)
            return existing

        if root.exists() and (not root.is_dir() or any(root.iterdir())):
            raise ProvisionError(
                f"{root} exists, is not empty, and is not a recognized environment",
                package=package,
                stage="provision",
                details={"root": str(root)},
            )

        # root is absent or empty here, so a failed create leaves nothing behind.
        try:
            self._create_venv(str(interpreter), root, package)
        except ProvisionError:
            if root.exists():
                shutil.rmtree(root, ignore_errors=True)
                logger.warning("Removed partially created environment %s", root)
            raise
        environment = Environment(root=root, package=package, interpreter=str(interpreter))
        environment.metadata_dir.mkdir(parents=True, exist_ok=True)
        marker = EnvironmentMarker(package=package, interpreter=str(interpreter))
        environment.marker_path.write_text(marker.model_dump_json(indent=2), encoding="utf-8")
        logger.info("Provisioned environment for %s at %s", package, root)
        return environment

    def load(self, root: Path) -> Environment | None:
        """Return the environment recorded at ``root``, or None if unmarked."""
        root = Path(root).absolute()
        marker_path = root / METADATA_DIRNAME / "environment.json"
        if not marker_path.is_file():
            return None
        try:
            marker = EnvironmentMarker.model_validate_json(
                marker_path.read_text(encoding="utf-8")
            )
        except ValidationError as exc:
            raise ProvisionError(
                f"Unreadable environment marker at {marker_path}: {exc}",
                stage="provision",
                details={"root": str(root)},
            ) from exc
        return Environment(root=root, package=marker.package, interpreter=marker.interpreter)

    def _create_venv(self, interpreter: str, root: Path, package: str) -> None:
        cmd = [interpreter, "-m", "venv"]
        if not self._with_pip:
            cmd.append("--without-pip")
        cmd.append(str(root))
        logger.info("Creating virtual environment: %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise ProvisionError(
                f"Creating the environment timed out after {self._timeout}s",
                package=package,
                stage="provision",
            ) from exc
        except OSError as exc:
            raise ProvisionError(
                f"Could not run {interpreter}: {exc}",
                package=package,
                stage="provision",
            ) from exc
        if proc.returncode != 0:
            raise ProvisionError(
                f"{interpreter} -m venv exited with {proc.returncode}",
                package=package,
                stage="provision",
                details={"stderr": proc.stderr.strip()[-2000:]},
            )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown(self, environment: Environment) -> None:
        """Remove the environment tree (uninstall or caller-driven rollback)."""
        if environment.root.exists():
            shutil.rmtree(environment.root)
            logger.info("Removed environment %s", environment.root)
