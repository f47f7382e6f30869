"""Install-step capabilities injected into the resolver.

An install step takes one staged artifact and the target environment and
reports an ``InstallOutcome``. The resolver owns ordering, idempotence and
bookkeeping; the step only performs the install. Variations such as
"let pip resolve dependencies too" or "use an explicit interpreter" are
configurations of ``PipInstallStep``, not separate code paths.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from venvforge.models.environment import Environment
from venvforge.models.packages import StagedArtifact
from venvforge.models.results import InstallOutcome

logger = logging.getLogger(__name__)


class InstallStep(Protocol):
    """Installs one staged artifact into an environment."""

    def __call__(self, artifact: StagedArtifact, environment: Environment) -> InstallOutcome: ...


class PipInstallStep:
    """Install a staged wheel or source tree with pip.

    Parameters
    ----------
    no_deps:
        Pass ``--no-deps`` so pip installs exactly the staged artifact and
        leaves dependency resolution to venvforge (the default). Set False
        to let pip fetch the package's own dependencies as well.
    interpreter:
        Explicit interpreter whose pip runs the install. Defaults to the
        environment's own python.
    extra_args:
        Appended to ``pip install`` (for example ``["--verbose"]``).
    timeout_seconds:
        Upper bound on a single pip invocation.
    """

    def __init__(
        self,
        *,
        no_deps: bool = True,
        interpreter: Path | None = None,
        extra_args: Sequence[str] = (),
        timeout_seconds: float = 600.0,
    ) -> None:
        self.no_deps = no_deps
        self.interpreter = interpreter
        self.extra_args = list(extra_args)
        self.timeout_seconds = timeout_seconds

    def command(self, artifact: StagedArtifact, environment: Environment) -> list[str]:
        python = self.interpreter or environment.python
        cmd = [str(python), "-m", "pip", "install", "--disable-pip-version-check"]
        if self.no_deps:
            cmd.append("--no-deps")
        if self.interpreter is not None:
            # A foreign interpreter must be pointed at the environment explicitly.
            cmd.extend(["--prefix", str(environment.root)])
        cmd.extend(self.extra_args)
        cmd.append(str(artifact.install_target))
        return cmd

    def __call__(self, artifact: StagedArtifact, environment: Environment) -> InstallOutcome:
        cmd = self.command(artifact, environment)
        logger.info("Installing %s: %s", artifact.package, " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env=environment.env_vars(),
            )
        except subprocess.TimeoutExpired:
            return InstallOutcome(
                ok=False, detail=f"pip timed out after {self.timeout_seconds}s"
            )
        except OSError as exc:
            return InstallOutcome(ok=False, detail=f"could not run pip: {exc}")

        if proc.returncode != 0:
            return InstallOutcome(
                ok=False,
                detail=f"pip exited with {proc.returncode}: {proc.stderr.strip()[-2000:]}",
            )
        return InstallOutcome(ok=True, installed_path=environment.lib_dir)
