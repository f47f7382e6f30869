"""Installation Verifier — runs the linked executable's self-check."""

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from venvforge.core.errors import VerificationError
from venvforge.models.environment import Environment
from venvforge.models.results import VerificationReport

logger = logging.getLogger(__name__)


class InstallationVerifier:
    """Invokes ``<executable> <version_flag>`` and matches the expected version.

    Parameters
    ----------
    version_flag:
        The self-reporting flag. ``--version`` for every known manifest.
    timeout_seconds:
        Upper bound on the self-check process.
    """

    def __init__(self, *, version_flag: str = "--version", timeout_seconds: float = 30.0) -> None:
        self._flag = version_flag
        self._timeout = timeout_seconds

    def run(
        self,
        executable: Path,
        expected_version: str,
        environment: Environment | None = None,
    ) -> VerificationReport:
        """Run the self-check and report what was observed. Never raises."""
        command = [str(executable), self._flag]
        env = environment.env_vars() if environment is not None else None
        started = time.monotonic()
        try:
            proc = subprocess.run(
                command, capture_output=True, text=True, timeout=self._timeout, env=env
            )
        except subprocess.TimeoutExpired as exc:
            return VerificationReport(
                command=command,
                expected_version=expected_version,
                exit_code=None,
                stdout=_text(exc.stdout),
                stderr=_text(exc.stderr),
                duration_seconds=time.monotonic() - started,
                timed_out=True,
            )
        except OSError as exc:
            return VerificationReport(
                command=command,
                expected_version=expected_version,
                exit_code=None,
                stderr=str(exc),
                duration_seconds=time.monotonic() - started,
            )
        return VerificationReport(
            command=command,
            expected_version=expected_version,
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration_seconds=time.monotonic() - started,
        )

    def verify(
        self,
        executable: Path,
        expected_version: str,
        environment: Environment | None = None,
        *,
        package: str = "",
    ) -> VerificationReport:
        """Run the self-check; raise ``VerificationError`` unless it passes."""
        report = self.run(executable, expected_version, environment)
        if report.passed:
            logger.info("%s reports %s", executable, expected_version)
            return report

        if report.timed_out:
            reason = f"timed out after {self._timeout}s"
        elif report.exit_code is None:
            reason = f"could not be launched: {report.stderr}"
        elif report.exit_code != 0:
            reason = f"exited with {report.exit_code}"
        else:
            reason = f"output does not contain {expected_version!r}"
        raise VerificationError(
            f"Self-check of {executable} failed: {reason}",
            package=package,
            stage="verify",
            details=report.model_dump(mode="json"),
        )


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
