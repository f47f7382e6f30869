"""Result models returned by the install-step capability, verifier, resolver and installer."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from venvforge.models.record import InstallRecord, LinkRecord
from venvforge.models.states import InstallState


class InstallOutcome(BaseModel):
    """What an install-step capability reports for one staged artifact."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    installed_path: Path | None = None
    detail: str = ""


class ResolveReport(BaseModel):
    """Summary of one resolver run over an install plan."""

    model_config = ConfigDict(frozen=True)

    installed: list[str] = []  # installed during this run, in commit order
    skipped: list[str] = []  # already satisfied by the install record


class VerificationReport(BaseModel):
    """Observed result of running the linked executable's self-check."""

    model_config = ConfigDict(frozen=True)

    command: list[str]
    expected_version: str
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return (
            not self.timed_out
            and self.exit_code == 0
            and self.expected_version in self.stdout
        )


class InstallResult(BaseModel):
    """Outcome of one successful install attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    package: str
    version: str
    state: InstallState
    environment_root: Path
    fetched: list[str] = []  # packages actually downloaded this attempt
    installed: list[str] = []
    skipped: list[str] = []
    links: list[LinkRecord] = []
    verification: VerificationReport | None = None


class EnvironmentStatus(BaseModel):
    """What ``status`` reports for one package's environment."""

    model_config = ConfigDict(frozen=True)

    package: str
    environment_root: Path
    provisioned: bool = False
    interpreter: str = ""
    record: InstallRecord | None = None
    last_attempt_id: str = ""
    last_state: str = ""  # an InstallState value, or "uninstalled"
    last_failure_kind: str = ""

    @property
    def verified(self) -> bool:
        return self.record is not None and self.record.all_links_verified
