"""Installer error taxonomy.

Every error carries enough structured context (package, hash, stage) for a
human or automation to decide whether to retry, clean, or abort. Each class
maps to a distinct process exit code and to the ``FailureKind`` recorded
when an attempt enters FAILED.
"""

from __future__ import annotations

from typing import Any, ClassVar

from venvforge.models.states import FailureKind


class InstallError(RuntimeError):
    """Base class for all installer failures."""

    exit_code: ClassVar[int] = 1
    failure_kind: ClassVar[FailureKind] = FailureKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        package: str = "",
        content_hash: str = "",
        stage: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.package = package
        self.content_hash = content_hash
        self.stage = stage
        self.details: dict[str, Any] = details or {}

    def context(self) -> dict[str, Any]:
        """Structured context for logs, the ledger, and the CLI."""
        ctx: dict[str, Any] = {
            "error": type(self).__name__,
            "message": self.message,
            "failure_kind": self.failure_kind.value,
        }
        if self.package:
            ctx["package"] = self.package
        if self.content_hash:
            ctx["content_hash"] = self.content_hash
        if self.stage:
            ctx["stage"] = self.stage
        if self.details:
            ctx["details"] = self.details
        return ctx


class PrerequisiteError(InstallError):
    """A declared runtime or service prerequisite is missing or too old."""

    exit_code = 10
    failure_kind = FailureKind.PREREQUISITE


class ProvisionError(InstallError):
    """The environment could not be created at the requested root."""

    exit_code = 11
    failure_kind = FailureKind.PROVISION


class FetchError(InstallError):
    """Transport failure fetching an archive (after any retries)."""

    exit_code = 12
    failure_kind = FailureKind.FETCH


class IntegrityError(InstallError):
    """The fetched archive's digest differs from the expected hash.

    Never retried; the archive is discarded and never installed.
    """

    exit_code = 13
    failure_kind = FailureKind.INTEGRITY


class CycleError(InstallError):
    """The dependency graph contains a cycle."""

    exit_code = 14
    failure_kind = FailureKind.CYCLE

    def __init__(self, cycle: list[str], **kwargs: Any) -> None:
        self.cycle = cycle
        kwargs.setdefault("details", {"cycle": cycle})
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}", **kwargs
        )


class DependencyConflictError(InstallError):
    """Two entries request the same package name at different hashes,
    or a pinned version violates its declared constraint."""

    exit_code = 15
    failure_kind = FailureKind.DEPENDENCY_CONFLICT


class MissingDependencyError(DependencyConflictError):
    """A package depends on a name the manifest never declares."""


class InstallStepError(InstallError):
    """Installing one package into the environment failed.

    Packages installed before the failure remain installed and recorded;
    ``installed`` names them so the caller can retry or roll back.
    """

    exit_code = 16
    failure_kind = FailureKind.INSTALL_STEP

    def __init__(self, message: str, *, installed: list[str], **kwargs: Any) -> None:
        self.installed = list(installed)
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("installed", self.installed)
        super().__init__(message, details=details, **kwargs)


class LinkConflictError(InstallError):
    """A link with the same name exists and does not point at this environment."""

    exit_code = 17
    failure_kind = FailureKind.LINK_CONFLICT


class VerificationError(InstallError):
    """The linked executable's self-check failed.

    Files are in place but the installation is incomplete; links stay
    unverified until a later run passes verification.
    """

    exit_code = 18
    failure_kind = FailureKind.VERIFICATION


class InstallCancelledError(InstallError):
    """The installation was cancelled between steps.

    Cancellation stops further progress; committed steps are not undone.
    """

    exit_code = 19
    failure_kind = FailureKind.CANCELLED

    def __init__(self, message: str, *, installed: list[str] | None = None, **kwargs: Any) -> None:
        self.installed = list(installed or [])
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("installed", self.installed)
        super().__init__(message, details=details, **kwargs)


class EnvironmentLockedError(InstallError):
    """Another installer holds the environment's advisory lock."""

    exit_code = 20
    failure_kind = FailureKind.LOCKED


class EntryPointMissingError(InstallError):
    """The executable to link does not exist inside the environment."""

    exit_code = 21
    failure_kind = FailureKind.ENTRY_POINT_MISSING


class ManifestError(InstallError):
    """The manifest could not be read or failed validation."""

    exit_code = 22
    failure_kind = FailureKind.MANIFEST
