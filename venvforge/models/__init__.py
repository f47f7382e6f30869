"""venvforge data models — all Pydantic v2, all frozen (immutable)."""

from venvforge.models.environment import Environment, EnvironmentMarker
from venvforge.models.ledger import LedgerEntry
from venvforge.models.manifest import (
    DependencySpec,
    PackageManifest,
    RuntimePrerequisite,
    ServicePrerequisite,
)
from venvforge.models.packages import InstallPlan, Package, StagedArtifact
from venvforge.models.record import InstalledPackage, InstallRecord, LinkRecord
from venvforge.models.results import (
    EnvironmentStatus,
    InstallOutcome,
    InstallResult,
    ResolveReport,
    VerificationReport,
)
from venvforge.models.states import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    FailureKind,
    InstallState,
)

__all__ = [
    # manifest
    "PackageManifest",
    "DependencySpec",
    "RuntimePrerequisite",
    "ServicePrerequisite",
    # packages
    "Package",
    "StagedArtifact",
    "InstallPlan",
    # environment
    "Environment",
    "EnvironmentMarker",
    # record
    "InstalledPackage",
    "InstallRecord",
    "LinkRecord",
    # results
    "InstallOutcome",
    "ResolveReport",
    "VerificationReport",
    "InstallResult",
    "EnvironmentStatus",
    # states
    "InstallState",
    "FailureKind",
    "STAGE_ORDER",
    "VALID_TRANSITIONS",
    # ledger
    "LedgerEntry",
]
