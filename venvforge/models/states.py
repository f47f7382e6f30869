"""Install state machine models — deterministic, stage-by-stage transitions."""

from __future__ import annotations

from enum import Enum


class InstallState(str, Enum):
    """Strict state model for one installation attempt."""

    PENDING = "pending"
    PROVISIONED = "provisioned"
    FETCHED = "fetched"
    RESOLVED = "resolved"
    LINKED = "linked"
    VERIFIED = "verified"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why an attempt entered FAILED. One kind per installer error."""

    PREREQUISITE = "prerequisite"
    MANIFEST = "manifest"
    PROVISION = "provision"
    FETCH = "fetch"
    INTEGRITY = "integrity"
    CYCLE = "cycle"
    DEPENDENCY_CONFLICT = "dependency_conflict"
    INSTALL_STEP = "install_step"
    LINK_CONFLICT = "link_conflict"
    ENTRY_POINT_MISSING = "entry_point_missing"
    VERIFICATION = "verification"
    CANCELLED = "cancelled"
    LOCKED = "locked"
    INTERNAL = "internal"


# The success path, in order. No transition may skip a stage.
STAGE_ORDER: list[InstallState] = [
    InstallState.PENDING,
    InstallState.PROVISIONED,
    InstallState.FETCHED,
    InstallState.RESOLVED,
    InstallState.LINKED,
    InstallState.VERIFIED,
]

# Valid state transitions, enforced by InstallStateMachine.
# VERIFIED and FAILED are terminal within an attempt; a re-run is a new attempt.
VALID_TRANSITIONS: dict[InstallState, set[InstallState]] = {
    InstallState.PENDING: {InstallState.PROVISIONED, InstallState.FAILED},
    InstallState.PROVISIONED: {InstallState.FETCHED, InstallState.FAILED},
    InstallState.FETCHED: {InstallState.RESOLVED, InstallState.FAILED},
    InstallState.RESOLVED: {InstallState.LINKED, InstallState.FAILED},
    InstallState.LINKED: {InstallState.VERIFIED, InstallState.FAILED},
    InstallState.VERIFIED: set(),  # terminal
    InstallState.FAILED: set(),  # terminal
}

TERMINAL_STATES: frozenset[InstallState] = frozenset(
    {InstallState.VERIFIED, InstallState.FAILED}
)
