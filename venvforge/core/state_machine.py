"""Deterministic install state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- No stage is skipped on the success path
- FAILED always carries a FailureKind
- Every transition recorded in the Install Ledger
"""

from __future__ import annotations

from typing import Any

from venvforge.core.install_ledger import InstallLedger
from venvforge.models.ledger import LedgerEntry
from venvforge.models.states import (
    STAGE_ORDER,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    FailureKind,
    InstallState,
)

# Marks the first entry of an attempt: "new->pending".
_NEW = "new"


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class InstallStateMachine:
    """Tracks the state of install attempts and journals every transition.

    Parameters
    ----------
    ledger:
        The Install Ledger to record transitions into.
    """

    def __init__(self, ledger: InstallLedger) -> None:
        self._ledger = ledger
        # attempt_id -> (package, version, state)
        self._attempts: dict[str, tuple[str, str, InstallState]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def start(
        self,
        attempt_id: str,
        package: str,
        version: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Open a new attempt in PENDING."""
        if attempt_id in self._attempts or self._ledger.get_latest(attempt_id):
            raise InvalidTransitionError(f"Attempt {attempt_id} already started")
        sealed = self._ledger.append(
            LedgerEntry(
                attempt_id=attempt_id,
                package=package,
                version=version,
                state_transition=f"{_NEW}->{InstallState.PENDING.value}",
                details=details or {},
            )
        )
        self._attempts[attempt_id] = (package, version, InstallState.PENDING)
        return sealed

    def get_state(self, attempt_id: str) -> InstallState:
        """Return the current state of an attempt."""
        if attempt_id not in self._attempts:
            self._rebuild_state(attempt_id)
        return self._attempts[attempt_id][2]

    def is_terminal(self, attempt_id: str) -> bool:
        return self.get_state(attempt_id) in TERMINAL_STATES

    def _rebuild_state(self, attempt_id: str) -> None:
        """Rebuild an attempt's state by replaying its ledger entries."""
        entries = self._ledger.get_attempt_entries(attempt_id)
        if not entries:
            raise KeyError(f"Unknown attempt {attempt_id}")
        state = InstallState.PENDING
        for entry in entries:
            try:
                state = InstallState(entry.to_state)
            except ValueError:
                continue
        first = entries[0]
        self._attempts[attempt_id] = (first.package, first.version, state)

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        attempt_id: str,
        target_state: InstallState,
        *,
        failure_kind: FailureKind | None = None,
        details: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Move an attempt to ``target_state``, recording it in the ledger.

        Validates that the transition is allowed by VALID_TRANSITIONS and
        that FAILED, and only FAILED, carries a failure kind.
        """
        if attempt_id not in self._attempts:
            self._rebuild_state(attempt_id)
        package, version, current = self._attempts[attempt_id]

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {package} attempt {attempt_id} from "
                f"{current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        if (target_state == InstallState.FAILED) != (failure_kind is not None):
            raise InvalidTransitionError(
                "A failure kind is required for, and only for, the failed state"
            )

        sealed = self._ledger.append(
            LedgerEntry(
                attempt_id=attempt_id,
                package=package,
                version=version,
                state_transition=f"{current.value}->{target_state.value}",
                failure_kind=failure_kind.value if failure_kind else "",
                details=details or {},
            )
        )
        self._attempts[attempt_id] = (package, version, target_state)
        return sealed

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def advance(
        self, attempt_id: str, *, details: dict[str, Any] | None = None
    ) -> LedgerEntry:
        """Move an attempt to the next stage of the success path."""
        current = self.get_state(attempt_id)
        if current in TERMINAL_STATES:
            raise InvalidTransitionError(
                f"Attempt {attempt_id} is already {current.value}"
            )
        target = STAGE_ORDER[STAGE_ORDER.index(current) + 1]
        return self.transition(attempt_id, target, details=details)

    def fail(
        self,
        attempt_id: str,
        failure_kind: FailureKind,
        *,
        details: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        return self.transition(
            attempt_id, InstallState.FAILED, failure_kind=failure_kind, details=details
        )

    def get_available_transitions(self, attempt_id: str) -> set[InstallState]:
        """Return the set of valid target states for an attempt."""
        return VALID_TRANSITIONS.get(self.get_state(attempt_id), set())
