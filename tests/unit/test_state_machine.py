"""Tests for the InstallStateMachine — valid transitions, journaling, replay."""

from __future__ import annotations

import pytest

from venvforge.core.install_ledger import InstallLedger
from venvforge.core.state_machine import InstallStateMachine, InvalidTransitionError
from venvforge.models.states import FailureKind, InstallState


class TestInstallStateMachine:
    def test_start_is_pending(self, state_machine: InstallStateMachine, attempt_id: str):
        entry = state_machine.start(attempt_id, "app", "1.0")
        assert entry.state_transition == "new->pending"
        assert state_machine.get_state(attempt_id) == InstallState.PENDING

    def test_cannot_start_twice(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        with pytest.raises(InvalidTransitionError):
            state_machine.start(attempt_id, "app", "1.0")

    def test_advance_walks_success_path(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        seen = [state_machine.advance(attempt_id).to_state for _ in range(5)]
        assert seen == ["provisioned", "fetched", "resolved", "linked", "verified"]
        assert state_machine.is_terminal(attempt_id)

    def test_cannot_skip_a_stage(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(attempt_id, InstallState.FETCHED)

    def test_fail_from_any_non_terminal_state(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        state_machine.advance(attempt_id)
        entry = state_machine.fail(attempt_id, FailureKind.FETCH, details={"source": "x"})
        assert entry.state_transition == "provisioned->failed"
        assert entry.failure_kind == "fetch"

    def test_failed_requires_kind(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(attempt_id, InstallState.FAILED)

    def test_kind_only_for_failed(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(
                attempt_id, InstallState.PROVISIONED, failure_kind=FailureKind.FETCH
            )

    def test_terminal_states_are_final(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        state_machine.fail(attempt_id, FailureKind.CYCLE)
        with pytest.raises(InvalidTransitionError):
            state_machine.advance(attempt_id)
        with pytest.raises(InvalidTransitionError):
            state_machine.fail(attempt_id, FailureKind.CYCLE)

    def test_every_transition_is_journaled(
        self, state_machine: InstallStateMachine, ledger: InstallLedger, attempt_id: str
    ):
        state_machine.start(attempt_id, "app", "1.0")
        state_machine.advance(attempt_id)
        state_machine.fail(attempt_id, FailureKind.INTEGRITY)
        transitions = [e.state_transition for e in ledger.get_attempt_entries(attempt_id)]
        assert transitions == ["new->pending", "pending->provisioned", "provisioned->failed"]
        assert ledger.verify_chain(attempt_id)

    def test_state_rebuilt_from_ledger(
        self, state_machine: InstallStateMachine, ledger: InstallLedger, attempt_id: str
    ):
        state_machine.start(attempt_id, "app", "1.0")
        state_machine.advance(attempt_id)
        state_machine.advance(attempt_id)

        fresh = InstallStateMachine(ledger)
        assert fresh.get_state(attempt_id) == InstallState.FETCHED
        entry = fresh.advance(attempt_id)
        assert entry.package == "app"
        assert entry.version == "1.0"

    def test_unknown_attempt(self, state_machine: InstallStateMachine):
        with pytest.raises(KeyError):
            state_machine.get_state("missing")

    def test_available_transitions(self, state_machine: InstallStateMachine, attempt_id: str):
        state_machine.start(attempt_id, "app", "1.0")
        assert state_machine.get_available_transitions(attempt_id) == {
            InstallState.PROVISIONED,
            InstallState.FAILED,
        }
