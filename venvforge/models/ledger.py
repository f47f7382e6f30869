"""Install Ledger entry model (append-only, hash-chained).

The Install Ledger is the journal of every install attempt. It is:
- Append-only (no UPDATE, no DELETE)
- Hash-chained per attempt (each entry links to the previous via SHA-256)
- Event-driven (one entry per state transition)
- Scoped to attempt_id + package
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single state transition of one install attempt."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    attempt_id: str
    package: str
    version: str = ""
    state_transition: str  # "from_state->to_state", e.g. "pending->provisioned"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    failure_kind: str = ""  # populated when entering FAILED
    details: dict[str, Any] = {}
    previous_entry_hash: str = ""  # SHA-256 of previous entry's canonical bytes
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
