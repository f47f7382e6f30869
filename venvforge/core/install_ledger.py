"""Append-only, hash-chained Install Ledger backed by SQLite.

Every state transition of every install attempt is journaled here. The
ledger outlives environments: an attempt that failed before provisioning,
or whose environment was later uninstalled, is still on record.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per attempt: each entry includes SHA-256 of the previous one.
- WAL journal mode for concurrent readers.
- entry_hash UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from venvforge.core.hasher import compute_entry_hash
from venvforge.models.ledger import LedgerEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS install_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    attempt_id            TEXT NOT NULL,
    package               TEXT NOT NULL,
    version               TEXT NOT NULL DEFAULT '',
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    failure_kind          TEXT NOT NULL DEFAULT '',
    details_json          TEXT NOT NULL DEFAULT '{}',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_ATTEMPT = """
CREATE INDEX IF NOT EXISTS idx_attempt ON install_ledger(attempt_id, id);
"""

_CREATE_IDX_PACKAGE = """
CREATE INDEX IF NOT EXISTS idx_package ON install_ledger(package, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class InstallLedger:
    """Append-only, hash-chained journal of install attempts.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._append_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_ATTEMPT)
            conn.execute(_CREATE_IDX_PACKAGE)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry, computing its hash chain link.

        Returns the entry with `previous_entry_hash` and `entry_hash` set.
        This is the ONLY write method. There is no update or delete.
        """
        with self._append_lock:
            previous_hash = self._get_latest_hash(entry.attempt_id)

            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""
            entry_hash = compute_entry_hash(entry_dict)

            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": entry_hash,
                }
            )
            self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO install_ledger
                    (entry_id, attempt_id, package, version, state_transition,
                     timestamp_utc, failure_kind, details_json,
                     previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.attempt_id,
                    entry.package,
                    entry.version,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat(),
                    entry.failure_kind,
                    json.dumps(entry.details, sort_keys=True, default=str),
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, attempt_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM install_ledger WHERE attempt_id = ? "
                "ORDER BY id DESC LIMIT 1",
                (attempt_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_attempt_entries(self, attempt_id: str) -> list[LedgerEntry]:
        """Return all entries for an attempt, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM install_ledger WHERE attempt_id = ? ORDER BY id ASC",
                (attempt_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_package_entries(self, package: str) -> list[LedgerEntry]:
        """Return all entries for a package across attempts, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM install_ledger WHERE package = ? ORDER BY id ASC",
                (package,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_attempt_ids(self, package: str) -> list[str]:
        """Return a package's attempt ids, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT attempt_id, MAX(id) AS last FROM install_ledger "
                "WHERE package = ? GROUP BY attempt_id ORDER BY last DESC",
                (package,),
            ).fetchall()
        return [row[0] for row in rows]

    def get_latest(self, attempt_id: str) -> LedgerEntry | None:
        entries = self.get_attempt_entries(attempt_id)
        return entries[-1] if entries else None

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, attempt_id: str) -> bool:
        """Verify the hash chain integrity for an attempt.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_attempt_entries(attempt_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            attempt_id,
            package,
            version,
            state_transition,
            timestamp_utc,
            failure_kind,
            details_json,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            attempt_id=attempt_id,
            package=package,
            version=version,
            state_transition=state_transition,
            timestamp_utc=datetime.fromisoformat(timestamp_utc),
            failure_kind=failure_kind,
            details=json.loads(details_json),
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
