"""Per-environment InstallRecord backed by SQLite.

Lives at ``<environment>/.venvforge/record.db``. Packages are keyed by name
(PRIMARY KEY), so the record, and therefore the environment, can never
list two versions of the same package. Links carry a ``verified`` flag that
only the verifier stage sets.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from venvforge.models.record import InstalledPackage, InstallRecord, LinkRecord

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_PACKAGES = """
CREATE TABLE IF NOT EXISTS installed_packages (
    name            TEXT PRIMARY KEY,
    version         TEXT NOT NULL,
    content_hash    TEXT NOT NULL,
    installed_path  TEXT NOT NULL,
    installed_at    TEXT NOT NULL
);
"""

_CREATE_LINKS = """
CREATE TABLE IF NOT EXISTS links (
    name       TEXT PRIMARY KEY,
    link_path  TEXT NOT NULL,
    target     TEXT NOT NULL,
    verified   INTEGER NOT NULL DEFAULT 0
);
"""


class InstallRecordStore:
    """Read/write access to one environment's install record.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    environment_root:
        Root of the environment this record describes.
    """

    def __init__(self, db_path: Path, environment_root: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._root = Path(environment_root)
        # Resolver workers may commit concurrently.
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_PACKAGES)
            conn.execute(_CREATE_LINKS)
            conn.commit()

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    def record_package(self, installed: InstalledPackage) -> None:
        """Record a committed install, replacing any prior version of the name."""
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO installed_packages
                    (name, version, content_hash, installed_path, installed_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    version = excluded.version,
                    content_hash = excluded.content_hash,
                    installed_path = excluded.installed_path,
                    installed_at = excluded.installed_at
                """,
                (
                    installed.name,
                    installed.version,
                    installed.content_hash,
                    str(installed.installed_path),
                    installed.installed_at.isoformat(),
                ),
            )
            conn.commit()

    def get_package(self, name: str) -> InstalledPackage | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT name, version, content_hash, installed_path, installed_at "
                "FROM installed_packages WHERE name = ?",
                (name,),
            ).fetchone()
        return self._row_to_package(row) if row else None

    def is_satisfied(self, name: str, content_hash: str) -> bool:
        installed = self.get_package(name)
        return installed is not None and installed.content_hash == content_hash

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def record_link(self, link: LinkRecord) -> None:
        """Record a link as unverified (a re-link resets verification)."""
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO links (name, link_path, target, verified)
                VALUES (?, ?, ?, 0)
                ON CONFLICT(name) DO UPDATE SET
                    link_path = excluded.link_path,
                    target = excluded.target,
                    verified = CASE
                        WHEN links.target = excluded.target
                         AND links.link_path = excluded.link_path
                        THEN links.verified ELSE 0 END
                """,
                (link.name, str(link.link_path), str(link.target)),
            )
            conn.commit()

    def set_links_verified(self, verified: bool, names: list[str] | None = None) -> None:
        """Flag link rows verified or unverified; all rows unless ``names`` is given."""
        with self._write_lock, self._connect() as conn:
            if names is None:
                conn.execute("UPDATE links SET verified = ?", (1 if verified else 0,))
            else:
                conn.executemany(
                    "UPDATE links SET verified = ? WHERE name = ?",
                    [(1 if verified else 0, name) for name in names],
                )
            conn.commit()

    def remove_links(self, names: list[str]) -> None:
        with self._write_lock, self._connect() as conn:
            conn.executemany("DELETE FROM links WHERE name = ?", [(name,) for name in names])
            conn.commit()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> InstallRecord:
        """Return an immutable view of the whole record."""
        with self._connect() as conn:
            pkg_rows = conn.execute(
                "SELECT name, version, content_hash, installed_path, installed_at "
                "FROM installed_packages ORDER BY installed_at, name"
            ).fetchall()
            link_rows = conn.execute(
                "SELECT name, link_path, target, verified FROM links ORDER BY name"
            ).fetchall()
        packages = {row[0]: self._row_to_package(row) for row in pkg_rows}
        links = {
            row[0]: LinkRecord(
                name=row[0],
                link_path=Path(row[1]),
                target=Path(row[2]),
                verified=bool(row[3]),
            )
            for row in link_rows
        }
        return InstallRecord(environment_root=self._root, packages=packages, links=links)

    @staticmethod
    def _row_to_package(row: tuple) -> InstalledPackage:
        name, version, content_hash, installed_path, installed_at = row
        return InstalledPackage(
            name=name,
            version=version,
            content_hash=content_hash,
            installed_path=Path(installed_path),
            installed_at=datetime.fromisoformat(installed_at),
        )
