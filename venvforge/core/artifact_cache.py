"""Content-addressed, write-once archive cache shared across installations.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.archive
Incoming data is written under {base_path}/tmp/ and atomically renamed into
place only after its digest has been verified, so readers never observe a
partial entry. No delete method — entries are immutable once written.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from venvforge.core.errors import IntegrityError
from venvforge.core.hasher import sha256_file, strip_digest_prefix

logger = logging.getLogger(__name__)


class ArchiveCache:
    """SHA-256 keyed, write-once archive cache.

    Parameters
    ----------
    base_path:
        Root directory for the cache. Created if it does not exist.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self._tmp = self._base / "tmp"
        self._tmp.mkdir(exist_ok=True)
        self._locks = self._base / "locks"
        self._locks.mkdir(exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    def entry_path(self, content_hash: str) -> Path:
        """Compute the storage path for a SHA-256 digest."""
        digest = strip_digest_prefix(content_hash)
        return self._base / digest[:2] / digest[2:4] / f"{digest}.archive"

    def lock_path(self, content_hash: str) -> Path:
        """Lock file serializing writers of one hash across processes."""
        return self._locks / f"{strip_digest_prefix(content_hash)}.lock"

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def new_temp_file(self) -> Path:
        """Reserve a temp file inside the cache (same filesystem as entries)."""
        fd, name = tempfile.mkstemp(dir=self._tmp, suffix=".part")
        os.close(fd)
        return Path(name)

    def commit(self, temp_path: Path, expected_hash: str, *, package: str = "") -> Path:
        """Verify a downloaded temp file and move it into its hash slot.

        On digest mismatch the temp file is deleted and ``IntegrityError``
        is raised; the cache never holds the corrupted bytes under the key.
        If the slot is already filled (another writer won), the temp file
        is discarded and the existing entry is kept unchanged.
        """
        digest = strip_digest_prefix(expected_hash)
        actual = sha256_file(temp_path)
        if actual != digest:
            temp_path.unlink(missing_ok=True)
            raise IntegrityError(
                f"Archive for {package or digest[:12]} has digest {actual}, "
                f"expected {digest}; archive discarded",
                package=package,
                content_hash=digest,
                stage="fetch",
                details={"expected": digest, "actual": actual},
            )

        final = self.entry_path(digest)
        if final.exists():
            temp_path.unlink(missing_ok=True)
            return final

        final.parent.mkdir(parents=True, exist_ok=True)
        os.replace(temp_path, final)
        logger.debug("Cached %s at %s", digest[:12], final)
        return final

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, content_hash: str) -> bool:
        """Check if a complete entry exists for this hash."""
        return self.entry_path(content_hash).exists()

    def verify(self, content_hash: str) -> bool:
        """Re-hash a stored entry and compare against its key."""
        path = self.entry_path(content_hash)
        if not path.exists():
            return False
        return sha256_file(path) == strip_digest_prefix(content_hash)

    def lookup(self, content_hash: str, *, package: str = "") -> Path | None:
        """Return the entry path for a hash, or None when absent.

        A present entry whose bytes no longer match its key is reported as
        ``IntegrityError``; the entry is never rewritten in place.
        """
        path = self.entry_path(content_hash)
        if not path.exists():
            return None
        if not self.verify(content_hash):
            raise IntegrityError(
                f"Cached archive {path} failed integrity check",
                package=package,
                content_hash=strip_digest_prefix(content_hash),
                stage="fetch",
            )
        return path
