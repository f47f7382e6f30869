"""Artifact Fetcher — download, verify, cache, and stage package archives.

Guarantees:
- Archives are cached by content hash, write-once (see ``ArchiveCache``).
- A digest mismatch raises ``IntegrityError``; the bytes are discarded and
  never retried or installed.
- Transient transport failures are retried with exponential backoff up to a
  bounded number of attempts, then surface as ``FetchError``.
- At most one download per hash is in flight. Callers in this process wait
  on the first caller's future; callers in other processes serialize on a
  per-hash lock file and then find the completed cache entry.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
import threading
import time
import zipfile
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path

from filelock import FileLock, Timeout

from venvforge.core.artifact_cache import ArchiveCache
from venvforge.core.cancellation import CancellationToken
from venvforge.core.errors import FetchError, InstallCancelledError, InstallError
from venvforge.core.transport import (
    DefaultTransport,
    TransientTransportError,
    Transport,
    archive_filename,
)
from venvforge.models.packages import Package, StagedArtifact

logger = logging.getLogger(__name__)

_TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz", ".tar")
_ZIP_SUFFIXES = (".zip",)

# In-flight downloads shared by every fetcher in this process:
# (resolved cache root, digest) -> future resolving to the cache entry path.
_INFLIGHT: dict[tuple[str, str], Future[Path]] = {}
_INFLIGHT_LOCK = threading.Lock()


class ArtifactFetcher:
    """Fetches archives into the shared cache and stages them for install.

    Parameters
    ----------
    cache:
        The shared content-addressed archive cache.
    staging_root:
        Directory holding one extracted staging tree per hash.
    transport:
        Copies a source location into a file. Defaults to HTTP(S) + local.
    max_attempts:
        Total attempts for transient transport failures.
    backoff_base_seconds:
        Delay before the second attempt; doubles for each further attempt.
    wait_timeout_seconds:
        Upper bound on waiting for another caller's in-flight download.
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        cache: ArchiveCache,
        staging_root: Path,
        *,
        transport: Transport | None = None,
        max_attempts: int = 4,
        backoff_base_seconds: float = 0.5,
        wait_timeout_seconds: float = 600.0,
        max_parallel: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cache = cache
        self._staging_root = Path(staging_root)
        self._staging_root.mkdir(parents=True, exist_ok=True)
        self._transport = transport or DefaultTransport()
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base_seconds
        self._wait_timeout = wait_timeout_seconds
        self._max_parallel = max(1, max_parallel)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, package: Package) -> StagedArtifact:
        """Fetch, verify, and stage one package's archive."""
        archive, downloaded = self._obtain(package)
        filename = archive_filename(package.source) or f"{package.name}-{package.version}"
        staging = self._stage(package, archive, filename)
        return StagedArtifact(
            package=package,
            archive_path=archive,
            staging_path=staging,
            install_target=self._install_target(staging, filename),
            from_cache=not downloaded,
        )

    def fetch_all(
        self,
        packages: Iterable[Package],
        *,
        cancel: CancellationToken | None = None,
    ) -> dict[str, StagedArtifact]:
        """Fetch independent packages concurrently.

        Every package is attempted; if any fail, the error of the earliest
        declared failing package is raised after the others have settled,
        so successful downloads still land in the cache for the next run.
        """
        packages = list(packages)
        if not packages:
            return {}

        def _task(package: Package) -> StagedArtifact:
            if cancel is not None and cancel.cancelled:
                raise InstallCancelledError(
                    f"Fetch of {package} cancelled: {cancel.reason}",
                    package=package.name,
                    stage="fetch",
                )
            return self.fetch(package)

        staged: dict[str, StagedArtifact] = {}
        failures: list[tuple[Package, InstallError]] = []
        with ThreadPoolExecutor(
            max_workers=min(self._max_parallel, len(packages)),
            thread_name_prefix="venvforge-fetch",
        ) as pool:
            futures = {pool.submit(_task, p): p for p in packages}
            for future in as_completed(futures):
                package = futures[future]
                try:
                    staged[package.name] = future.result()
                except InstallError as exc:
                    failures.append((package, exc))

        if failures:
            failures.sort(key=lambda item: item[0].declaration_index)
            for package, exc in failures[1:]:
                logger.error("Fetch of %s also failed: %s", package, exc)
            raise failures[0][1]
        return staged

    # ------------------------------------------------------------------
    # Download with deduplication
    # ------------------------------------------------------------------

    def _obtain(self, package: Package) -> tuple[Path, bool]:
        """Return (cache entry path, whether this call downloaded it)."""
        digest = package.content_hash
        cached = self._cache.lookup(digest, package=package.name)
        if cached is not None:
            logger.info("Cache hit for %s (%s)", package, digest[:12])
            return cached, False

        key = (str(self._cache.base_path.resolve()), digest)
        with _INFLIGHT_LOCK:
            future = _INFLIGHT.get(key)
            owner = future is None
            if owner:
                future = Future()
                _INFLIGHT[key] = future

        if not owner:
            logger.info("Waiting on in-flight download of %s (%s)", package, digest[:12])
            try:
                return future.result(timeout=self._wait_timeout), False
            except FutureTimeoutError as exc:
                raise FetchError(
                    f"Timed out waiting for in-flight download of {package}",
                    package=package.name,
                    content_hash=digest,
                    stage="fetch",
                ) from exc

        try:
            path, downloaded = self._download_locked(package)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(path)
            return path, downloaded
        finally:
            with _INFLIGHT_LOCK:
                _INFLIGHT.pop(key, None)

    def _download_locked(self, package: Package) -> tuple[Path, bool]:
        digest = package.content_hash
        try:
            with FileLock(self._cache.lock_path(digest), timeout=self._wait_timeout):
                # Another process may have completed the entry while we waited.
                cached = self._cache.lookup(digest, package=package.name)
                if cached is not None:
                    return cached, False
                return self._download_with_retry(package), True
        except Timeout as exc:
            raise FetchError(
                f"Timed out waiting for the cache lock of {package}",
                package=package.name,
                content_hash=digest,
                stage="fetch",
            ) from exc

    def _download_with_retry(self, package: Package) -> Path:
        digest = package.content_hash
        attempt = 0
        while True:
            attempt += 1
            temp = self._cache.new_temp_file()
            logger.info(
                "Downloading %s from %s (attempt %d/%d)",
                package, package.source, attempt, self._max_attempts,
            )
            try:
                self._transport.download(package.source, temp)
            except TransientTransportError as exc:
                temp.unlink(missing_ok=True)
                if attempt >= self._max_attempts:
                    raise FetchError(
                        f"Failed to fetch {package} after {attempt} attempts: {exc}",
                        package=package.name,
                        content_hash=digest,
                        stage="fetch",
                        details={"source": package.source, "attempts": attempt},
                    ) from exc
                delay = self._backoff_base * 2 ** (attempt - 1)
                logger.warning(
                    "Transient failure fetching %s: %s; retrying in %.2fs",
                    package, exc, delay,
                )
                self._sleep(delay)
                continue
            except FetchError as exc:
                temp.unlink(missing_ok=True)
                exc.package = exc.package or package.name
                exc.content_hash = exc.content_hash or digest
                raise
            except BaseException:
                temp.unlink(missing_ok=True)
                raise

            # Integrity failures are never retried.
            return self._cache.commit(temp, digest, package=package.name)

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _stage(self, package: Package, archive: Path, filename: str) -> Path:
        """Extract (or copy) a cached archive into its per-hash staging dir."""
        staging = self._staging_root / package.content_hash
        if staging.exists():
            return staging

        tmp = Path(tempfile.mkdtemp(dir=self._staging_root, prefix=f".{package.content_hash[:12]}-"))
        try:
            _extract(archive, filename, tmp)
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as exc:
            shutil.rmtree(tmp, ignore_errors=True)
            raise FetchError(
                f"Could not unpack archive for {package}: {exc}",
                package=package.name,
                content_hash=package.content_hash,
                stage="fetch",
            ) from exc

        try:
            os.replace(tmp, staging)
        except OSError:
            # Lost the race to a concurrent stager; theirs is identical.
            shutil.rmtree(tmp, ignore_errors=True)
            if not staging.exists():
                raise
        logger.debug("Staged %s at %s", package, staging)
        return staging

    @staticmethod
    def _install_target(staging: Path, filename: str) -> Path:
        if not _is_archive(filename):
            return staging / filename
        entries = [p for p in staging.iterdir()]
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return staging


def _is_archive(filename: str) -> bool:
    lowered = filename.lower()
    return lowered.endswith(_TAR_SUFFIXES) or lowered.endswith(_ZIP_SUFFIXES)


def _extract(archive: Path, filename: str, destination: Path) -> None:
    """Unpack ``archive`` into ``destination``; never writes outside it.

    Wheels and unknown file types are copied under their original name
    because installers identify them by file name.
    """
    lowered = filename.lower()
    if lowered.endswith(_TAR_SUFFIXES):
        with tarfile.open(archive) as tar:
            tar.extractall(destination, filter="data")
    elif lowered.endswith(_ZIP_SUFFIXES):
        root = destination.resolve()
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                target = (destination / member).resolve()
                if not target.is_relative_to(root):
                    raise zipfile.BadZipFile(f"member escapes archive root: {member}")
            zf.extractall(destination)
    else:
        shutil.copyfile(archive, destination / filename)
