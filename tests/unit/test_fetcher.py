"""Tests for the ArtifactFetcher — integrity, retries, dedup, staging."""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import pytest

from venvforge.core.artifact_cache import ArchiveCache
from venvforge.core.cancellation import CancellationToken
from venvforge.core.errors import FetchError, InstallCancelledError, IntegrityError
from venvforge.core.fetcher import ArtifactFetcher
from venvforge.core.transport import LocalFileTransport, TransientTransportError, local_path


class FlakyTransport:
    """Raises TransientTransportError for the first ``failures`` calls."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0
        self._inner = LocalFileTransport()

    def download(self, source: str, destination: Path) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientTransportError(f"flaky #{self.calls}")
        self._inner.download(source, destination)


class FatalTransport:
    def __init__(self) -> None:
        self.calls = 0

    def download(self, source: str, destination: Path) -> None:
        self.calls += 1
        raise FetchError(f"HTTP 404 fetching {source}", stage="fetch")


@pytest.fixture
def make_remote(make_archive, make_package):
    """Factory fixture: a Package whose source is a real local archive."""

    def _factory(name: str, version: str = "1.0.0", index: int = 0):
        path, digest = make_archive(name, version)
        return make_package(
            name, index=index, version=version, source=path.as_uri(), content_hash=digest
        )

    return _factory


def _fetcher(tmp_dir: Path, transport, **kw) -> ArtifactFetcher:
    sleeps: list[float] = []
    fetcher = ArtifactFetcher(
        ArchiveCache(tmp_dir / "cache"),
        tmp_dir / "staging",
        transport=transport,
        sleep=sleeps.append,
        **kw,
    )
    fetcher.sleeps = sleeps  # type: ignore[attr-defined]
    return fetcher


class TestFetch:
    def test_fetch_stages_source_tree(self, tmp_dir, make_remote, transport):
        package = make_remote("lib", "2.0")
        staged = _fetcher(tmp_dir, transport).fetch(package)
        assert staged.from_cache is False
        assert staged.archive_path.is_file()
        assert staged.install_target == staged.staging_path / "lib-2.0"
        assert (staged.install_target / "PKG-INFO").is_file()
        assert transport.downloads == [package.source]

    def test_second_fetch_is_cache_hit(self, tmp_dir, make_remote, transport):
        package = make_remote("lib")
        fetcher = _fetcher(tmp_dir, transport)
        fetcher.fetch(package)
        again = fetcher.fetch(package)
        assert again.from_cache is True
        assert len(transport.downloads) == 1

    def test_wheel_is_copied_by_name(self, tmp_dir, make_package, transport):
        wheel = tmp_dir / "lib-1.0-py3-none-any.whl"
        wheel.write_bytes(b"not really a zip")
        package = make_package(
            "lib", source=str(wheel), content_hash=hashlib.sha256(wheel.read_bytes()).hexdigest()
        )
        staged = _fetcher(tmp_dir, transport).fetch(package)
        assert staged.install_target == staged.staging_path / wheel.name
        assert staged.install_target.read_bytes() == b"not really a zip"


class TestIntegrity:
    def test_one_byte_mismatch(self, tmp_dir, make_remote, transport):
        package = make_remote("lib")
        archive = local_path(package.source)
        data = bytearray(archive.read_bytes())
        data[-1] ^= 0x01
        archive.write_bytes(bytes(data))

        fetcher = _fetcher(tmp_dir, transport)
        with pytest.raises(IntegrityError) as excinfo:
            fetcher.fetch(package)
        assert excinfo.value.content_hash == package.content_hash
        assert excinfo.value.details["expected"] == package.content_hash
        assert excinfo.value.details["actual"] != package.content_hash
        assert not ArchiveCache(tmp_dir / "cache").exists(package.content_hash)
        assert len(transport.downloads) == 1  # never retried
        assert not (tmp_dir / "staging" / package.content_hash).exists()


class TestRetries:
    def test_transient_failures_are_retried_with_backoff(self, tmp_dir, make_remote):
        package = make_remote("lib")
        transport = FlakyTransport(failures=2)
        fetcher = _fetcher(tmp_dir, transport, max_attempts=4, backoff_base_seconds=0.5)
        staged = fetcher.fetch(package)
        assert transport.calls == 3
        assert fetcher.sleeps == [0.5, 1.0]
        assert staged.from_cache is False

    def test_exhausted_retries_raise_fetch_error(self, tmp_dir, make_remote):
        package = make_remote("lib")
        transport = FlakyTransport(failures=10)
        fetcher = _fetcher(tmp_dir, transport, max_attempts=3, backoff_base_seconds=0.1)
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch(package)
        assert transport.calls == 3
        assert excinfo.value.details["attempts"] == 3
        assert excinfo.value.package == "lib"
        assert fetcher.sleeps == [0.1, 0.2]

    def test_fatal_fetch_error_not_retried(self, tmp_dir, make_remote):
        package = make_remote("lib")
        transport = FatalTransport()
        fetcher = _fetcher(tmp_dir, transport)
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch(package)
        assert transport.calls == 1
        assert excinfo.value.package == "lib"
        assert excinfo.value.content_hash == package.content_hash


class TestConcurrency:
    def test_concurrent_same_hash_downloads_once(self, tmp_dir, make_remote, transport):
        package = make_remote("shared")
        transport.delay = 0.3
        fetchers = [_fetcher(tmp_dir, transport), _fetcher(tmp_dir, transport)]
        results: list = []
        errors: list = []
        barrier = threading.Barrier(2)

        def run(fetcher: ArtifactFetcher) -> None:
            barrier.wait()
            try:
                results.append(fetcher.fetch(package))
            except Exception as exc:  # pragma: no cover - surfaced by the assert
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(f,)) for f in fetchers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(results) == 2
        assert len(transport.downloads) == 1
        assert results[0].archive_path == results[1].archive_path
        assert sorted(r.from_cache for r in results) == [False, True]

    def test_fetch_all_reports_earliest_declared_failure(
        self, tmp_dir, make_remote, make_package, transport
    ):
        good = make_remote("good", index=2)
        bad_late = make_package("bad-late", index=3, source=str(tmp_dir / "missing-late.tar.gz"))
        bad_early = make_package("bad-early", index=1, source=str(tmp_dir / "missing-early.tar.gz"))
        fetcher = _fetcher(tmp_dir, transport)
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch_all([bad_late, good, bad_early])
        assert excinfo.value.package == "bad-early"
        # The good archive still landed in the cache for the next run.
        assert ArchiveCache(tmp_dir / "cache").exists(good.content_hash)

    def test_fetch_all_empty(self, tmp_dir, transport):
        assert _fetcher(tmp_dir, transport).fetch_all([]) == {}

    def test_fetch_all_cancelled(self, tmp_dir, make_remote, transport):
        token = CancellationToken()
        token.cancel("user abort")
        with pytest.raises(InstallCancelledError, match="user abort"):
            _fetcher(tmp_dir, transport).fetch_all([make_remote("lib")], cancel=token)
        assert transport.downloads == []
