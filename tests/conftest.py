"""Shared test fixtures for venvforge."""

from __future__ import annotations

import gzip
import hashlib
import io
import sys
import tarfile
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from venvforge.config import InstallerConfig
from venvforge.core.artifact_cache import ArchiveCache
from venvforge.core.installer import Installer
from venvforge.core.install_ledger import InstallLedger
from venvforge.core.install_record import InstallRecordStore
from venvforge.core.state_machine import InstallStateMachine
from venvforge.core.transport import LocalFileTransport
from venvforge.models.environment import Environment
from venvforge.models.manifest import PackageManifest
from venvforge.models.packages import Package, StagedArtifact
from venvforge.models.results import InstallOutcome


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def installer_config(tmp_dir: Path) -> InstallerConfig:
    """Provide an InstallerConfig whose every path lives under tmp_dir."""
    return InstallerConfig(
        _env_file=None,
        environments_root=tmp_dir / "envs",
        link_dir=tmp_dir / "links",
        cache_dir=tmp_dir / "cache",
        staging_dir=tmp_dir / "staging",
        ledger_path=tmp_dir / "ledger.db",
        provision_with_pip=False,
        fetch_backoff_base_seconds=0.0,
        lock_timeout_seconds=1.0,
    )


@pytest.fixture
def ledger(tmp_dir: Path) -> InstallLedger:
    """Provide a fresh InstallLedger backed by a temp SQLite database."""
    return InstallLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def state_machine(ledger: InstallLedger) -> InstallStateMachine:
    """Provide an InstallStateMachine wired to the test ledger."""
    return InstallStateMachine(ledger)


@pytest.fixture
def archive_cache(tmp_dir: Path) -> ArchiveCache:
    """Provide a fresh ArchiveCache in a temp directory."""
    return ArchiveCache(tmp_dir / "cache")


@pytest.fixture
def environment(tmp_dir: Path) -> Environment:
    """An Environment over a plain directory (no interpreter inside)."""
    root = tmp_dir / "env"
    root.mkdir()
    return Environment(root=root, package="app", interpreter=sys.executable)


@pytest.fixture
def record_store(environment: Environment) -> InstallRecordStore:
    return InstallRecordStore(environment.record_path, environment.root)


@pytest.fixture
def attempt_id() -> str:
    """Provide a deterministic test attempt ID."""
    return "vf-test-attempt-001"


# ---------------------------------------------------------------------------
# Archives and manifests
# ---------------------------------------------------------------------------


def sha256_of(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


@pytest.fixture
def make_archive(tmp_dir: Path) -> Callable[..., tuple[Path, str]]:
    """Factory fixture: write a ``<name>-<version>.tar.gz`` source archive.

    Returns (archive path, sha256 hex digest).
    """
    archive_dir = tmp_dir / "archives"
    archive_dir.mkdir(exist_ok=True)

    def _factory(name: str, version: str = "1.0.0", payload: str = "") -> tuple[Path, str]:
        path = archive_dir / f"{name}-{version}.tar.gz"
        data = (payload or f"Name: {name}\nVersion: {version}\n").encode()
        # mtime=0 keeps the digest stable when the same archive is rebuilt.
        with (
            open(path, "wb") as raw,
            gzip.GzipFile(fileobj=raw, mode="wb", mtime=0) as gz,
            tarfile.open(fileobj=gz, mode="w") as tar,
        ):
            info = tarfile.TarInfo(f"{name}-{version}/PKG-INFO")
            info.size = len(data)
            info.mtime = 0
            tar.addfile(info, io.BytesIO(data))
        return path, sha256_of(path)

    return _factory


@pytest.fixture
def make_manifest(
    make_archive: Callable[..., tuple[Path, str]],
) -> Callable[..., PackageManifest]:
    """Factory fixture: build a PackageManifest backed by local archives.

    ``dependencies`` maps a dependency name to its version, or to a dict of
    extra DependencySpec fields (``version``, ``depends_on``, ...). A list
    is taken as raw DependencySpec dicts.
    """

    def _factory(
        name: str = "respec-ai",
        version: str = "0.6.3",
        dependencies: dict[str, Any] | list[dict[str, Any]] | None = None,
        **overrides: Any,
    ) -> PackageManifest:
        path, digest = make_archive(name, version)
        deps: list[dict[str, Any]] = []
        if isinstance(dependencies, list):
            deps, dependencies = dependencies, None
        for dep_name, spec in (dependencies or {}).items():
            fields = {"version": spec} if isinstance(spec, str) else dict(spec)
            fields.setdefault("version", "1.0.0")
            dep_path, dep_digest = make_archive(dep_name, fields["version"])
            fields.setdefault("source", dep_path.as_uri())
            fields.setdefault("sha256", dep_digest)
            deps.append({"name": dep_name, **fields})
        defaults: dict[str, Any] = {
            "name": name,
            "version": version,
            "source": path.as_uri(),
            "sha256": digest,
            "dependencies": deps,
            "runtime": {"name": sys.executable},
        }
        defaults.update(overrides)
        return PackageManifest.model_validate(defaults)

    return _factory


@pytest.fixture
def make_package() -> Callable[..., Package]:
    """Factory fixture: build a Package with sensible defaults."""

    def _factory(
        name: str,
        depends_on: tuple[str, ...] = (),
        index: int = 0,
        **overrides: Any,
    ) -> Package:
        defaults: dict[str, Any] = {
            "name": name,
            "version": "1.0.0",
            "source": f"file:///nonexistent/{name}-1.0.0.tar.gz",
            "content_hash": hashlib.sha256(name.encode()).hexdigest(),
            "depends_on": depends_on,
            "declaration_index": index,
        }
        defaults.update(overrides)
        return Package(**defaults)

    return _factory


@pytest.fixture
def make_staged(tmp_dir: Path) -> Callable[[Package], StagedArtifact]:
    """Factory fixture: a StagedArtifact over an empty staging directory."""

    def _factory(package: Package) -> StagedArtifact:
        staging = tmp_dir / "staged" / package.content_hash
        staging.mkdir(parents=True, exist_ok=True)
        return StagedArtifact(
            package=package,
            archive_path=staging / "archive",
            staging_path=staging,
            install_target=staging,
        )

    return _factory


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingInstallStep:
    """Install step that writes ``bin/<name>`` reporting ``<name> <version>``.

    The generated executable exits 1 while ``broken_flag`` exists.
    """

    def __init__(self, broken_flag: Path) -> None:
        self.broken_flag = broken_flag
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.delay = 0.0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, artifact: StagedArtifact, environment: Environment) -> InstallOutcome:
        name = artifact.package.name
        with self._lock:
            self.calls.append(name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if name in self.fail_on:
                return InstallOutcome(ok=False, detail=f"simulated failure for {name}")
            environment.bin_dir.mkdir(parents=True, exist_ok=True)
            script = environment.bin_dir / name
            script.write_text(
                "#!/bin/sh\n"
                f'if [ -f "{self.broken_flag}" ]; then echo broken >&2; exit 1; fi\n'
                f'echo "{name} {artifact.package.version}"\n'
            )
            script.chmod(0o755)
            return InstallOutcome(ok=True, installed_path=script)
        finally:
            with self._lock:
                self.active -= 1


class CountingTransport:
    """Local-file transport that records every download it performs."""

    def __init__(self, delay: float = 0.0) -> None:
        self.downloads: list[str] = []
        self.delay = delay
        self._inner = LocalFileTransport()
        self._lock = threading.Lock()

    def download(self, source: str, destination: Path) -> None:
        with self._lock:
            self.downloads.append(source)
        if self.delay:
            time.sleep(self.delay)
        self._inner.download(source, destination)


@pytest.fixture
def install_step(tmp_dir: Path) -> RecordingInstallStep:
    return RecordingInstallStep(tmp_dir / "broken")


@pytest.fixture
def transport() -> CountingTransport:
    return CountingTransport()


@pytest.fixture
def installer(
    installer_config: InstallerConfig,
    install_step: RecordingInstallStep,
    transport: CountingTransport,
) -> Installer:
    """Provide an Installer with a recording install step and local transport."""
    return Installer(
        installer_config,
        install_step=install_step,
        transport=transport,
        sleep=lambda seconds: None,
    )
