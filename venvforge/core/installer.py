"""Installer — the central coordinator for install attempts.

The Installer wires together the PrerequisiteChecker, DependencyResolver,
EnvironmentProvisioner, ArtifactFetcher, EntryPointLinker,
InstallationVerifier, the per-environment InstallRecordStore and the shared
InstallLedger into one stage-by-stage install flow:

    pending -> provisioned -> fetched -> resolved -> linked -> verified

Any InstallError moves the attempt to failed(kind) and is re-raised
unchanged. Nothing is rolled back: the next run resumes from the cache and
the install record.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from filelock import FileLock, Timeout
from pydantic import ValidationError

from venvforge.config import InstallerConfig
from venvforge.core.artifact_cache import ArchiveCache
from venvforge.core.cancellation import CancellationToken
from venvforge.core.errors import (
    EnvironmentLockedError,
    InstallCancelledError,
    InstallError,
    ManifestError,
    VerificationError,
)
from venvforge.core.fetcher import ArtifactFetcher
from venvforge.core.hasher import compute_plan_hash
from venvforge.core.install_ledger import InstallLedger
from venvforge.core.install_record import InstallRecordStore
from venvforge.core.install_steps import InstallStep, PipInstallStep
from venvforge.core.linker import EntryPointLinker
from venvforge.core.prerequisites import PrerequisiteChecker
from venvforge.core.provisioner import EnvironmentProvisioner
from venvforge.core.resolver import DependencyResolver
from venvforge.core.state_machine import InstallStateMachine
from venvforge.core.transport import DefaultTransport, Transport
from venvforge.core.verifier import InstallationVerifier
from venvforge.models.environment import Environment
from venvforge.models.ledger import LedgerEntry
from venvforge.models.manifest import PackageManifest
from venvforge.models.packages import InstallPlan
from venvforge.models.results import EnvironmentStatus, InstallResult
from venvforge.models.states import FailureKind, InstallState

logger = logging.getLogger(__name__)


def load_manifest(path: Path) -> PackageManifest:
    """Read and validate a JSON manifest, raising ``ManifestError``."""
    try:
        return PackageManifest.from_file(path)
    except OSError as exc:
        raise ManifestError(
            f"Cannot read manifest {path}: {exc.strerror or exc}",
            stage="manifest",
            details={"path": str(path)},
        ) from exc
    except ValidationError as exc:
        raise ManifestError(
            f"Invalid manifest {path}: {exc.error_count()} error(s)",
            stage="manifest",
            details={
                "path": str(path),
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in exc.errors()
                ],
            },
        ) from exc


def new_attempt_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"vf-{ts}-{uuid.uuid4().hex[:6]}"


class Installer:
    """Installs manifests into isolated environments.

    Parameters
    ----------
    config:
        Installer configuration. Uses ``InstallerConfig()`` if not provided.
    install_step:
        Capability that installs one staged artifact. Defaults to
        ``PipInstallStep`` configured from ``config``.
    transport:
        Archive transport for the fetcher. Defaults to HTTP(S) + local files.
    sleep:
        Backoff sleep used by the fetcher; injected by tests.
    """

    def __init__(
        self,
        config: InstallerConfig | None = None,
        *,
        install_step: InstallStep | None = None,
        transport: Transport | None = None,
        provisioner: EnvironmentProvisioner | None = None,
        prerequisites: PrerequisiteChecker | None = None,
        linker: EntryPointLinker | None = None,
        verifier: InstallationVerifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or InstallerConfig()
        cfg = self.config

        # Shared subsystems
        self.ledger = InstallLedger(cfg.ledger_path)
        self.state_machine = InstallStateMachine(self.ledger)
        self.cache = ArchiveCache(cfg.cache_dir)
        self.fetcher = ArtifactFetcher(
            self.cache,
            cfg.staging_dir,
            transport=transport or DefaultTransport(timeout_seconds=cfg.fetch_timeout_seconds),
            max_attempts=cfg.fetch_max_attempts,
            backoff_base_seconds=cfg.fetch_backoff_base_seconds,
            wait_timeout_seconds=cfg.fetch_wait_timeout_seconds,
            max_parallel=cfg.max_parallel_fetches,
            sleep=sleep,
        )
        self.resolver = DependencyResolver(
            install_step
            or PipInstallStep(
                no_deps=cfg.pip_no_deps,
                timeout_seconds=cfg.install_timeout_seconds,
                extra_args=["--verbose"] if cfg.debug else (),
            ),
            max_parallel=cfg.max_parallel_installs,
        )
        self.provisioner = provisioner or EnvironmentProvisioner(
            with_pip=cfg.provision_with_pip,
            timeout_seconds=cfg.provision_timeout_seconds,
        )
        self.prerequisites = prerequisites or PrerequisiteChecker(
            timeout_seconds=cfg.prerequisite_timeout_seconds
        )
        self.linker = linker or EntryPointLinker(cfg.link_dir)
        self.verifier = verifier or InstallationVerifier(
            version_flag=cfg.version_flag,
            timeout_seconds=cfg.verify_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def plan(self, manifest: PackageManifest) -> InstallPlan:
        """Validate the manifest's dependency graph without installing."""
        return self.resolver.plan(manifest)

    def install(
        self,
        manifest: PackageManifest,
        *,
        cancel: CancellationToken | None = None,
    ) -> InstallResult:
        """Run one install attempt for ``manifest`` to ``verified``.

        Raises the InstallError of the first failing stage after recording
        the attempt as failed(kind).
        """
        name = manifest.canonical_name
        attempt_id = new_attempt_id()
        self.state_machine.start(
            attempt_id,
            name,
            manifest.version,
            details={"source": manifest.source, "sha256": manifest.sha256},
        )
        logger.info("Attempt %s: installing %s@%s", attempt_id, name, manifest.version)

        try:
            with self._environment_lock(name):
                result = self._run(attempt_id, manifest, cancel)
        except InstallError as exc:
            logger.error("Attempt %s failed (%s): %s", attempt_id, exc.failure_kind.value, exc)
            self.state_machine.fail(attempt_id, exc.failure_kind, details=exc.context())
            raise
        except Exception as exc:
            logger.exception("Attempt %s failed unexpectedly", attempt_id)
            self.state_machine.fail(
                attempt_id,
                FailureKind.INTERNAL,
                details={"error": type(exc).__name__, "message": str(exc)},
            )
            raise

        logger.info("Attempt %s: %s@%s verified", attempt_id, name, manifest.version)
        return result

    def _run(
        self,
        attempt_id: str,
        manifest: PackageManifest,
        cancel: CancellationToken | None,
    ) -> InstallResult:
        sm = self.state_machine
        name = manifest.canonical_name

        # pending: declarative checks and graph validation, before any file is written
        runtime = self.prerequisites.check(manifest.runtime, manifest.services, package=name)
        plan = self.resolver.plan(manifest)
        plan_hash = compute_plan_hash(
            [
                {"name": p.name, "version": p.version, "sha256": p.content_hash}
                for p in plan.order
            ]
        )

        # pending -> provisioned
        self._checkpoint(cancel, name, "provision")
        environment = self.provisioner.provision(
            self.config.environment_root_for(name), name, str(runtime)
        )
        sm.advance(
            attempt_id,
            details={"root": str(environment.root), "plan_hash": plan_hash},
        )
        record = InstallRecordStore(environment.record_path, environment.root)

        # provisioned -> fetched
        self._checkpoint(cancel, name, "fetch")
        needed = [p for p in plan.order if not record.is_satisfied(p.name, p.content_hash)]
        staged = self.fetcher.fetch_all(needed, cancel=cancel)
        fetched = [p.name for p in needed if not staged[p.name].from_cache]
        sm.advance(
            attempt_id,
            details={"fetched": fetched, "cached": [p.name for p in needed if p.name not in fetched]},
        )

        # fetched -> resolved
        self._checkpoint(cancel, name, "resolve")
        if needed:
            # Links stay unverified until this attempt's verifier passes.
            record.set_links_verified(False)
        report = self.resolver.install(plan, staged, environment, record, cancel=cancel)
        sm.advance(
            attempt_id,
            details={"installed": report.installed, "skipped": report.skipped},
        )

        # resolved -> linked
        self._checkpoint(cancel, name, "link")
        links = self.linker.link(environment, manifest.entry_points)
        for link in links:
            record.record_link(link)
        linked_names = [link.name for link in links]
        stale = [n for n in record.snapshot().links if n not in linked_names]
        if stale:
            self.linker.unlink(environment, stale)
            record.remove_links(stale)
        sm.advance(
            attempt_id,
            details={
                "links": [str(link.link_path) for link in links],
                "removed_links": stale,
            },
        )

        # linked -> verified
        self._checkpoint(cancel, name, "verify")
        try:
            verification = self.verifier.verify(
                links[0].link_path, manifest.version, environment, package=name
            )
        except VerificationError:
            record.set_links_verified(False)
            raise
        record.set_links_verified(True, linked_names)
        sm.advance(
            attempt_id,
            details={"command": verification.command, "exit_code": verification.exit_code},
        )

        return InstallResult(
            attempt_id=attempt_id,
            package=name,
            version=manifest.version,
            state=InstallState.VERIFIED,
            environment_root=environment.root,
            fetched=fetched,
            installed=report.installed,
            skipped=report.skipped,
            links=[link.model_copy(update={"verified": True}) for link in links],
            verification=verification,
        )

    # ------------------------------------------------------------------
    # Status, uninstall, history
    # ------------------------------------------------------------------

    def status(self, name: str) -> EnvironmentStatus:
        """Report the environment, its install record and the latest attempt."""
        root = self.config.environment_root_for(name).absolute()
        environment = self.provisioner.load(root)
        record = None
        if environment is not None and environment.record_path.is_file():
            record = InstallRecordStore(environment.record_path, environment.root).snapshot()

        last: LedgerEntry | None = None
        attempt_ids = self.ledger.get_attempt_ids(name)
        if attempt_ids:
            last = self.ledger.get_latest(attempt_ids[0])

        return EnvironmentStatus(
            package=name,
            environment_root=root,
            provisioned=environment is not None,
            interpreter=environment.interpreter if environment is not None else "",
            record=record,
            last_attempt_id=last.attempt_id if last else "",
            last_state=last.to_state if last else "",
            last_failure_kind=last.failure_kind if last else "",
        )

    def uninstall(self, name: str) -> list[Path]:
        """Remove this environment's links and tear the environment down.

        Returns the removed link paths. Uninstalling a package that has no
        environment is a no-op.
        """
        root = self.config.environment_root_for(name).absolute()
        with self._environment_lock(name):
            environment = self.provisioner.load(root)
            if environment is None:
                logger.info("No environment for %s at %s; nothing to uninstall", name, root)
                return []

            link_names: list[str] = []
            if environment.record_path.is_file():
                snapshot = InstallRecordStore(environment.record_path, environment.root).snapshot()
                link_names = list(snapshot.links)
            removed = self.linker.unlink(environment, link_names)
            self.provisioner.teardown(environment)

            previous = self.status(name).last_state or "none"
            self.ledger.append(
                LedgerEntry(
                    attempt_id=new_attempt_id(),
                    package=name,
                    state_transition=f"{previous}->uninstalled",
                    details={
                        "root": str(root),
                        "removed_links": [str(p) for p in removed],
                    },
                )
            )
        logger.info("Uninstalled %s", name)
        return removed

    def history(self, name: str) -> list[LedgerEntry]:
        """Every ledger entry for ``name``, oldest first."""
        return self.ledger.get_package_entries(name)

    def verify_history(self, name: str) -> list[str]:
        """Verify the hash chain of every attempt for ``name``.

        Returns the verified attempt ids; raises ``LedgerIntegrityError``
        on the first broken chain.
        """
        attempt_ids = self.ledger.get_attempt_ids(name)
        for attempt_id in attempt_ids:
            self.ledger.verify_chain(attempt_id)
        return attempt_ids

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _environment_lock(self, name: str) -> _EnvironmentLock:
        return _EnvironmentLock(
            self.config.lock_path_for(name), name, self.config.lock_timeout_seconds
        )

    @staticmethod
    def _checkpoint(cancel: CancellationToken | None, name: str, stage: str) -> None:
        if cancel is not None and cancel.cancelled:
            raise InstallCancelledError(
                f"Installation of {name} cancelled before {stage}: {cancel.reason}",
                package=name,
                stage=stage,
            )


class _EnvironmentLock:
    """Advisory, cross-process lock on one package's environment."""

    def __init__(self, path: Path, package: str, timeout_seconds: float) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(path), timeout=timeout_seconds)
        self._package = package
        self._timeout = timeout_seconds

    def __enter__(self) -> _EnvironmentLock:
        try:
            self._lock.acquire()
        except Timeout as exc:
            raise EnvironmentLockedError(
                f"Environment for {self._package} is locked by another installer "
                f"(waited {self._timeout}s)",
                package=self._package,
                stage="lock",
                details={"lock": self._lock.lock_file},
            ) from exc
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()
