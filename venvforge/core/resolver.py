"""Dependency Resolver — plans and performs installation in dependency order.

Planning validates the manifest's dependency set (conflicts, constraints,
missing names, cycles) and produces a topological ``InstallPlan``. It runs
before anything touches the filesystem, so an invalid graph installs nothing.

Installation walks the plan: a package already recorded with the same
``(name, hash)`` is skipped, anything else goes through the injected
install-step capability and is recorded as soon as it commits. Packages with
no path between them may install concurrently; a package never starts
before all of its dependencies are installed.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion

from venvforge.core.cancellation import CancellationToken
from venvforge.core.dependency_graph import DependencyGraph
from venvforge.core.errors import (
    DependencyConflictError,
    InstallCancelledError,
    InstallStepError,
)
from venvforge.core.install_record import InstallRecordStore
from venvforge.core.install_steps import InstallStep
from venvforge.models.environment import Environment
from venvforge.models.manifest import DependencySpec, PackageManifest
from venvforge.models.packages import InstallPlan, Package, StagedArtifact
from venvforge.models.record import InstalledPackage
from venvforge.models.results import InstallOutcome, ResolveReport

logger = logging.getLogger(__name__)


def _check_constraint(dep: DependencySpec) -> None:
    if not dep.version_constraint:
        return
    try:
        satisfied = SpecifierSet(dep.version_constraint).contains(dep.version, prereleases=True)
    except InvalidVersion:
        satisfied = False
    if not satisfied:
        raise DependencyConflictError(
            f"{dep.name} {dep.version} does not satisfy {dep.version_constraint!r}",
            package=canonicalize_name(dep.name),
            content_hash=dep.sha256,
            stage="resolve",
            details={"version": dep.version, "constraint": dep.version_constraint},
        )


def packages_from_manifest(manifest: PackageManifest) -> list[Package]:
    """Turn a manifest into de-duplicated packages in declaration order.

    The root depends on every declared dependency. Repeated declarations
    of one name merge when they agree on the hash and conflict otherwise.
    """
    root_name = manifest.canonical_name
    dep_names = [canonicalize_name(d.name) for d in manifest.dependencies]
    merged: dict[str, Package] = {
        root_name: Package(
            name=root_name,
            version=manifest.version,
            source=manifest.source,
            content_hash=manifest.sha256,
            depends_on=tuple(n for n in dict.fromkeys(dep_names) if n != root_name),
            declaration_index=0,
            is_root=True,
        )
    }

    for index, dep in enumerate(manifest.dependencies, start=1):
        _check_constraint(dep)
        name = canonicalize_name(dep.name)
        requires = tuple(canonicalize_name(n) for n in dep.depends_on)
        existing = merged.get(name)
        if existing is None:
            merged[name] = Package(
                name=name,
                version=dep.version,
                source=dep.source,
                content_hash=dep.sha256,
                depends_on=requires,
                declaration_index=index,
            )
            continue
        if existing.content_hash != dep.sha256:
            raise DependencyConflictError(
                f"{name} is requested at two different hashes: "
                f"{existing.content_hash[:12]} ({existing.version}) and "
                f"{dep.sha256[:12]} ({dep.version})",
                package=name,
                stage="resolve",
                details={
                    "hashes": [existing.content_hash, dep.sha256],
                    "versions": [existing.version, dep.version],
                },
            )
        merged[name] = existing.model_copy(
            update={"depends_on": tuple(dict.fromkeys(existing.depends_on + requires))}
        )

    return list(merged.values())


class DependencyResolver:
    """Plans and executes installs through an injected install step.

    Parameters
    ----------
    install_step:
        Capability that installs one staged artifact into an environment.
    max_parallel:
        Upper bound on concurrent install steps for independent packages.
    """

    def __init__(self, install_step: InstallStep, *, max_parallel: int = 1) -> None:
        self._install_step = install_step
        self._max_parallel = max(1, max_parallel)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, manifest: PackageManifest) -> InstallPlan:
        """Validate the dependency set and compute the install order.

        Raises ``DependencyConflictError``, ``MissingDependencyError`` or
        ``CycleError``.
        """
        packages = packages_from_manifest(manifest)
        graph = DependencyGraph(packages)
        order = tuple(graph.get_package(name) for name in graph.order)
        logger.info(
            "Install plan for %s: %s",
            manifest.canonical_name,
            " -> ".join(str(p) for p in order),
        )
        return InstallPlan(root=manifest.canonical_name, order=order, edges=tuple(graph.edges))

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def install(
        self,
        plan: InstallPlan,
        staged: dict[str, StagedArtifact],
        environment: Environment,
        record: InstallRecordStore,
        *,
        cancel: CancellationToken | None = None,
    ) -> ResolveReport:
        """Install every package of ``plan`` into ``environment``.

        On a failed step, no further steps start; steps already running are
        allowed to finish and are recorded. ``InstallStepError`` then names
        the failed package and everything present in the environment.
        """
        unstaged = [
            p for p in plan.order
            if p.name not in staged and not record.is_satisfied(p.name, p.content_hash)
        ]
        if unstaged:
            raise InstallStepError(
                f"{unstaged[0]} was not fetched before installation",
                installed=[],
                package=unstaged[0].name,
                content_hash=unstaged[0].content_hash,
                stage="resolve",
                details={"unstaged": [p.name for p in unstaged]},
            )

        dependencies = {p.name: plan.dependencies_of(p.name) for p in plan.order}
        pending: list[Package] = list(plan.order)
        present: set[str] = set()
        present_order: list[str] = []
        installed: list[str] = []
        skipped: list[str] = []
        in_flight: dict[Future[InstallOutcome], Package] = {}
        failure: tuple[Package, str] | None = None

        with ThreadPoolExecutor(
            max_workers=self._max_parallel, thread_name_prefix="venvforge-install"
        ) as pool:
            while pending or in_flight:
                stopped = failure is not None or (cancel is not None and cancel.cancelled)
                if not stopped:
                    progressed = True
                    while progressed and len(in_flight) < self._max_parallel:
                        progressed = False
                        for package in pending:
                            if not all(d in present for d in dependencies[package.name]):
                                continue
                            pending.remove(package)
                            progressed = True
                            if record.is_satisfied(package.name, package.content_hash):
                                logger.info("%s already installed; skipping", package)
                                skipped.append(package.name)
                                present.add(package.name)
                                present_order.append(package.name)
                            else:
                                future = pool.submit(
                                    self._run_step, staged[package.name], environment
                                )
                                in_flight[future] = package
                            break

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    package = in_flight.pop(future)
                    outcome = future.result()
                    if not outcome.ok:
                        logger.error("Install of %s failed: %s", package, outcome.detail)
                        if failure is None:
                            failure = (package, outcome.detail)
                        continue
                    record.record_package(
                        InstalledPackage(
                            name=package.name,
                            version=package.version,
                            content_hash=package.content_hash,
                            installed_path=outcome.installed_path or environment.root,
                        )
                    )
                    logger.info("Installed %s", package)
                    installed.append(package.name)
                    present.add(package.name)
                    present_order.append(package.name)

        if failure is not None:
            package, detail = failure
            raise InstallStepError(
                f"Installing {package} failed: {detail}",
                installed=present_order,
                package=package.name,
                content_hash=package.content_hash,
                stage="resolve",
                details={"failed": package.name, "reason": detail},
            )
        if pending:
            reason = cancel.reason if cancel is not None else "stopped"
            raise InstallCancelledError(
                f"Installation cancelled: {reason}",
                installed=present_order,
                package=plan.root,
                stage="resolve",
                details={"remaining": [p.name for p in pending]},
            )
        return ResolveReport(installed=installed, skipped=skipped)

    def _run_step(self, artifact: StagedArtifact, environment: Environment) -> InstallOutcome:
        try:
            return self._install_step(artifact, environment)
        except Exception as exc:
            logger.exception("Install step raised for %s", artifact.package)
            return InstallOutcome(ok=False, detail=f"{type(exc).__name__}: {exc}")
