"""Entry-Point Linker — exposes environment executables in a shared directory.

A link is a symlink named after the executable, placed in the shared link
directory and pointing into one environment. Foreign links are never
overwritten; re-linking the same environment is a no-op, and a link into
the same environment whose entry point moved is retargeted.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from venvforge.core.errors import EntryPointMissingError, LinkConflictError
from venvforge.models.environment import Environment
from venvforge.models.record import LinkRecord

logger = logging.getLogger(__name__)


def _destination(link_path: Path) -> Path | None:
    """The normalized destination of a symlink, or None for anything else."""
    if not link_path.is_symlink():
        return None
    destination = Path(os.readlink(link_path))
    if not destination.is_absolute():
        destination = link_path.parent / destination
    return Path(os.path.normpath(destination))


def _points_into(link_path: Path, root: Path) -> bool:
    """True when ``link_path`` is a symlink into the ``root`` tree."""
    destination = _destination(link_path)
    if destination is None:
        return False
    root_str = os.path.normpath(root)
    return os.path.commonpath([root_str, str(destination)]) == root_str


class EntryPointLinker:
    """Creates and removes entry-point links for environments.

    Parameters
    ----------
    link_dir:
        The shared, discoverable directory (normally on PATH).
    """

    def __init__(self, link_dir: Path) -> None:
        self._link_dir = Path(link_dir).absolute()

    @property
    def link_dir(self) -> Path:
        return self._link_dir

    def link(self, environment: Environment, entry_points: list[str]) -> list[LinkRecord]:
        """Link every entry point, or none of them.

        All targets and link slots are checked before any link is created,
        so a conflict on the second entry point leaves the first untouched.
        """
        planned: list[tuple[str, Path, Path]] = []
        for entry in entry_points:
            target = environment.root / entry
            if not target.is_file():
                raise EntryPointMissingError(
                    f"Entry point {entry!r} not found in {environment.root}",
                    package=environment.package,
                    stage="link",
                    details={"target": str(target)},
                )
            name = target.name
            link_path = self._link_dir / name
            if os.path.lexists(link_path) and not _points_into(link_path, environment.root):
                current = os.readlink(link_path) if link_path.is_symlink() else "(regular file)"
                raise LinkConflictError(
                    f"{link_path} already exists and points at {current}, "
                    f"outside {environment.root}",
                    package=environment.package,
                    stage="link",
                    details={"link_path": str(link_path), "existing": str(current)},
                )
            planned.append((name, link_path, target))

        self._link_dir.mkdir(parents=True, exist_ok=True)
        records: list[LinkRecord] = []
        for name, link_path, target in planned:
            current = _destination(link_path)
            created = current != Path(os.path.normpath(target))
            if current is None:
                link_path.symlink_to(target)
                logger.info("Linked %s -> %s", link_path, target)
            elif created:
                # Same environment, moved entry point.
                link_path.unlink()
                link_path.symlink_to(target)
                logger.info("Relinked %s -> %s (was %s)", link_path, target, current)
            else:
                logger.info("Link %s already points at %s", link_path, target)
            records.append(
                LinkRecord(name=name, link_path=link_path, target=target, created=created)
            )
        return records

    def unlink(self, environment: Environment, names: list[str]) -> list[Path]:
        """Remove links by name, but only those pointing into ``environment``."""
        removed: list[Path] = []
        for name in names:
            link_path = self._link_dir / name
            if not link_path.is_symlink():
                continue
            if not _points_into(link_path, environment.root):
                logger.warning("Leaving %s: it points outside %s", link_path, environment.root)
                continue
            link_path.unlink()
            removed.append(link_path)
            logger.info("Removed link %s", link_path)
        return removed
