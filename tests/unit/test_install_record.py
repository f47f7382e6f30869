"""Tests for the InstallRecordStore — one version per name, link verification."""

from __future__ import annotations

from pathlib import Path

from venvforge.core.install_record import InstallRecordStore
from venvforge.models.environment import Environment
from venvforge.models.record import InstalledPackage, LinkRecord

HASH_A = "a" * 64
HASH_B = "b" * 64


def _pkg(name: str, sha: str, version: str = "1.0") -> InstalledPackage:
    return InstalledPackage(name=name, version=version, content_hash=sha, installed_path=Path("/env/lib"))


class TestPackages:
    def test_record_and_get(self, record_store: InstallRecordStore):
        record_store.record_package(_pkg("lib", HASH_A))
        stored = record_store.get_package("lib")
        assert stored is not None
        assert stored.content_hash == HASH_A
        assert record_store.is_satisfied("lib", HASH_A)
        assert not record_store.is_satisfied("lib", HASH_B)

    def test_one_version_per_name(self, record_store: InstallRecordStore):
        record_store.record_package(_pkg("lib", HASH_A, "1.0"))
        record_store.record_package(_pkg("lib", HASH_B, "2.0"))
        snapshot = record_store.snapshot()
        assert list(snapshot.packages) == ["lib"]
        assert snapshot.packages["lib"].version == "2.0"

    def test_persists_across_instances(self, record_store: InstallRecordStore, environment: Environment):
        record_store.record_package(_pkg("lib", HASH_A))
        reopened = InstallRecordStore(environment.record_path, environment.root)
        assert reopened.is_satisfied("lib", HASH_A)

    def test_missing_package(self, record_store: InstallRecordStore):
        assert record_store.get_package("nope") is None


class TestLinks:
    def _link(self, target: str = "/env/bin/app") -> LinkRecord:
        return LinkRecord(name="app", link_path=Path("/links/app"), target=Path(target))

    def test_links_start_unverified(self, record_store: InstallRecordStore):
        record_store.record_link(self._link())
        snapshot = record_store.snapshot()
        assert snapshot.links["app"].verified is False
        assert not snapshot.all_links_verified

    def test_set_verified(self, record_store: InstallRecordStore):
        record_store.record_link(self._link())
        record_store.set_links_verified(True)
        assert record_store.snapshot().all_links_verified

    def test_identical_relink_keeps_verification(self, record_store: InstallRecordStore):
        record_store.record_link(self._link())
        record_store.set_links_verified(True)
        record_store.record_link(self._link())
        assert record_store.snapshot().links["app"].verified is True

    def test_retargeted_link_is_unverified(self, record_store: InstallRecordStore):
        record_store.record_link(self._link())
        record_store.set_links_verified(True)
        record_store.record_link(self._link("/other/bin/app"))
        link = record_store.snapshot().links["app"]
        assert link.verified is False
        assert link.target == Path("/other/bin/app")

    def test_set_verified_by_name(self, record_store: InstallRecordStore):
        record_store.record_link(self._link())
        record_store.record_link(
            LinkRecord(name="app-old", link_path=Path("/links/app-old"), target=Path("/env/bin/app-old"))
        )
        record_store.set_links_verified(True, ["app"])
        links = record_store.snapshot().links
        assert links["app"].verified is True
        assert links["app-old"].verified is False

    def test_remove_links(self, record_store: InstallRecordStore):
        record_store.record_link(self._link())
        record_store.record_link(
            LinkRecord(name="app-old", link_path=Path("/links/app-old"), target=Path("/env/bin/app-old"))
        )
        record_store.remove_links(["app-old"])
        assert list(record_store.snapshot().links) == ["app"]
