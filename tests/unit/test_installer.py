"""Unit tests for Installer helpers — manifest loading, attempt ids, planning."""

from __future__ import annotations

import json
import re

import pytest

from venvforge.core.errors import CycleError, ManifestError
from venvforge.core.installer import Installer, load_manifest, new_attempt_id


class TestLoadManifest:
    def test_valid_file(self, make_manifest, tmp_dir):
        manifest = make_manifest(dependencies={"click": "8.1.7"})
        path = tmp_dir / "respec-ai.json"
        path.write_text(manifest.model_dump_json())
        assert load_manifest(path) == manifest

    def test_missing_file(self, tmp_dir):
        with pytest.raises(ManifestError) as excinfo:
            load_manifest(tmp_dir / "absent.json")
        assert excinfo.value.exit_code == 22
        assert excinfo.value.details["path"].endswith("absent.json")

    def test_invalid_fields(self, tmp_dir):
        path = tmp_dir / "bad.json"
        path.write_text(json.dumps({"name": "x", "version": "1", "source": "s", "sha256": "zz"}))
        with pytest.raises(ManifestError) as excinfo:
            load_manifest(path)
        locs = [err["loc"] for err in excinfo.value.details["errors"]]
        assert "sha256" in locs

    def test_not_json(self, tmp_dir):
        path = tmp_dir / "bad.json"
        path.write_text("name = 'x'")
        with pytest.raises(ManifestError):
            load_manifest(path)


class TestAttemptIds:
    def test_format(self):
        assert re.fullmatch(r"vf-\d{8}-\d{6}-[0-9a-f]{6}", new_attempt_id())

    def test_unique(self):
        assert len({new_attempt_id() for _ in range(50)}) == 50


class TestPlanAndStatus:
    def test_plan_does_not_touch_disk(self, installer, make_manifest, installer_config):
        plan = installer.plan(make_manifest(dependencies={"click": "8.1.7"}))
        assert [p.name for p in plan.order] == ["click", "respec-ai"]
        assert not installer_config.environments_root.exists()
        assert installer.history("respec-ai") == []

    def test_plan_cycle(self, installer, make_manifest):
        manifest = make_manifest(dependencies={"a": {"depends_on": ["a"]}})
        with pytest.raises(CycleError):
            installer.plan(manifest)

    def test_status_of_unknown_package(self, installer):
        status = installer.status("nothing-here")
        assert not status.provisioned
        assert status.record is None
        assert status.last_attempt_id == ""
        assert not status.verified

    def test_default_install_step_is_pip(self, installer_config):
        installer = Installer(installer_config)
        assert type(installer.resolver._install_step).__name__ == "PipInstallStep"

    def test_prerequisite_timeout_wired_from_config(self, installer_config):
        config = installer_config.model_copy(
            update={"prerequisite_timeout_seconds": 2.5, "verify_timeout_seconds": 40.0}
        )
        assert Installer(config).prerequisites._timeout == 2.5
