"""Installer configuration — env-driven.

Centralized config using pydantic-settings for environment variable
support. Reads from .env file and VENVFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class InstallerConfig(BaseSettings):
    """Installer configuration with environment variable overrides.

    All settings can be overridden via VENVFORGE_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export VENVFORGE_LOG_LEVEL=DEBUG
        export VENVFORGE_ENVIRONMENTS_ROOT=/opt/venvforge/envs
        export VENVFORGE_LINK_DIR=/usr/local/bin

    Or via .env file::

        VENVFORGE_CACHE_DIR=/var/cache/venvforge
        VENVFORGE_MAX_PARALLEL_FETCHES=8
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="VENVFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    environments_root: Path = Path(".venvforge/envs")
    link_dir: Path = Path(".venvforge/bin")
    cache_dir: Path = Path(".venvforge/cache")
    staging_dir: Path = Path(".venvforge/staging")
    ledger_path: Path = Path(".venvforge/ledger.db")

    # Fetcher
    fetch_max_attempts: int = 4
    fetch_backoff_base_seconds: float = 0.5
    fetch_timeout_seconds: float = 60.0
    fetch_wait_timeout_seconds: float = 600.0
    max_parallel_fetches: int = 4

    # Provisioner
    provision_timeout_seconds: float = 300.0
    provision_with_pip: bool = True

    # Resolver
    max_parallel_installs: int = 1
    install_timeout_seconds: float = 600.0
    pip_no_deps: bool = True

    # Prerequisite probes (runtime --version)
    prerequisite_timeout_seconds: float = 10.0

    # Verifier
    verify_timeout_seconds: float = 30.0
    version_flag: str = "--version"

    # Environment lock
    lock_timeout_seconds: float = 10.0

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def environment_root_for(self, package_name: str) -> Path:
        """Return the environment directory for a package."""
        return self.environments_root / package_name

    def lock_path_for(self, package_name: str) -> Path:
        """Return the advisory lock file guarding a package's environment.

        The lock lives beside the environment root, never inside it, so
        that provisioning still sees an empty directory.
        """
        return self.environments_root / f"{package_name}.lock"


# Module-level singleton: import as `from venvforge.config import config`
config = InstallerConfig()
