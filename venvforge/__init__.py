"""venvforge: isolated, verified, re-runnable package installation.

Installs a versioned application package into its own virtual
environment, materializes its declared dependencies from a
content-addressed cache in dependency order, links its entry point into a
shared directory and verifies it with ``--version``. Every attempt is
journaled in a hash-chained Install Ledger.
"""

__version__ = "0.1.0"
__description__ = "Isolated package installer with a hash-chained install ledger"

from venvforge.core.installer import Installer, load_manifest
from venvforge.cli.app import app as cli

__all__ = ["Installer", "load_manifest", "cli", "__version__"]
