"""bpm: gerenciador de pacotes binários para uma raiz de filesystem."""
from __future__ import annotations

from .actions import FetchAction, InstallAction, OperationAction, RemoveAction
from .catalog import Catalog, CatalogEntry, Database
from .config import BPMConfig, load_config
from .errors import BPMError
from .installed import InstalledPackages
from .lock import root_lock
from .operation import BPMOperation
from .package import BPMPackage, InstallationReason, PackageFileEntry, PackageInfo, read_package
from .plans import ReinstallMethod, plan_cleanup, plan_install, plan_remove, plan_update
from .resolver import DependencyResolver

__version__ = "0.1.0"

__all__ = [
    "BPMConfig",
    "BPMError",
    "BPMOperation",
    "BPMPackage",
    "Catalog",
    "CatalogEntry",
    "Database",
    "DependencyResolver",
    "FetchAction",
    "InstallAction",
    "InstallationReason",
    "InstalledPackages",
    "OperationAction",
    "PackageFileEntry",
    "PackageInfo",
    "ReinstallMethod",
    "RemoveAction",
    "load_config",
    "plan_cleanup",
    "plan_install",
    "plan_remove",
    "plan_update",
    "read_package",
    "root_lock",
]
