"""Ações de uma operação: Install, Fetch e Remove (união fechada)."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .catalog import CatalogEntry
from .package import BPMPackage, InstallationReason, PackageInfo


@dataclass(frozen=True)
class InstallAction:
    archive: Path
    package: BPMPackage
    reason: InstallationReason = InstallationReason.MANUAL
    is_dependency: bool = False
    split_package: Optional[str] = None

    @property
    def info(self) -> PackageInfo:
        if self.split_package:
            sp = self.package.info.split_package(self.split_package)
            if sp is not None:
                return sp
        return self.package.info


@dataclass(frozen=True)
class FetchAction:
    entry: CatalogEntry
    reason: InstallationReason = InstallationReason.DEPENDENCY
    is_dependency: bool = True

    @property
    def info(self) -> PackageInfo:
        return self.entry.info


@dataclass(frozen=True)
class RemoveAction:
    package: BPMPackage

    @property
    def info(self) -> PackageInfo:
        return self.package.info


OperationAction = Union[InstallAction, FetchAction, RemoveAction]


def action_kind(action: OperationAction) -> str:
    if isinstance(action, InstallAction):
        return "install"
    elif isinstance(action, FetchAction):
        return "fetch"
    elif isinstance(action, RemoveAction):
        return "remove"
    raise TypeError(f"Ação desconhecida: {action!r}")


def action_package_info(action: OperationAction) -> PackageInfo:
    if isinstance(action, (InstallAction, FetchAction, RemoveAction)):
        return action.info
    raise TypeError(f"Ação desconhecida: {action!r}")


def action_name(action: OperationAction) -> str:
    return action_package_info(action).name
