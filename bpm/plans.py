"""
Pontos de entrada de planejamento: install, remove, cleanup e update.

Cada função monta um BPMOperation sem tocar no filesystem da raiz; erros de
planejamento (pacote ausente, dependência ausente, conflito, dependentes)
são levantados aqui, antes de qualquer alteração.
"""
from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .actions import FetchAction, InstallAction, RemoveAction
from .catalog import Catalog, CatalogEntry
from .config import BPMConfig, BPM_DATABASES_DIR
from .errors import (
    DependencyNotFoundError,
    PackageConflictError,
    PackageNotFoundError,
    PackageRemovalDependencyError,
)
from .installed import InstalledPackages
from .operation import BPMOperation
from .package import InstallationReason, PackageInfo, read_package
from .version import compare_full_versions

log = logging.getLogger(__name__)


class ReinstallMethod(enum.Enum):
    NONE = "none"
    SPECIFIED = "specified"
    ALL = "all"


def _dedupe(names: Iterable[str]) -> List[str]:
    out: List[str] = []
    for n in names:
        n = n.strip()
        if n and n not in out:
            out.append(n)
    return out


def _reason_for(op: BPMOperation, name: str) -> InstallationReason:
    if op.forced_reason is not None:
        return op.forced_reason
    if op.installed.is_installed(name):
        return op.installed.installation_reason(name)
    return InstallationReason.MANUAL


def _same_version_installed(installed: InstalledPackages, info: PackageInfo) -> bool:
    current = installed.info(info.name)
    return current is not None and current.full_version == info.full_version


def _finish_install_plan(
    op: BPMOperation,
    reinstall_dependencies: bool,
    include_optional: bool,
    force: bool,
    verbose: bool,
) -> None:
    op.resolve_dependencies(reinstall_dependencies, include_optional, verbose)
    if op.unresolved_depends:
        err = DependencyNotFoundError(op.unresolved_depends)
        if not force:
            raise err
        log.warning("%s", err)

    op.replace_obsolete_packages()

    conflicts = op.check_for_conflicts()
    if conflicts:
        err = PackageConflictError(conflicts)
        if not force:
            raise err
        log.warning("%s", err)


def plan_install(
    root: Path,
    catalog: Catalog,
    names: Iterable[str],
    reason: Optional[InstallationReason] = None,
    reinstall: ReinstallMethod = ReinstallMethod.NONE,
    include_optional: bool = False,
    force: bool = False,
    config: Optional[BPMConfig] = None,
    verbose: bool = False,
    installed: Optional[InstalledPackages] = None,
) -> BPMOperation:
    """
    names: caminhos de arquivos .bpm ou nomes do catálogo ('base/nome' e nomes virtuais aceitos).
    Pacotes já instalados na mesma versão são pulados, exceto com reinstall.
    """
    op = BPMOperation(root, catalog, installed=installed, config=config, forced_reason=reason)
    not_found: List[str] = []

    for name in _dedupe(names):
        path = Path(name)
        if path.is_file():
            pkg = read_package(path)
            if pkg.info.is_split_package:
                for sp in pkg.info.split_packages:
                    if reinstall == ReinstallMethod.NONE and _same_version_installed(op.installed, sp):
                        log.info("Já instalado (mesma versão): %s %s", sp.name, sp.full_version)
                        continue
                    op.append_action(InstallAction(path, pkg, _reason_for(op, sp.name), False, sp.name))
                continue
            if reinstall == ReinstallMethod.NONE and _same_version_installed(op.installed, pkg.info):
                log.info("Já instalado (mesma versão): %s %s", pkg.info.name, pkg.info.full_version)
                continue
            op.append_action(InstallAction(path, pkg, _reason_for(op, pkg.info.name), False))
            continue

        entry = _lookup_install_target(op, name)
        if entry is None:
            not_found.append(name)
            continue
        if reinstall == ReinstallMethod.NONE and _same_version_installed(op.installed, entry.info):
            log.info("Já instalado (mesma versão): %s %s", entry.name, entry.info.full_version)
            continue
        if op.contains_package(entry.name):
            continue
        op.append_action(FetchAction(entry, _reason_for(op, entry.name), False))

    if not_found:
        raise PackageNotFoundError(not_found)

    _finish_install_plan(op, reinstall == ReinstallMethod.ALL, include_optional, force, verbose)
    return op


def _lookup_install_target(op: BPMOperation, name: str) -> Optional[CatalogEntry]:
    entry = op.catalog.get(name)
    if entry is not None:
        return entry
    # nome virtual: provedor instalado primeiro, depois provedores do catálogo
    provider = op.installed.virtual_provider(name)
    if provider is not None:
        return op.catalog.get(provider)
    return op.catalog.resolve_virtual(name)


def plan_remove(
    root: Path,
    catalog: Catalog,
    names: Iterable[str],
    unused_only: bool = False,
    cleanup: bool = False,
    force: bool = False,
    config: Optional[BPMConfig] = None,
    installed: Optional[InstalledPackages] = None,
) -> BPMOperation:
    op = BPMOperation(root, catalog, installed=installed, config=config)
    not_found: List[str] = []

    for name in _dedupe(names):
        real = name if op.installed.is_installed(name) else op.installed.virtual_provider(name)
        if real is None:
            not_found.append(name)
            continue
        if op.contains_package(real):
            continue
        pkg = op.installed.get(real)
        if pkg is not None:
            op.append_action(RemoveAction(pkg))

    if not_found:
        if not force:
            raise PackageNotFoundError(not_found)
        log.warning("Pacotes não instalados ignorados: %s", ", ".join(not_found))

    if unused_only:
        op.remove_needed_packages()

    if cleanup:
        op.cleanup(op.config.cleanup_make_dependencies)

    if not force:
        ignored = set(op.config.ignore_packages)
        removing = {a.package.name for a in op.actions if isinstance(a, RemoveAction)}
        required: Dict[str, List[str]] = {}
        for name in sorted(removing):
            if name in ignored:
                continue
            dependants = [
                d for d in op.installed.dependants(name)
                if d not in removing and d not in ignored
            ]
            if dependants:
                required[name] = dependants
        if required:
            raise PackageRemovalDependencyError(required)

    return op


def plan_cleanup(
    root: Path,
    catalog: Catalog,
    cleanup_make_depends: bool = True,
    config: Optional[BPMConfig] = None,
    installed: Optional[InstalledPackages] = None,
) -> BPMOperation:
    op = BPMOperation(root, catalog, installed=installed, config=config)
    op.cleanup(cleanup_make_depends)
    return op


def plan_update(
    root: Path,
    catalog: Catalog,
    sync_first: bool = False,
    include_optional: bool = False,
    force: bool = False,
    allow_downgrades: bool = False,
    databases_dir: Optional[Path] = None,
    config: Optional[BPMConfig] = None,
    verbose: bool = False,
    installed: Optional[InstalledPackages] = None,
) -> BPMOperation:
    config = config if config is not None else BPMConfig()
    if sync_first:
        catalog = Catalog.sync(config, databases_dir if databases_dir is not None else BPM_DATABASES_DIR)

    op = BPMOperation(root, catalog, installed=installed, config=config)
    ignored = set(config.ignore_packages)

    for name in op.installed.names():
        if name in ignored:
            continue
        current = op.installed.info(name)
        if current is None:
            continue
        reason = op.installed.installation_reason(name)

        replacement = catalog.find_replacement(name)
        if replacement is not None and not op.installed.is_installed(replacement.name):
            if not op.contains_package(replacement.name):
                log.info("%s será substituído por %s", name, replacement.name)
                op.append_action(FetchAction(replacement, reason, False))
            continue

        entry = catalog.get(name)
        if entry is None:
            continue
        cmp = compare_full_versions(entry.info.full_version, current.full_version)
        if (not allow_downgrades and cmp > 0) or (allow_downgrades and cmp != 0):
            op.append_action(FetchAction(entry, reason, False))

    _finish_install_plan(op, False, include_optional, force, verbose)
    return op
