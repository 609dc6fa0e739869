"""
BPMOperation: lista ordenada de ações (Install/Fetch/Remove) de uma operação.

Invariantes:
  - no máximo uma ação por nome de pacote
  - changes ({pacote: install|upgrade|remove}) é atualizado a cada inserção
  - nada toca o filesystem antes de execute()
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .actions import (
    FetchAction,
    InstallAction,
    OperationAction,
    RemoveAction,
    action_kind,
    action_name,
    action_package_info,
)
from .catalog import Catalog
from .config import BPM_FETCH_CACHE, BPMConfig
from .errors import BPMError, DuplicateActionError, FormatError, OperationError, TransportError
from .executor import execute_actions
from .hooks import run_hooks
from .installed import InstalledPackages
from .package import InstallationReason, PackageInfo, read_package, split_optional_depend
from .resolver import DependencyResolver
from .version import compare_full_versions

log = logging.getLogger(__name__)

__all__ = [
    "BPMOperation",
    "FetchAction",
    "InstallAction",
    "OperationAction",
    "RemoveAction",
    "human_size",
]


def human_size(size: int) -> str:
    sign = "-" if size < 0 else ""
    value = float(abs(size))
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            if unit == "B":
                return f"{sign}{int(value)} {unit}"
            return f"{sign}{value:.1f} {unit}"
        value /= 1024
    return f"{sign}{value:.1f} GiB"


class BPMOperation:
    def __init__(
        self,
        root: Path,
        catalog: Catalog,
        installed: Optional[InstalledPackages] = None,
        config: Optional[BPMConfig] = None,
        forced_reason: Optional[InstallationReason] = None,
    ):
        self.root = Path(root)
        self.catalog = catalog
        self.installed = installed if installed is not None else InstalledPackages(self.root)
        self.config = config if config is not None else BPMConfig()
        self.forced_reason = forced_reason
        self.actions: List[OperationAction] = []
        self.unresolved_depends: List[str] = []
        self.changes: Dict[str, str] = {}
        self._fetched = False
        self._changed_paths: List[str] = []

    # ----------------------------
    # Lista de ações
    # ----------------------------

    def contains_package(self, name: str) -> bool:
        return any(action_name(a) == name for a in self.actions)

    def append_action(self, action: OperationAction) -> None:
        self.insert_action_at(len(self.actions), action)

    def insert_action_at(self, index: int, action: OperationAction) -> None:
        name = action_name(action)
        if self.contains_package(name):
            raise DuplicateActionError(name)
        self.actions.insert(index, action)
        if isinstance(action, RemoveAction):
            self.changes[name] = "remove"
        elif self.installed.is_installed(name):
            self.changes[name] = "upgrade"
        else:
            self.changes[name] = "install"

    def remove_action(self, name: str, kind: str) -> None:
        self.actions = [a for a in self.actions if not (action_kind(a) == kind and action_name(a) == name)]
        if not self.contains_package(name):
            self.changes.pop(name, None)

    def _removal_names(self) -> Set[str]:
        return {a.package.name for a in self.actions if isinstance(a, RemoveAction)}

    def _planned_infos(self) -> List[PackageInfo]:
        return [action_package_info(a) for a in self.actions if not isinstance(a, RemoveAction)]

    # ----------------------------
    # Passos de planejamento
    # ----------------------------

    def resolve_dependencies(
        self,
        reinstall_dependencies: bool = False,
        include_optional: bool = False,
        verbose: bool = False,
    ) -> None:
        """
        Para cada Install/Fetch planejado, insere um Fetch imediatamente antes dele
        para cada dependência resolvida que ainda não está planejada nem instalada.
        Nomes sem entrada no catálogo vão para unresolved_depends.
        """
        resolver = DependencyResolver(self.catalog, self.installed)
        pos = 0
        for action in list(self.actions):
            if isinstance(action, RemoveAction):
                pos += 1
                continue
            info = action_package_info(action)
            is_source = info.type == "source"
            res = resolver.resolve(
                info,
                include_make=is_source,
                include_check=is_source,
                include_optional=include_optional,
                ignore_installed=not reinstall_dependencies,
                verbose=verbose,
            )
            for name in res.unresolved:
                if name not in self.unresolved_depends:
                    self.unresolved_depends.append(name)

            for dep in res.resolved:
                if dep.name == info.name or self.contains_package(dep.name):
                    continue
                if not reinstall_dependencies and self.installed.is_installed(dep.name):
                    continue
                entry = self.catalog.get(dep.name)
                if entry is None:
                    if dep.name not in self.unresolved_depends:
                        self.unresolved_depends.append(dep.name)
                    continue
                self.insert_action_at(pos, FetchAction(entry=entry, reason=dep.reason, is_dependency=True))
                pos += 1
            pos += 1

    def replace_obsolete_packages(self) -> None:
        for info in self._planned_infos():
            for replaced in info.replaces:
                pkg = self.installed.get(replaced)
                if pkg is not None and not self.contains_package(pkg.name):
                    log.debug("%s substitui %s", info.name, pkg.name)
                    self.insert_action_at(0, RemoveAction(pkg))

    def check_for_conflicts(self) -> Dict[str, List[str]]:
        """
        Conflitos entre os pacotes que existirão após a operação, com pelo menos
        um dos lados planejado. Vale o conflicts de qualquer um dos lados, por nome
        real ou por nome virtual (provides).
        """
        conflicts: Dict[str, List[str]] = {}
        removed = self._removal_names()
        planned = self._planned_infos()
        planned_names = {p.name for p in planned}

        remaining: Dict[str, PackageInfo] = {}
        for name in self.installed.names():
            if name in removed or name in planned_names:
                continue
            info = self.installed.info(name)
            if info is not None:
                remaining[name] = info
        for p in planned:
            remaining[p.name] = p

        def _add(owner: str, what: str) -> None:
            items = conflicts.setdefault(owner, [])
            if what not in items:
                items.append(what)

        def _declared(declarer: PackageInfo, other: PackageInfo) -> None:
            if other.name in declarer.conflicts:
                _add(declarer.name, other.name)
            for vpkg in other.provides:
                if vpkg in declarer.conflicts:
                    _add(declarer.name, f"{vpkg} ({other.name})")

        for p in planned:
            for other in remaining.values():
                if other.name == p.name:
                    continue
                _declared(p, other)
                # pares planejado/planejado são cobertos quando o outro lado é p
                if other.name not in planned_names:
                    _declared(other, p)
        return conflicts

    def remove_needed_packages(self) -> None:
        """Modo 'unused': descarta remoções de pacotes que ainda têm dependentes fora do conjunto."""
        changed = True
        while changed:
            changed = False
            removing = self._removal_names()
            for name in sorted(removing):
                dependants = [d for d in self.installed.dependants(name) if d not in removing]
                if dependants:
                    log.info("Mantendo %s (requerido por %s)", name, ", ".join(dependants))
                    self.remove_action(name, "remove")
                    changed = True
                    break

    def cleanup(self, cleanup_make_depends: bool = True, include_optional: bool = False) -> None:
        """
        Remove órfãos: tudo que não está no fecho de dependências dos pacotes
        instalados manualmente (e que não está em ignore_packages).
        """
        removing = self._removal_names()
        ignored = set(self.config.ignore_packages)
        keep: Set[str] = set()
        for name in self.installed.names():
            if name in removing:
                continue
            if self.installed.installation_reason(name) != InstallationReason.MANUAL:
                continue
            info = self.installed.info(name)
            if info is None:
                continue
            keep.update(self.installed.all_dependencies(
                info,
                include_make=not cleanup_make_depends,
                include_optional=include_optional,
            ))

        for name in self.installed.names():
            if name in removing or name in keep or name in ignored:
                continue
            pkg = self.installed.get(name)
            if pkg is not None:
                self.append_action(RemoveAction(pkg))

    # ----------------------------
    # Tamanhos
    # ----------------------------

    def total_download_size(self) -> int:
        return sum(a.entry.download_size for a in self.actions if isinstance(a, FetchAction))

    def total_installed_size(self) -> int:
        total = 0
        for a in self.actions:
            if isinstance(a, InstallAction):
                total += a.package.installed_size
            elif isinstance(a, FetchAction):
                total += a.entry.installed_size
        return total

    def final_size_delta(self) -> int:
        """Variação líquida de espaço na raiz: novos tamanhos menos o que é substituído ou removido."""
        delta = 0
        for a in self.actions:
            if isinstance(a, InstallAction):
                delta += a.package.installed_size - self.installed.installed_size(a.info.name)
            elif isinstance(a, FetchAction):
                delta += a.entry.installed_size - self.installed.installed_size(a.entry.name)
            elif isinstance(a, RemoveAction):
                delta -= self.installed.installed_size(a.package.name)
            else:
                raise TypeError(f"Ação desconhecida: {a!r}")
        return delta

    # ----------------------------
    # Resumo
    # ----------------------------

    def optional_dependencies(self) -> Dict[str, List[str]]:
        """Dependências opcionais novas dos pacotes planejados que ainda não estão instaladas."""
        out: Dict[str, List[str]] = {}
        for info in self._planned_infos():
            old = self.installed.info(info.name)
            old_optional = set(old.optional_depends_names()) if old is not None else set()
            for raw in info.optional_depends:
                name, reason = split_optional_depend(raw)
                if self.installed.is_installed(name) or name in old_optional:
                    continue
                out.setdefault(info.name, []).append(f"{name} ({reason})" if reason else name)
        return out

    def summary_rows(self) -> List[Tuple[str, str, str, str, str]]:
        rows: List[Tuple[str, str, str, str, str]] = []
        for a in self.actions:
            info = action_package_info(a)
            if isinstance(a, RemoveAction):
                rows.append((info.name, info.full_version, "Remove", "-", "-"))
                continue
            reason = InstallationReason(a.reason).label
            from_source = "sim" if info.type == "source" else "não"
            old = self.installed.info(info.name)
            if old is None:
                rows.append((info.name, info.full_version, "Install", reason, from_source))
                continue
            cmp = compare_full_versions(info.full_version, old.full_version)
            if cmp == 0:
                rows.append((info.name, info.full_version, "Reinstall", reason, from_source))
            else:
                action = "Upgrade" if cmp > 0 else "Downgrade"
                rows.append((info.name, f"{old.full_version} -> {info.full_version}", action, reason, from_source))
        return rows

    def format_summary(self) -> str:
        if not self.actions:
            return "Nenhuma ação necessária"
        header = ("Nome", "Versão", "Ação", "Motivo", "Source")
        rows = [header] + self.summary_rows()
        widths = [max(len(r[i]) for r in rows) for i in range(len(header))]
        lines = ["  ".join(col.ljust(w) for col, w in zip(r, widths)).rstrip() for r in rows]
        lines.append("")
        if str(self.root) != "/":
            lines.append(f"Atenção: operando em {self.root}")
        download = self.total_download_size()
        if download > 0:
            lines.append(f"{human_size(download)} serão baixados para completar a operação")
        delta = self.final_size_delta()
        if delta > 0:
            lines.append(f"Um total de {human_size(delta)} será instalado ao final da operação")
        elif delta < 0:
            lines.append(f"Um total de {human_size(-delta)} será liberado ao final da operação")
        return "\n".join(lines)

    # ----------------------------
    # Execução
    # ----------------------------

    def fetch_packages(self) -> None:
        """Troca cada Fetch por um Install do arquivo baixado; cada filepath é baixado uma vez."""
        if self._fetched:
            return
        cache_dir = self.root / BPM_FETCH_CACHE
        fetched: Dict[str, Path] = {}
        for i, action in enumerate(list(self.actions)):
            if not isinstance(action, FetchAction):
                continue
            entry = action.entry
            try:
                archive = fetched.get(entry.filepath)
                if archive is None:
                    if entry.database is None:
                        raise TransportError(f"{entry.name} não tem base de origem")
                    archive = entry.database.fetch_package(entry.name, cache_dir)
                    fetched[entry.filepath] = archive
                pkg = read_package(archive)
            except (BPMError, OSError) as e:
                raise OperationError(entry.name, e) from e

            split = entry.name if pkg.info.is_split_package else None
            if split is None and pkg.info.name != entry.name:
                raise OperationError(entry.name, FormatError(f"Arquivo baixado contém {pkg.info.name}"))
            self.actions[i] = InstallAction(
                archive=archive,
                package=pkg,
                reason=action.reason,
                is_dependency=action.is_dependency,
                split_package=split,
            )
        self._fetched = True

    def execute(self, verbose: bool = False, force: bool = False) -> None:
        self.fetch_packages()
        # manifestos dos pacotes removidos somem do registro; guarda para os hooks de path
        self._changed_paths = []
        for name in self.changes:
            pkg = self.installed.get(name)
            if pkg is not None:
                self._changed_paths.extend(e.path for e in pkg.files)
        execute_actions(self.actions, self.root, self.installed, verbose=verbose, force=force)
        for name, change in self.changes.items():
            pkg = self.installed.get(name)
            if change != "remove" and pkg is not None:
                self._changed_paths.extend(e.path for e in pkg.files)

    def run_hooks(self, verbose: bool = False) -> None:
        run_hooks(self.changes, self.root, self.installed, self._changed_paths, verbose)
