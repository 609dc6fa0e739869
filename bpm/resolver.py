from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .catalog import Catalog, CatalogEntry
from .installed import InstalledPackages
from .package import InstallationReason, PackageInfo

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedDependency:
    name: str
    reason: InstallationReason


@dataclass
class Resolution:
    resolved: List[ResolvedDependency] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [r.name for r in self.resolved]


class DependencyResolver:
    """
    Expande o grafo de dependências de um pacote em uma ordem de instalação
    (dependências antes dos dependentes) a partir do catálogo.

    DFS com dois acumuladores:
      - resolved: saída, em pós-ordem
      - stack: pacotes em processamento (detecção de ciclo)
    Um nome já na pilha é um ciclo: entra direto em resolved, sem recursão.
    """

    def __init__(self, catalog: Catalog, installed: InstalledPackages):
        self.catalog = catalog
        self.installed = installed

    def resolve(
        self,
        info: PackageInfo,
        include_runtime: bool = True,
        include_make: bool = False,
        include_check: bool = False,
        include_optional: bool = False,
        ignore_installed: bool = True,
        verbose: bool = False,
    ) -> Resolution:
        res = Resolution()
        resolved: List[str] = []
        reasons = {}
        stack: List[str] = []
        # pacotes source precisam das dependências de build
        if info.type == "source":
            include_make = include_check = True

        def _mark(name: str, reason: InstallationReason) -> None:
            if name not in resolved:
                resolved.append(name)
                reasons[name] = reason

        def _classified(pi: PackageInfo) -> List[Tuple[str, InstallationReason]]:
            out: List[Tuple[str, InstallationReason]] = []
            if include_runtime:
                out += [(d, InstallationReason.DEPENDENCY) for d in pi.depends]
            if include_make:
                out += [(d, InstallationReason.MAKE_DEPENDENCY) for d in pi.make_depends]
            if include_check:
                out += [(d, InstallationReason.MAKE_DEPENDENCY) for d in pi.check_depends]
            if include_optional:
                out += [(d, InstallationReason.OPTIONAL_DEPENDENCY) for d in pi.optional_depends_names()]
            return out

        def _cycle(parent: str, name: str, reason: InstallationReason) -> None:
            if verbose:
                log.warning("Dependência circular detectada (%s -> %s). Instalando %s primeiro", parent, name, name)
            else:
                log.debug("Dependência circular detectada (%s -> %s)", parent, name)
            _mark(name, reason)

        def _lookup(name: str) -> Optional[CatalogEntry]:
            entry = self.catalog.get(name)
            if entry is None:
                entry = self.catalog.resolve_virtual(name)
            return entry

        def _rec(pi: PackageInfo, reason: InstallationReason) -> None:
            stack.append(pi.name)
            for raw, dep_reason in _classified(pi):
                dep = raw.strip().lower()
                if not dep or dep in resolved:
                    continue
                if dep in stack:
                    _cycle(pi.name, dep, dep_reason)
                    continue
                if ignore_installed and self.installed.is_provided(dep):
                    continue
                entry = _lookup(dep)
                if entry is None:
                    if dep not in res.unresolved:
                        res.unresolved.append(dep)
                    continue
                # nome virtual: valem as mesmas checagens para o provedor real
                real = entry.name
                if real in resolved:
                    continue
                if real in stack:
                    _cycle(pi.name, real, dep_reason)
                    continue
                if ignore_installed and self.installed.is_installed(real):
                    continue
                _rec(entry.info, dep_reason)
            _mark(pi.name, reason)
            stack.remove(pi.name)

        _rec(info, InstallationReason.MANUAL)
        res.resolved = [ResolvedDependency(n, reasons[n]) for n in resolved]
        log.debug("Ordem resolvida para %s: %s", info.name, ", ".join(res.names))
        return res
