"""
Registro de pacotes instalados sob uma raiz.

Layout (relativo à raiz):
  var/lib/bpm/installed/<nome>/info     metadados (mesmo formato do pkg.info)
  var/lib/bpm/installed/<nome>/files    manifesto (mesmo formato do pkg.files)
  var/lib/bpm/installed/<nome>/local    YAML: installation_reason, installed_at, updated_at
  var/lib/bpm/installed/<nome>/pre_remove.sh, post_remove.sh (opcionais)

O diretório é lido uma vez por operação; reload() relê do disco.
Somente o executor escreve aqui.
"""
from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .config import BPM_INSTALLED_DIR
from .errors import FormatError
from .package import (
    BPMPackage,
    InstallationReason,
    PackageFileEntry,
    PackageInfo,
    format_files_manifest,
    parse_files_manifest,
    parse_package_info,
    read_text_file,
)

log = logging.getLogger(__name__)

REMOVE_SCRIPTS = ("pre_remove.sh", "post_remove.sh")


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


class InstalledPackages:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.directory = self.root / BPM_INSTALLED_DIR
        self._packages: Dict[str, BPMPackage] = {}
        self.reload()

    # ----------------------------
    # Leitura
    # ----------------------------

    def reload(self) -> None:
        self._packages = {}
        if not self.directory.is_dir():
            return
        for d in sorted(self.directory.iterdir()):
            if not d.is_dir():
                continue
            info_file = d / "info"
            if not info_file.is_file():
                log.warning("Registro sem info ignorado: %s", d)
                continue
            try:
                info = parse_package_info(read_text_file(info_file))
            except FormatError as e:
                raise FormatError(f"Registro inválido em {d}: {e}")
            files_file = d / "files"
            files: List[PackageFileEntry] = []
            if files_file.is_file():
                files = parse_files_manifest(read_text_file(files_file), legacy=True)
            self._packages[d.name] = BPMPackage(info=info, files=tuple(files))

    def names(self) -> List[str]:
        return sorted(self._packages)

    def packages(self) -> List[BPMPackage]:
        return [self._packages[n] for n in self.names()]

    def get(self, name: str) -> Optional[BPMPackage]:
        return self._packages.get(name)

    def info(self, name: str) -> Optional[PackageInfo]:
        pkg = self._packages.get(name)
        return pkg.info if pkg is not None else None

    def is_installed(self, name: str) -> bool:
        return name in self._packages

    def virtual_provider(self, name: str) -> Optional[str]:
        """Nome do pacote instalado que declara name em provides (None se nenhum)."""
        for n in self.names():
            if name in self._packages[n].info.provides:
                return n
        return None

    def is_provided(self, name: str) -> bool:
        return self.is_installed(name) or self.virtual_provider(name) is not None

    def installed_size(self, name: str) -> int:
        pkg = self._packages.get(name)
        return pkg.installed_size if pkg is not None else 0

    def all_package_files(self, exclude: Iterable[str] = ()) -> Dict[str, List[BPMPackage]]:
        """path -> pacotes instalados que o declaram no manifesto (exceto os de exclude)."""
        excluded = set(exclude)
        owners: Dict[str, List[BPMPackage]] = {}
        for name in self.names():
            if name in excluded:
                continue
            pkg = self._packages[name]
            for entry in pkg.files:
                owners.setdefault(entry.path, []).append(pkg)
        return owners

    def dependants(self, name: str, include_optional: bool = True) -> List[str]:
        """Pacotes instalados cujas depends (e optional_depends) citam name ou algum provides dele."""
        targets = {name}
        pkg = self._packages.get(name)
        if pkg is not None:
            targets.update(pkg.info.provides)
        out: List[str] = []
        for other in self.names():
            if other == name:
                continue
            deps = self._packages[other].info.dependencies(include_optional=include_optional)
            if targets.intersection(deps):
                out.append(other)
        return out

    def all_dependencies(
        self,
        info: PackageInfo,
        include_make: bool = False,
        include_optional: bool = False,
    ) -> List[str]:
        """
        Fecho das dependências de info entre os pacotes instalados (pós-ordem, o próprio info por último).
        Nomes virtuais são trocados pelo provedor instalado; ciclos não recursam.
        """
        resolved: List[str] = []
        stack: List[str] = []

        def _rec(pi: PackageInfo) -> None:
            stack.append(pi.name)
            for dep in pi.dependencies(include_make=include_make, include_optional=include_optional):
                if dep in resolved:
                    continue
                if dep in stack:
                    resolved.append(dep)
                    continue
                real = dep if self.is_installed(dep) else self.virtual_provider(dep)
                if real is None or real in resolved:
                    continue
                if real in stack:
                    resolved.append(real)
                    continue
                _rec(self._packages[real].info)
            if pi.name not in resolved:
                resolved.append(pi.name)
            stack.remove(pi.name)

        _rec(info)
        return resolved

    # ----------------------------
    # Informação local (motivo de instalação)
    # ----------------------------

    def _package_dir(self, name: str) -> Path:
        return self.directory / name

    def read_local(self, name: str) -> Dict[str, Any]:
        local_file = self._package_dir(name) / "local"
        if not local_file.is_file():
            return {}
        try:
            data = yaml.safe_load(read_text_file(local_file))
        except yaml.YAMLError as e:
            raise FormatError(f"Arquivo local inválido para {name}: {e}")
        return data if isinstance(data, dict) else {}

    def installation_reason(self, name: str) -> InstallationReason:
        if not self.is_installed(name):
            return InstallationReason.UNKNOWN
        local = self.read_local(name)
        if "installation_reason" in local:
            return InstallationReason.from_string(local["installation_reason"])
        # registros antigos: arquivo texto com o motivo
        legacy = self._package_dir(name) / "installation_reason"
        if legacy.is_file():
            return InstallationReason.from_string(read_text_file(legacy))
        return InstallationReason.MANUAL

    def set_installation_reason(self, name: str, reason: InstallationReason) -> None:
        if not self.is_installed(name):
            raise FormatError(f"Pacote não instalado: {name}")
        local = self.read_local(name)
        local["installation_reason"] = InstallationReason(reason).value
        self._write_local(name, local)

    def _write_local(self, name: str, local: Dict[str, Any]) -> None:
        _write_atomic(self._package_dir(name) / "local", yaml.safe_dump(local, sort_keys=True))
        legacy = self._package_dir(name) / "installation_reason"
        if legacy.exists():
            legacy.unlink()

    # ----------------------------
    # Escrita (executor)
    # ----------------------------

    def write_package(
        self,
        info: PackageInfo,
        files: Iterable[PackageFileEntry],
        remove_scripts: Optional[Dict[str, str]] = None,
        reason: Optional[InstallationReason] = None,
    ) -> BPMPackage:
        """
        Grava info, files, scripts de remoção e local.
        reason=None mantém o motivo atual (ou manual num registro novo).
        """
        pkg_dir = self._package_dir(info.name)
        pkg_dir.mkdir(parents=True, exist_ok=True)
        existing = self.read_local(info.name) if pkg_dir.joinpath("local").is_file() else {}
        was_installed = self.is_installed(info.name)
        old_reason = self.installation_reason(info.name) if was_installed else None

        entries = tuple(files)
        _write_atomic(pkg_dir / "info", info.to_yaml())
        _write_atomic(pkg_dir / "files", format_files_manifest(list(entries)))

        scripts = remove_scripts or {}
        for script in REMOVE_SCRIPTS:
            path = pkg_dir / script
            if script in scripts:
                _write_atomic(path, scripts[script])
                path.chmod(0o755)
            elif path.exists():
                path.unlink()

        now = int(time.time())
        local = dict(existing)
        if reason is None:
            reason = old_reason or InstallationReason.MANUAL
        local["installation_reason"] = InstallationReason(reason).value
        local.setdefault("installed_at", now)
        if was_installed:
            local["updated_at"] = now
        self._write_local(info.name, local)

        pkg = BPMPackage(info=info, files=entries)
        self._packages[info.name] = pkg
        return pkg

    def read_remove_script(self, name: str, script: str) -> Optional[str]:
        path = self._package_dir(name) / script
        if not path.is_file():
            return None
        return read_text_file(path)

    def delete_package(self, name: str) -> None:
        pkg_dir = self._package_dir(name)
        if pkg_dir.exists():
            shutil.rmtree(pkg_dir)
        self._packages.pop(name, None)
