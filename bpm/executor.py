"""
Execução das ações no filesystem da raiz.

Ordem fixa: todos os Fetch já realizados (viraram Install), depois Remove/Install
na ordem da lista. A primeira falha para o processamento e é levantada como
OperationError(pacote, causa); ações já aplicadas não são desfeitas.
"""
from __future__ import annotations

import logging
import os
import platform
import shutil
import tarfile
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Tuple

from .actions import FetchAction, InstallAction, OperationAction, RemoveAction
from .errors import (
    ArchitectureError,
    BPMError,
    FormatError,
    OperationError,
    PackageNotInstalledError,
)
from .installed import InstalledPackages
from .package import (
    BPMPackage,
    InstallationReason,
    PackageFileEntry,
    PackageInfo,
    clean_member_path,
    member_name,
    open_archive,
    read_package,
    read_package_scripts,
)
from .scripts import run_script_if_present

log = logging.getLogger(__name__)

FILES_ARCHIVE = "files.tar.gz"


def _say(verbose: bool, msg: str, *args: object) -> None:
    log.log(logging.INFO if verbose else logging.DEBUG, msg, *args)


def host_architecture() -> str:
    return platform.machine()


def is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def _chown(path: Path, uid: int, gid: int) -> None:
    # só root pode trocar dono
    if os.geteuid() == 0:
        os.lchown(path, uid, gid)


# ----------------------------
# Remoção de arquivos
# ----------------------------

def remove_files(
    entries: Iterable[PackageFileEntry],
    root: Path,
    owners: Dict[str, List[BPMPackage]],
    verbose: bool = False,
    keep: Optional[PackageInfo] = None,
) -> None:
    """
    Remove os paths do manifesto em ordem lexicográfica reversa (filhos antes dos pais).
    - path de outro pacote (owners): preservado
    - path na lista keep: preservado
    - symlink: removido sempre, nunca tratado como diretório
    - diretório não vazio: preservado
    """
    for entry in sorted(entries, key=lambda e: e.path, reverse=True):
        if entry.path in ("", "."):
            continue
        if ".." in PurePosixPath(entry.path).parts:
            raise FormatError(f"Path inseguro no manifesto: {entry.path}")
        target = root / entry.path
        if not os.path.lexists(target):
            continue
        if owners.get(entry.path):
            _say(verbose, "Preservando %s (pertence também a %s)", target, ", ".join(p.name for p in owners[entry.path]))
            continue
        if keep is not None and keep.is_kept(entry.path):
            _say(verbose, "Preservando %s (keep)", target)
            continue
        if target.is_symlink():
            _say(verbose, "Removendo: %s", target)
            target.unlink()
        elif target.is_dir():
            if any(target.iterdir()):
                _say(verbose, "Preservando diretório não vazio: %s", target)
                continue
            _say(verbose, "Removendo: %s", target)
            target.rmdir()
        else:
            _say(verbose, "Removendo: %s", target)
            target.unlink()


# ----------------------------
# Extração
# ----------------------------

def _check_members(members: List[tarfile.TarInfo], root: Path) -> None:
    """Endurecimento: recusa '..', links fora da raiz e tipos não suportados antes de tocar no disco."""
    base = root.resolve()
    for m in members:
        name = member_name(m)
        if ".." in PurePosixPath(name).parts:
            raise FormatError(f"Tar inseguro (..): {m.name}")
        if not (m.isdir() or m.isfile() or m.issym() or m.islnk()):
            raise FormatError(f"Tipo de entrada não suportado em {m.name}")
        if m.islnk():
            raw_link = m.linkname or ""
            if raw_link.startswith("/"):
                raise FormatError(f"Tar inseguro (link absoluto): {m.name} -> {raw_link}")
            if ".." in PurePosixPath(raw_link).parts:
                raise FormatError(f"Tar inseguro (link ..): {m.name} -> {raw_link}")
        if m.issym():
            raw_link = m.linkname or ""
            # alvo absoluto é interpretado dentro do sistema alvo; relativo não pode sair da raiz
            if not raw_link.startswith("/"):
                resolved = os.path.normpath(os.path.join(str(base), os.path.dirname(name), raw_link))
                if not is_relative_to(Path(resolved), base):
                    raise FormatError(f"Tar inseguro (link fora): {m.name} -> {raw_link}")


def _remove_existing(target: Path) -> None:
    if target.is_symlink() or target.is_file():
        target.unlink()
    elif target.exists():
        raise FormatError(f"Não é possível substituir {target}: já existe e não é um arquivo")


def extract_files(
    archive: Path,
    info: PackageInfo,
    files: Iterable[PackageFileEntry],
    root: Path,
    verbose: bool = False,
) -> None:
    manifest = {e.path: e for e in files}
    base = root.resolve()
    hardlinks: List[Tuple[Path, str]] = []

    with open_archive(archive) as outer:
        member = None
        for m in outer.getmembers():
            if member_name(m) == FILES_ARCHIVE and m.isfile():
                member = m
                break
        if member is None:
            raise FormatError(f"{FILES_ARCHIVE} não encontrado em {archive}")
        fobj = outer.extractfile(member)
        try:
            inner = tarfile.open(fileobj=fobj, mode="r:gz")
            members = inner.getmembers()
        except (tarfile.TarError, OSError, EOFError) as e:
            raise FormatError(f"{FILES_ARCHIVE} inválido em {archive}: {e}")
        with inner:
            _check_members(members, root)
            for m in members:
                name = member_name(m)
                if not name:
                    continue
                target = root / name
                if not is_relative_to(target.parent.resolve(), base):
                    raise FormatError(f"Tar inseguro (path traversal): {m.name}")
                entry = manifest.get(name)
                mode = entry.perms if entry is not None and entry.perms else m.mode
                uid = entry.uid if entry is not None else m.uid
                gid = entry.gid if entry is not None else m.gid

                if m.isdir():
                    if os.path.lexists(target):
                        _say(verbose, "Diretório já existe: %s", target)
                        continue
                    target.mkdir(parents=True, exist_ok=True)
                    _chown(target, uid, gid)
                    target.chmod(mode)
                    _say(verbose, "Diretório criado: %s (%o)", target, mode)
                elif m.isfile():
                    if os.path.lexists(target) and info.is_kept(name):
                        _say(verbose, "Preservando %s (keep)", target)
                        continue
                    _remove_existing(target)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    src = inner.extractfile(m)
                    with target.open("wb") as f:
                        if src is not None:
                            shutil.copyfileobj(src, f)
                    _chown(target, uid, gid)
                    target.chmod(mode)
                    _say(verbose, "Arquivo criado: %s (%o)", target, mode)
                elif m.issym():
                    _remove_existing(target)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    os.symlink(m.linkname, target)
                    _say(verbose, "Symlink criado: %s -> %s", target, m.linkname)
                elif m.islnk():
                    # hard links só depois de todos os arquivos regulares existirem
                    _remove_existing(target)
                    link_src = m.linkname
                    if link_src.startswith("files/"):
                        link_src = link_src[len("files/"):]
                    hardlinks.append((target, clean_member_path(link_src)))

    for target, link_src in hardlinks:
        target.parent.mkdir(parents=True, exist_ok=True)
        os.link(root / link_src, target)
        _say(verbose, "Hard link criado: %s -> %s", target, root / link_src)


# ----------------------------
# Instalação / remoção de pacotes
# ----------------------------

def install_package(
    archive: Path,
    root: Path,
    installed: InstalledPackages,
    reason: Optional[InstallationReason] = None,
    is_dependency: bool = False,
    verbose: bool = False,
    force: bool = False,
    split_package: Optional[str] = None,
) -> BPMPackage:
    archive = Path(archive)
    root = Path(root)
    pkg = read_package(archive)
    info = pkg.info

    if info.type != "binary":
        name = split_package or info.name
        raise BPMError(f"Somente pacotes binary podem ser instalados ({name} é {info.type})")

    host = host_architecture()
    if not force and info.architecture != "any" and info.architecture != host:
        raise ArchitectureError(info.name, info.architecture, host)

    scripts = read_package_scripts(archive)
    old = installed.get(info.name)
    old_info = old.info if old is not None else None

    run_script_if_present(scripts, "pre_update.sh" if old else "pre_install.sh", info, root, old_info, verbose)

    if old is not None:
        _say(verbose, "Removendo arquivos antigos de %s...", info.name)
        remove_files(old.files, root, installed.all_package_files(exclude=[info.name]), verbose, keep=info)

    _say(verbose, "Extraindo arquivos de %s...", info.name)
    extract_files(archive, info, pkg.files, root, verbose)

    # dependência que já estava instalada mantém o motivo atual
    final_reason = None if (is_dependency and old is not None) else reason
    remove_scripts = {k: v for k, v in scripts.items() if k.endswith("_remove.sh")}
    new_pkg = installed.write_package(info, pkg.files, remove_scripts, final_reason)

    run_script_if_present(scripts, "post_update.sh" if old else "post_install.sh", info, root, old_info, verbose)
    log.info("%s %s %s", "Atualizado" if old else "Instalado", info.name, info.full_version)
    return new_pkg


def remove_package(name: str, root: Path, installed: InstalledPackages, verbose: bool = False) -> None:
    root = Path(root)
    pkg = installed.get(name)
    if pkg is None:
        raise PackageNotInstalledError(name)

    scripts = {s: installed.read_remove_script(name, s) for s in ("pre_remove.sh", "post_remove.sh")}
    scripts = {k: v for k, v in scripts.items() if v is not None}

    run_script_if_present(scripts, "pre_remove.sh", pkg.info, root, None, verbose)
    remove_files(pkg.files, root, installed.all_package_files(exclude=[name]), verbose)
    run_script_if_present(scripts, "post_remove.sh", pkg.info, root, None, verbose)

    _say(verbose, "Removendo registro: %s", installed.directory / name)
    installed.delete_package(name)
    log.info("Removido %s %s", name, pkg.info.full_version)


def execute_actions(
    actions: List[OperationAction],
    root: Path,
    installed: InstalledPackages,
    verbose: bool = False,
    force: bool = False,
) -> None:
    pending = [a.entry.name for a in actions if isinstance(a, FetchAction)]
    if pending:
        raise BPMError("Pacotes ainda não baixados: " + ", ".join(pending))

    for action in actions:
        if isinstance(action, RemoveAction):
            name = action.package.name
            try:
                remove_package(name, root, installed, verbose)
            except (OSError, tarfile.TarError, BPMError) as e:
                raise OperationError(name, e) from e
        elif isinstance(action, InstallAction):
            name = action.info.name
            try:
                install_package(
                    action.archive,
                    root,
                    installed,
                    reason=action.reason,
                    is_dependency=action.is_dependency,
                    verbose=verbose,
                    force=force,
                    split_package=action.split_package,
                )
            except (OSError, tarfile.TarError, BPMError) as e:
                raise OperationError(name, e) from e
        else:
            raise TypeError(f"Ação desconhecida: {action!r}")
