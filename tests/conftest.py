"""Fixtures: arquivos .bpm, bases de pacotes e registros instalados montados em tmp_path."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, Optional, Union

import pytest
import yaml

from bpm.catalog import Catalog, Database
from bpm.installed import InstalledPackages
from bpm.package import (
    InstallationReason,
    PackageFileEntry,
    format_files_manifest,
    package_info_from_mapping,
    read_package,
)


def info_mapping(name: str, **fields: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": name,
        "description": f"pacote {name}",
        "version": "1.0",
        "revision": 1,
        "architecture": "any",
        "type": "binary",
    }
    data.update(fields)
    return data


def _add_bytes(tf: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    ti = tarfile.TarInfo(name)
    ti.size = len(data)
    ti.mode = mode
    tf.addfile(ti, io.BytesIO(data))


def build_package(
    dest_dir: Path,
    name: str,
    files: Optional[Dict[str, Union[str, bytes]]] = None,
    dirs: Iterable[str] = (),
    symlinks: Optional[Dict[str, str]] = None,
    hardlinks: Optional[Dict[str, str]] = None,
    scripts: Optional[Dict[str, str]] = None,
    auto_dirs: bool = True,
    filename: Optional[str] = None,
    **fields: Any,
) -> Path:
    """
    Monta um .bpm: tar sem compressão com pkg.info, pkg.files, files.tar.gz e scripts.
    Diretórios pais dos arquivos entram no manifesto automaticamente (auto_dirs).
    """
    contents = {k: (v.encode() if isinstance(v, str) else v) for k, v in (files or {}).items()}
    symlinks = symlinks or {}
    hardlinks = hardlinks or {}
    info = info_mapping(name, **fields)

    all_dirs = {d.strip("/") for d in dirs}
    if auto_dirs:
        for p in list(contents) + list(symlinks) + list(hardlinks):
            parent = PurePosixPath(p).parent
            while str(parent) not in (".", "", "/", ".."):
                all_dirs.add(str(parent))
                parent = parent.parent

    manifest = []
    inner = io.BytesIO()
    with tarfile.open(fileobj=inner, mode="w:gz") as tf:
        for d in sorted(all_dirs):
            ti = tarfile.TarInfo(d)
            ti.type = tarfile.DIRTYPE
            ti.mode = 0o755
            tf.addfile(ti)
            manifest.append(PackageFileEntry(d, 0o755, 0, 0, 0, is_dir=True))
        for path, data in sorted(contents.items()):
            mode = 0o755 if "/bin/" in f"/{path}" else 0o644
            _add_bytes(tf, path, data, mode)
            manifest.append(PackageFileEntry(path, mode, 0, 0, len(data)))
        for path, target in sorted(symlinks.items()):
            ti = tarfile.TarInfo(path)
            ti.type = tarfile.SYMTYPE
            ti.linkname = target
            ti.mode = 0o777
            tf.addfile(ti)
            manifest.append(PackageFileEntry(path, 0o777, 0, 0, 0))
        for path, target in sorted(hardlinks.items()):
            ti = tarfile.TarInfo(path)
            ti.type = tarfile.LNKTYPE
            ti.linkname = target
            ti.mode = 0o644
            tf.addfile(ti)
            manifest.append(PackageFileEntry(path, 0o644, 0, 0, 0))

    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    archive = dest_dir / (filename or f"{name}-{info['version']}-{info['revision']}-{info['architecture']}.bpm")
    with tarfile.open(archive, "w") as out:
        _add_bytes(out, "pkg.info", yaml.safe_dump(info, sort_keys=False).encode())
        _add_bytes(out, "pkg.files", format_files_manifest(manifest).encode())
        if info["type"] == "binary":
            _add_bytes(out, "files.tar.gz", inner.getvalue())
        for script, body in (scripts or {}).items():
            _add_bytes(out, script, body.encode(), 0o755)
    return archive


class Repo:
    """Base de pacotes num diretório local (source = diretório)."""

    def __init__(self, base: Path, name: str = "main"):
        self.name = name
        self.source = base / f"repo-{name}"
        self.entries: Dict[str, Dict[str, Any]] = {}

    def add(self, name: str, **kwargs: Any) -> Path:
        archive = build_package(self.source / "binary", name, **kwargs)
        pkg = read_package(archive)
        self.entries[name] = {
            "info": pkg.info.to_mapping(),
            "filepath": f"binary/{archive.name}",
            "download_size": archive.stat().st_size,
            "installed_size": pkg.installed_size,
        }
        return archive

    def descriptor(self) -> str:
        return yaml.safe_dump({"database_version": 1, "entries": self.entries}, sort_keys=False)

    def database(self) -> Database:
        return Database.from_yaml(self.name, str(self.source), self.descriptor())

    def catalog(self) -> Catalog:
        return Catalog([self.database()])

    def publish(self) -> Path:
        self.source.mkdir(parents=True, exist_ok=True)
        path = self.source / "database.bpmdb"
        path.write_text(self.descriptor(), encoding="utf-8")
        return path


@pytest.fixture()
def root(tmp_path: Path) -> Path:
    r = tmp_path / "root"
    r.mkdir()
    return r


@pytest.fixture()
def repo(tmp_path: Path) -> Repo:
    return Repo(tmp_path)


@pytest.fixture()
def make_package(tmp_path: Path):
    def _make(name: str, **kwargs: Any) -> Path:
        return build_package(tmp_path / "pkgs", name, **kwargs)
    return _make


@pytest.fixture()
def record(root: Path):
    """Grava um pacote direto no registro (sem arquivos no disco)."""
    def _record(
        name: str,
        files: Optional[Dict[str, int]] = None,
        reason: Optional[InstallationReason] = None,
        **fields: Any,
    ) -> InstalledPackages:
        installed = InstalledPackages(root)
        info = package_info_from_mapping(info_mapping(name, **fields))
        entries = [PackageFileEntry(p, 0o644, 0, 0, size) for p, size in (files or {}).items()]
        installed.write_package(info, entries, reason=reason)
        return installed
    return _record
