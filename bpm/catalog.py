"""
Bases de pacotes (catálogo).

Cada base é um descritor YAML (<nome>.bpmdb):

  database_version: 1
  entries:
    hello:
      info: {name: hello, version: "1.0", ...}
      filepath: binary/hello-1.0-1-x86_64.bpm
      download_size: 1234
      installed_size: 4096

Entradas com split_packages viram uma entrada por sub-pacote ao carregar.
Um Catalog é a lista ordenada de bases de uma operação; não há estado global.
"""
from __future__ import annotations

import dataclasses
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional
from urllib.error import URLError
from urllib.parse import quote, urlparse
from urllib.request import urlopen

import yaml

from .config import BPMConfig, BPM_DATABASES_DIR
from .errors import FormatError, TransportError
from .package import PackageInfo, decode_text, load_metadata, package_info_from_mapping, read_text_file

log = logging.getLogger(__name__)

REMOTE_SCHEMES = ("http", "https", "ftp", "file")


@dataclass(frozen=True)
class CatalogEntry:
    info: PackageInfo
    filepath: str
    download_size: int = 0
    installed_size: int = 0
    database: Optional["Database"] = field(default=None, repr=False, compare=False)

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def database_name(self) -> str:
        return self.database.name if self.database is not None else ""


def source_url(source: str, relpath: str) -> str:
    """URL de relpath dentro de source; diretórios locais viram file://."""
    rel = quote(relpath.lstrip("/"))
    if urlparse(source).scheme in REMOTE_SCHEMES:
        return source.rstrip("/") + "/" + rel
    return Path(source).resolve().as_uri().rstrip("/") + "/" + rel


def _download(url: str) -> bytes:
    try:
        with urlopen(url, timeout=60) as r:
            return r.read()
    except (URLError, OSError, ValueError) as e:
        raise TransportError(f"Falha no download: {url} ({e})")


def _int(value: Any, what: str) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        raise FormatError(f"{what} inválido: {value!r}")


@dataclass(eq=False)
class Database:
    name: str
    source: str
    version: int = 1
    entries: Dict[str, CatalogEntry] = field(default_factory=dict, repr=False)
    virtual_packages: Dict[str, List[CatalogEntry]] = field(default_factory=dict, repr=False)

    @staticmethod
    def from_yaml(name: str, source: str, text: str) -> "Database":
        try:
            data = load_metadata(text)
        except yaml.YAMLError as e:
            raise FormatError(f"Base {name} inválida: {e}")
        if not isinstance(data, dict):
            raise FormatError(f"Base {name} inválida: esperado dict")
        raw_entries = data.get("entries") or {}
        if not isinstance(raw_entries, dict):
            raise FormatError(f"Base {name}: entries deve ser um mapeamento")

        db = Database(name=name, source=source, version=_int(data.get("database_version", 1), "database_version"))
        for entry_name, raw in raw_entries.items():
            if not isinstance(raw, dict):
                raise FormatError(f"Base {name}: entrada inválida {entry_name}")
            info = package_info_from_mapping(raw.get("info"))
            filepath = str(raw.get("filepath") or "").strip()
            if not filepath:
                raise FormatError(f"Base {name}: {entry_name} sem filepath")
            download_size = _int(raw.get("download_size"), f"download_size de {entry_name}")
            installed_size = _int(raw.get("installed_size"), f"installed_size de {entry_name}")

            if info.is_split_package:
                # sub-pacotes herdam versão/revisão/url do pai e não têm tamanho instalado próprio
                for sp in info.split_packages:
                    sp = dataclasses.replace(sp, url=info.url)
                    db.add_entry(CatalogEntry(sp, filepath, download_size, 0, db))
            else:
                db.add_entry(CatalogEntry(info, filepath, download_size, installed_size, db))
        return db

    def add_entry(self, entry: CatalogEntry) -> None:
        if entry.database is not self:
            entry = dataclasses.replace(entry, database=self)
        self.entries[entry.name] = entry
        for vpkg in entry.info.provides:
            self.virtual_packages.setdefault(vpkg, []).append(entry)

    def contains(self, name: str) -> bool:
        return name in self.entries

    def package_url(self, entry: CatalogEntry) -> str:
        return source_url(self.source, entry.filepath)

    def fetch_package(self, name: str, cache_dir: Path) -> Path:
        """Baixa o arquivo do pacote para cache_dir e devolve o caminho local."""
        entry = self.entries.get(name)
        if entry is None:
            raise TransportError(f"Pacote {name} não existe na base {self.name}")
        url = self.package_url(entry)
        cache_dir = Path(cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        dest = cache_dir / PurePosixPath(entry.filepath).name
        log.info("Baixando %s: %s", name, url)
        tmp = dest.with_name(dest.name + ".part")
        try:
            with urlopen(url, timeout=60) as r, tmp.open("wb") as f:
                shutil.copyfileobj(r, f)
        except (URLError, OSError, ValueError) as e:
            tmp.unlink(missing_ok=True)
            raise TransportError(f"Falha no download: {url} ({e})")
        tmp.replace(dest)
        return dest


class Catalog:
    def __init__(self, databases: Optional[Iterable[Database]] = None):
        self.databases: List[Database] = list(databases or [])

    def add(self, database: Database) -> None:
        self.databases.append(database)

    def database(self, name: str) -> Optional[Database]:
        for db in self.databases:
            if db.name == name:
                return db
        return None

    def get(self, name: str) -> Optional[CatalogEntry]:
        """Busca exata; aceita também 'base/nome'."""
        parts = name.split("/")
        if len(parts) == 1:
            pkg = parts[0].strip()
            if not pkg:
                return None
            for db in self.databases:
                if db.contains(pkg):
                    return db.entries[pkg]
            return None
        if len(parts) == 2:
            db = self.database(parts[0].strip())
            pkg = parts[1].strip()
            if db is None or not pkg:
                return None
            return db.entries.get(pkg)
        return None

    def providers(self, virtual: str) -> List[CatalogEntry]:
        out: List[CatalogEntry] = []
        for db in self.databases:
            out.extend(db.virtual_packages.get(virtual, []))
        return out

    def resolve_virtual(self, virtual: str) -> Optional[CatalogEntry]:
        providers = self.providers(virtual)
        return providers[0] if providers else None

    def lookup(self, name: str) -> Optional[CatalogEntry]:
        entry = self.get(name)
        if entry is None:
            entry = self.resolve_virtual(name)
        return entry

    def find_replacement(self, name: str) -> Optional[CatalogEntry]:
        for entry in self.entries():
            if name in entry.info.replaces:
                return entry
        return None

    def entries(self) -> List[CatalogEntry]:
        out: List[CatalogEntry] = []
        for db in self.databases:
            out.extend(db.entries.values())
        return out

    def dependants(self, name: str, include_optional: bool = False) -> List[str]:
        """Entradas do catálogo que dependem de name (ou de algum provides de name)."""
        targets = {name}
        entry = self.get(name)
        if entry is not None:
            targets.update(entry.info.provides)
        out: List[str] = []
        for e in self.entries():
            if e.name == name or e.name in out:
                continue
            if targets.intersection(e.info.dependencies(include_optional=include_optional)):
                out.append(e.name)
        return out

    # ----------------------------
    # Carga e sincronização
    # ----------------------------

    @classmethod
    def load(cls, config: BPMConfig, databases_dir: Path = BPM_DATABASES_DIR) -> "Catalog":
        catalog = cls()
        for dbconf in config.enabled_databases:
            db_file = Path(databases_dir) / f"{dbconf.name}.bpmdb"
            if not db_file.is_file():
                log.debug("Base %s ainda não sincronizada: %s", dbconf.name, db_file)
                continue
            catalog.add(Database.from_yaml(dbconf.name, dbconf.source, read_text_file(db_file)))
        return catalog

    @classmethod
    def sync(cls, config: BPMConfig, databases_dir: Path = BPM_DATABASES_DIR) -> "Catalog":
        """Baixa <source>/database.bpmdb de cada base habilitada, valida e grava; devolve o catálogo recarregado."""
        databases_dir = Path(databases_dir)
        databases_dir.mkdir(parents=True, exist_ok=True)
        for dbconf in config.enabled_databases:
            url = source_url(dbconf.source, "database.bpmdb")
            log.info("Sincronizando %s: %s", dbconf.name, url)
            data = _download(url)
            text = decode_text(data, url)
            # valida antes de substituir a cópia local
            Database.from_yaml(dbconf.name, dbconf.source, text)
            dest = databases_dir / f"{dbconf.name}.bpmdb"
            tmp = dest.with_name(dest.name + ".tmp")
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(dest)
        return cls.load(config, databases_dir)
