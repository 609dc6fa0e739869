"""
Pacotes bpm: metadados (pkg.info), manifesto (pkg.files) e leitura de arquivos .bpm.

Um arquivo .bpm é um tar sem compressão contendo:
  - pkg.info      metadados YAML
  - pkg.files     manifesto: "<path> <perms-octal> <uid> <gid> <tamanho>", diretórios com '/'
  - files.tar.gz  árvore de arquivos (apenas pacotes binary)
  - scripts opcionais: pre_install.sh, post_install.sh, pre_update.sh,
    post_update.sh, pre_remove.sh, post_remove.sh
"""
from __future__ import annotations

import re
import tarfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import FormatError

PACKAGE_SCRIPTS = (
    "pre_install.sh",
    "post_install.sh",
    "pre_update.sh",
    "post_update.sh",
    "pre_remove.sh",
    "post_remove.sh",
)
PACKAGE_TYPES = ("source", "binary")
NAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")


class InstallationReason(str, Enum):
    MANUAL = "manual"
    DEPENDENCY = "dependency"
    MAKE_DEPENDENCY = "make_dependency"
    OPTIONAL_DEPENDENCY = "optional_dependency"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: Any) -> "InstallationReason":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def label(self) -> str:
        return {
            InstallationReason.MANUAL: "Manual",
            InstallationReason.DEPENDENCY: "Dependency",
            InstallationReason.MAKE_DEPENDENCY: "Make dependency",
            InstallationReason.OPTIONAL_DEPENDENCY: "Optional dependency",
        }.get(self, "Unknown")


# ----------------------------
# Metadados
# ----------------------------

@dataclass(frozen=True)
class PackageInfo:
    name: str
    description: str
    version: str
    revision: int
    architecture: str
    type: str
    url: str = ""
    license: str = ""
    maintainers: Tuple[str, ...] = ()
    depends: Tuple[str, ...] = ()
    make_depends: Tuple[str, ...] = ()
    optional_depends: Tuple[str, ...] = ()  # "nome" ou "nome: motivo"
    check_depends: Tuple[str, ...] = ()
    conflicts: Tuple[str, ...] = ()
    replaces: Tuple[str, ...] = ()
    provides: Tuple[str, ...] = ()
    keep: Tuple[str, ...] = ()
    split_packages: Tuple["PackageInfo", ...] = field(default=(), repr=False)

    @property
    def full_version(self) -> str:
        return f"{self.version}-{self.revision}"

    @property
    def is_split_package(self) -> bool:
        return self.type == "source" and len(self.split_packages) > 0

    def split_package(self, name: str) -> Optional["PackageInfo"]:
        for sp in self.split_packages:
            if sp.name == name:
                return sp
        return None

    def optional_depends_names(self) -> List[str]:
        return [split_optional_depend(d)[0] for d in self.optional_depends]

    def dependencies(
        self,
        include_make: bool = False,
        include_check: bool = False,
        include_optional: bool = False,
        include_runtime: bool = True,
    ) -> List[str]:
        out: List[str] = []
        if include_runtime:
            out.extend(self.depends)
        if include_make:
            out.extend(self.make_depends)
        if include_check:
            out.extend(self.check_depends)
        if include_optional:
            out.extend(self.optional_depends_names())
        return out

    def is_kept(self, path: str) -> bool:
        """True se path (relativo à raiz) está na lista keep: arquivo exato ou subárvore 'dir/'."""
        for k in self.keep:
            if k.endswith("/"):
                if path.startswith(k) or path == k.rstrip("/"):
                    return True
            elif path == k:
                return True
        return False

    def to_mapping(self) -> Dict[str, Any]:
        """Forma serializável (mesmo formato do pkg.info); listas vazias são omitidas."""
        out: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "revision": self.revision,
        }
        if self.url:
            out["url"] = self.url
        if self.license:
            out["license"] = self.license
        out["architecture"] = self.architecture
        out["type"] = self.type
        for key in (
            "maintainers", "depends", "make_depends", "optional_depends", "check_depends",
            "conflicts", "replaces", "provides", "keep",
        ):
            values = getattr(self, key)
            if values:
                out[key] = list(values)
        if self.split_packages:
            out["split_packages"] = [sp.to_mapping() for sp in self.split_packages]
        return out

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_mapping(), sort_keys=False, allow_unicode=True)


def split_optional_depend(value: str) -> Tuple[str, str]:
    name, _, reason = value.partition(":")
    return name.strip(), reason.strip()


def _list(data: Dict[str, Any], key: str) -> Tuple[str, ...]:
    v = data.get(key, [])
    if v is None:
        return ()
    if isinstance(v, list):
        if not all(isinstance(x, (str, int, float)) for x in v):
            raise FormatError(f"{key} deve ser uma lista de strings")
        return tuple(str(x).strip() for x in v if str(x).strip())
    # permitir string única
    if isinstance(v, (str, int, float)):
        return (str(v).strip(),)
    raise FormatError(f"{key} deve ser lista ou string")


def package_info_from_mapping(data: Any) -> PackageInfo:
    if not isinstance(data, dict):
        raise FormatError("Metadados inválidos: esperado um mapeamento YAML")

    def _str(key: str) -> str:
        v = data.get(key)
        return "" if v is None else str(v).strip()

    name = _str("name")
    if not name:
        raise FormatError("Pacote sem nome (name)")
    if not NAME_RE.match(name):
        raise FormatError(f"Nome de pacote inválido: {name!r}")
    for k in ("description", "version", "architecture", "type"):
        if not _str(k):
            raise FormatError(f"Campo obrigatório ausente em {name}: {k}")

    raw_rev = data.get("revision", 1)
    if isinstance(raw_rev, bool):
        raise FormatError(f"revision inválida em {name}: {raw_rev!r}")
    try:
        revision = int(raw_rev)
    except (TypeError, ValueError):
        raise FormatError(f"revision inválida em {name}: {raw_rev!r}")
    if revision <= 0:
        raise FormatError(f"revision de {name} deve ser maior que 0")

    ptype = _str("type").lower()
    if ptype not in PACKAGE_TYPES:
        raise FormatError(f"type inválido em {name}: {ptype!r} (esperado: source|binary)")

    keep = _list(data, "keep")
    for k in keep:
        if k.startswith("/"):
            raise FormatError(f"Entrada keep não pode começar com '/': {k}")

    split_raw = data.get("split_packages") or []
    if not isinstance(split_raw, list):
        raise FormatError(f"split_packages inválido em {name}")
    splits: List[PackageInfo] = []
    for raw in split_raw:
        if not isinstance(raw, dict):
            raise FormatError(f"split_packages de {name} deve conter mapeamentos")
        # split herda tudo do pai, sobrescreve com os próprios campos e mantém versão/revisão do pai
        merged = {k: v for k, v in data.items() if k != "split_packages"}
        merged.update(raw)
        merged["version"] = data.get("version")
        merged["revision"] = revision
        merged.pop("split_packages", None)
        splits.append(package_info_from_mapping(merged))

    return PackageInfo(
        name=name,
        description=_str("description"),
        version=_str("version"),
        revision=revision,
        architecture=_str("architecture"),
        type=ptype,
        url=_str("url"),
        license=_str("license"),
        maintainers=_list(data, "maintainers"),
        depends=_list(data, "depends"),
        make_depends=_list(data, "make_depends"),
        optional_depends=_list(data, "optional_depends"),
        check_depends=_list(data, "check_depends"),
        conflicts=_list(data, "conflicts"),
        replaces=_list(data, "replaces"),
        provides=_list(data, "provides"),
        keep=keep,
        split_packages=tuple(splits),
    )


class MetadataLoader(yaml.SafeLoader):
    """SafeLoader que mantém números, booleanos e datas como texto (version: 1.10 continua "1.10")."""


def _construct_text(loader: yaml.SafeLoader, node: yaml.Node) -> str:
    return loader.construct_scalar(node)


for _tag in ("bool", "int", "float", "timestamp"):
    MetadataLoader.add_constructor(f"tag:yaml.org,2002:{_tag}", _construct_text)


def load_metadata(text: str) -> Any:
    return yaml.load(text, Loader=MetadataLoader)


def decode_text(data: bytes, what: Any) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"{what} não é UTF-8 válido: {e}")


def read_text_file(path: Path) -> str:
    return decode_text(Path(path).read_bytes(), path)


def parse_package_info(text: str) -> PackageInfo:
    try:
        data = load_metadata(text)
    except yaml.YAMLError as e:
        raise FormatError(f"pkg.info inválido: {e}")
    return package_info_from_mapping(data)


# ----------------------------
# Manifesto
# ----------------------------

@dataclass(frozen=True)
class PackageFileEntry:
    path: str  # relativo à raiz, sem '/' no início ou no fim
    perms: int
    uid: int
    gid: int
    size: int
    is_dir: bool = False

    def to_line(self) -> str:
        suffix = "/" if self.is_dir else ""
        return f"{self.path}{suffix} {self.perms:04o} {self.uid} {self.gid} {self.size}"


def parse_files_manifest(text: str, legacy: bool = False) -> List[PackageFileEntry]:
    """
    Lê um manifesto pkg.files.
    legacy=True aceita linhas sem os quatro campos numéricos (registros antigos),
    com metadados zerados; fora desse modo a linha é rejeitada.
    """
    entries: List[PackageFileEntry] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        fields = stripped.split(" ")
        if len(fields) < 5:
            if not legacy:
                raise FormatError(f"pkg.files malformado na linha {lineno}: {stripped!r}")
            entries.append(PackageFileEntry(
                path=stripped.strip("/"), perms=0, uid=0, gid=0, size=0, is_dir=stripped.endswith("/"),
            ))
            continue
        raw_path = " ".join(fields[:-4])
        try:
            perms = int(fields[-4], 8)
            uid = int(fields[-3])
            gid = int(fields[-2])
            size = int(fields[-1])
        except ValueError:
            raise FormatError(f"pkg.files malformado na linha {lineno}: {stripped!r}")
        entries.append(PackageFileEntry(
            path=raw_path.strip("/"), perms=perms, uid=uid, gid=gid, size=size, is_dir=raw_path.endswith("/"),
        ))
    return entries


def format_files_manifest(entries: List[PackageFileEntry]) -> str:
    return "".join(e.to_line() + "\n" for e in entries)


@dataclass(frozen=True)
class BPMPackage:
    info: PackageInfo
    files: Tuple[PackageFileEntry, ...] = ()

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def installed_size(self) -> int:
        return sum(e.size for e in self.files)


# ----------------------------
# Arquivos .bpm
# ----------------------------

def clean_member_path(name: str) -> str:
    """'./usr/bin/' -> 'usr/bin'; '/etc/x' -> 'etc/x'."""
    name = name.lstrip("/")
    while name.startswith("./"):
        name = name[2:].lstrip("/")
    return name.rstrip("/")


def member_name(m: tarfile.TarInfo) -> str:
    return clean_member_path(m.name)


def open_archive(archive: Path) -> tarfile.TarFile:
    try:
        return tarfile.open(archive, "r:*")
    except tarfile.TarError as e:
        raise FormatError(f"Arquivo de pacote inválido {archive}: {e}")


def read_archive_member(archive: Path, member: str) -> Optional[bytes]:
    with open_archive(archive) as tf:
        try:
            for m in tf.getmembers():
                if member_name(m) == member and m.isfile():
                    f = tf.extractfile(m)
                    return f.read() if f is not None else b""
        except tarfile.TarError as e:
            raise FormatError(f"Arquivo de pacote inválido {archive}: {e}")
    return None


def read_package_info_raw(archive: Path) -> str:
    data = read_archive_member(archive, "pkg.info")
    if data is None:
        raise FormatError(f"pkg.info não encontrado em {archive}")
    return decode_text(data, f"pkg.info de {archive}")


def read_files_manifest_raw(archive: Path) -> str:
    data = read_archive_member(archive, "pkg.files")
    return "" if data is None else decode_text(data, f"pkg.files de {archive}")


def read_package(archive: Path) -> BPMPackage:
    archive = Path(archive)
    info = parse_package_info(read_package_info_raw(archive))
    files = parse_files_manifest(read_files_manifest_raw(archive))
    return BPMPackage(info=info, files=tuple(files))


def read_package_scripts(archive: Path) -> Dict[str, str]:
    scripts: Dict[str, str] = {}
    with open_archive(archive) as tf:
        try:
            for m in tf.getmembers():
                name = member_name(m)
                if name in PACKAGE_SCRIPTS and m.isfile():
                    f = tf.extractfile(m)
                    scripts[name] = decode_text(f.read(), f"{name} de {archive}") if f is not None else ""
        except tarfile.TarError as e:
            raise FormatError(f"Arquivo de pacote inválido {archive}: {e}")
    return scripts
