from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

from .errors import FormatError

# ----------------------------
# Config e diretórios
# ----------------------------

BPM_CONFIG_PATH = Path(os.environ.get("BPM_CONFIG", "/etc/bpm.conf"))
BPM_DATABASES_DIR = Path(os.environ.get("BPM_DATABASES_DIR", "/var/lib/bpm/databases"))

# relativos à raiz da operação
BPM_STATE_DIR = Path("var/lib/bpm")
BPM_INSTALLED_DIR = BPM_STATE_DIR / "installed"
BPM_HOOKS_DIR = BPM_STATE_DIR / "hooks"
BPM_LOCK_FILE = BPM_STATE_DIR / "bpm.lock"
BPM_FETCH_CACHE = Path("var/cache/bpm/fetched")


@dataclass
class DatabaseConfig:
    name: str
    source: str
    disabled: bool = False

    @staticmethod
    def from_config(obj: Any) -> "DatabaseConfig":
        if not isinstance(obj, dict):
            raise FormatError("Entrada de databases inválida: esperado dict")
        name = str(obj.get("name") or "").strip()
        source = str(obj.get("source") or "").strip()
        if not name or not source:
            raise FormatError("databases: name e source são obrigatórios")
        return DatabaseConfig(name=name, source=source, disabled=bool(obj.get("disabled", False)))


@dataclass
class BPMConfig:
    ignore_packages: List[str] = field(default_factory=list)
    cleanup_make_dependencies: bool = True
    databases: List[DatabaseConfig] = field(default_factory=list)

    @staticmethod
    def from_config(obj: Any) -> "BPMConfig":
        if obj is None:
            return BPMConfig()
        if not isinstance(obj, dict):
            raise FormatError("Configuração inválida: esperado dict")

        ignore = obj.get("ignore_packages", []) or []
        if isinstance(ignore, str):
            ignore = [ignore]
        if not isinstance(ignore, list):
            raise FormatError("ignore_packages deve ser lista ou string")

        dbs = obj.get("databases", []) or []
        if not isinstance(dbs, list):
            raise FormatError("databases deve ser uma lista")

        return BPMConfig(
            ignore_packages=[str(x).strip() for x in ignore if str(x).strip()],
            cleanup_make_dependencies=bool(obj.get("cleanup_make_dependencies", True)),
            databases=[DatabaseConfig.from_config(d) for d in dbs],
        )

    @property
    def enabled_databases(self) -> List[DatabaseConfig]:
        return [d for d in self.databases if not d.disabled]


def load_config(path: Optional[Path] = None) -> BPMConfig:
    """Lê o YAML de configuração; arquivo ausente = defaults."""
    path = Path(path) if path is not None else BPM_CONFIG_PATH
    if not path.exists():
        return BPMConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise FormatError(f"Configuração inválida em {path}: {e}")
    return BPMConfig.from_config(data)
