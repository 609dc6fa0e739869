"""
Hooks pós-operação (<raiz>/var/lib/bpm/hooks/*.bpmhook).

  trigger_operations: [install, upgrade, remove]
  target_type: package | path
  targets: [nome-ou-glob, ...]
  depends: [pacotes que precisam estar instalados]
  run: comando
"""
from __future__ import annotations

import fnmatch
import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

import yaml

from .config import BPM_HOOKS_DIR
from .errors import FormatError
from .installed import InstalledPackages

log = logging.getLogger(__name__)

VALID_OPERATIONS = ("install", "upgrade", "remove")
TARGET_TYPES = ("package", "path")


def _str_list(obj: Dict[str, Any], key: str) -> List[str]:
    v = obj.get(key) or []
    if isinstance(v, str):
        return [v]
    if not isinstance(v, list):
        raise FormatError(f"{key} deve ser lista ou string")
    return [str(x) for x in v]


def path_matches(path: str, pattern: str) -> bool:
    """Glob por segmento: '*' e '?' não atravessam '/'."""
    parts = path.strip("/").split("/")
    pats = pattern.strip("/").split("/")
    if len(parts) != len(pats):
        return False
    return all(fnmatch.fnmatchcase(p, pat) for p, pat in zip(parts, pats))


@dataclass
class Hook:
    source: Path
    trigger_operations: List[str]
    target_type: str
    run: str
    targets: List[str] = field(default_factory=list)
    depends: List[str] = field(default_factory=list)

    @staticmethod
    def from_file(path: Path) -> "Hook":
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise FormatError(f"Hook inválido {path}: {e}")
        if not isinstance(data, dict):
            raise FormatError(f"Hook inválido {path}: esperado dict")

        ops = _str_list(data, "trigger_operations")
        if not ops:
            raise FormatError(f"Hook {path}: nenhuma trigger_operation")
        for op in ops:
            if op not in VALID_OPERATIONS:
                raise FormatError(f"Hook {path}: trigger_operation inválida: {op}")
        target_type = str(data.get("target_type") or "")
        if target_type not in TARGET_TYPES:
            raise FormatError(f"Hook {path}: target_type inválido: {target_type!r}")
        run = str(data.get("run") or "").strip()
        if not run:
            raise FormatError(f"Hook {path}: run vazio")

        return Hook(
            source=Path(path),
            trigger_operations=ops,
            target_type=target_type,
            run=run,
            targets=_str_list(data, "targets"),
            depends=_str_list(data, "depends"),
        )

    def matches(self, changes: Dict[str, str], installed: InstalledPackages, changed_paths: Iterable[str]) -> bool:
        for dep in self.depends:
            if not installed.is_installed(dep):
                return False
        if self.target_type == "package":
            return any(
                changes.get(t) in self.trigger_operations
                for t in self.targets
            )
        triggering = any(op in self.trigger_operations for op in changes.values())
        if not triggering:
            return False
        paths = list(changed_paths)
        for target in self.targets:
            if any(path_matches(p, target) for p in paths):
                return True
        return False

    def execute(self, root: Path, verbose: bool = False) -> None:
        cmd = shlex.split(self.run)
        log.log(logging.INFO if verbose else logging.DEBUG, "Executando hook %s: %s", self.source.name, self.run)
        out = None if verbose else subprocess.DEVNULL
        p = subprocess.run(cmd, cwd=str(root), stdout=out, stderr=out)
        if p.returncode != 0:
            raise subprocess.CalledProcessError(p.returncode, cmd)


def load_hooks(root: Path) -> List[Hook]:
    hooks_dir = Path(root) / BPM_HOOKS_DIR
    if not hooks_dir.is_dir():
        return []
    hooks: List[Hook] = []
    for path in sorted(hooks_dir.glob("*.bpmhook")):
        if not path.is_file():
            continue
        try:
            hooks.append(Hook.from_file(path))
        except FormatError as e:
            log.warning("Hook ignorado: %s", e)
    return hooks


def run_hooks(
    changes: Dict[str, str],
    root: Path,
    installed: InstalledPackages,
    changed_paths: Iterable[str] = (),
    verbose: bool = False,
) -> List[Hook]:
    """Executa cada hook compatível uma vez; falhas viram warning. Retorna os hooks executados."""
    paths = list(changed_paths)
    ran: List[Hook] = []
    for hook in load_hooks(root):
        if not hook.matches(changes, installed, paths):
            continue
        try:
            hook.execute(Path(root), verbose)
        except (OSError, subprocess.CalledProcessError) as e:
            log.warning("Não foi possível executar o hook %s: %s", hook.source.name, e)
            continue
        ran.append(hook)
    return ran
