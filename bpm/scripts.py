"""Scripts de ciclo de vida dos pacotes (pre/post install, update, remove)."""
from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import PackageScriptError
from .package import PackageInfo

log = logging.getLogger(__name__)


def _bash_array(values: Iterable[str]) -> str:
    return "(" + " ".join(f'"{v}"' for v in values) + ")"


def script_env(info: PackageInfo, root: Path, old_info: Optional[PackageInfo] = None) -> Dict[str, str]:
    env = dict(os.environ)
    env.update({
        "BPM_ROOT": str(root),
        "BPM_PKG_NAME": info.name,
        "BPM_PKG_DESC": info.description,
        "BPM_PKG_VERSION": info.version,
        "BPM_PKG_REVISION": str(info.revision),
        "BPM_PKG_URL": info.url,
        "BPM_PKG_ARCH": info.architecture,
        "BPM_PKG_DEPENDS": _bash_array(info.depends),
        "BPM_PKG_MAKE_DEPENDS": _bash_array(info.make_depends),
        "BPM_PKG_TYPE": info.type,
    })
    if old_info is not None:
        env["BPM_PKG_OLD_VERSION"] = old_info.version
        env["BPM_PKG_OLD_REVISION"] = str(old_info.revision)
    return env


def run_package_script(
    script_name: str,
    content: str,
    info: PackageInfo,
    root: Path,
    old_info: Optional[PackageInfo] = None,
    verbose: bool = False,
) -> None:
    """
    Executa um script do pacote com bash -c, cwd na raiz da operação.
    Exit != 0 levanta PackageScriptError (aborta o restante da operação).
    """
    root = Path(root)
    log.log(logging.INFO if verbose else logging.DEBUG, "Executando %s de %s", script_name, info.name)
    out = None if verbose else subprocess.DEVNULL
    try:
        p = subprocess.run(
            ["bash", "-c", content],
            cwd=str(root),
            env=script_env(info, root, old_info),
            stdout=out,
            stderr=out,
        )
    except OSError as e:
        log.error("Não foi possível executar %s de %s: %s", script_name, info.name, e)
        raise PackageScriptError(info.name, script_name, -1)
    if p.returncode != 0:
        raise PackageScriptError(info.name, script_name, p.returncode)


def run_script_if_present(
    scripts: Dict[str, str],
    script_name: str,
    info: PackageInfo,
    root: Path,
    old_info: Optional[PackageInfo] = None,
    verbose: bool = False,
) -> bool:
    content = scripts.get(script_name)
    if content is None:
        return False
    run_package_script(script_name, content, info, root, old_info, verbose)
    return True
