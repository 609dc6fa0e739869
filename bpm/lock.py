from __future__ import annotations

import contextlib
import fcntl
import logging
import os
from pathlib import Path
from typing import IO, Iterator

from .config import BPM_LOCK_FILE
from .errors import LockHeldError

log = logging.getLogger(__name__)


def _same_file(lf: IO[str], lock_path: Path) -> bool:
    try:
        on_disk = os.stat(lock_path)
    except FileNotFoundError:
        return False
    held = os.fstat(lf.fileno())
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


@contextlib.contextmanager
def root_lock(root: Path) -> Iterator[Path]:
    """
    Lock exclusivo por raiz: uma operação do bpm por vez (install/remove/cleanup/update/sync).
    Não espera: se outro processo segura o lock, falha na hora com LockHeldError.
    O arquivo é removido (ainda travado) e fechado em qualquer saída.
    """
    lock_path = Path(root) / BPM_LOCK_FILE
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    while True:
        lf = lock_path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(lf.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lf.close()
            raise LockHeldError(str(lock_path))
        if _same_file(lf, lock_path):
            break
        # o dono anterior removeu o arquivo entre o open e o flock: tentar de novo no arquivo novo
        fcntl.flock(lf.fileno(), fcntl.LOCK_UN)
        lf.close()
    log.debug("Lock adquirido: %s", lock_path)
    try:
        yield lock_path
    finally:
        with contextlib.suppress(FileNotFoundError):
            lock_path.unlink()
        fcntl.flock(lf.fileno(), fcntl.LOCK_UN)
        lf.close()
        log.debug("Lock liberado: %s", lock_path)
