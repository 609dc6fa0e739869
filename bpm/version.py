"""rpm-style version comparison."""
from __future__ import annotations

import re
from typing import List, Tuple

_SEGMENT_RE = re.compile(r"~|[0-9]+|[a-zA-Z]+")


def _segments(version: str) -> List[str]:
    return _SEGMENT_RE.findall(version)


def compare_versions(a: str, b: str) -> int:
    """
    Compara duas versões segmento a segmento (estilo rpmvercmp).
      - números comparados numericamente, sem zeros à esquerda
      - segmento numérico é mais novo que alfabético
      - '~' ordena antes de tudo (pré-release)
      - com prefixo comum igual, a versão com mais segmentos é mais nova
    Retorna -1, 0 ou 1.
    """
    if a == b:
        return 0
    sa, sb = _segments(a), _segments(b)
    i = 0
    while i < len(sa) and i < len(sb):
        x, y = sa[i], sb[i]
        i += 1
        if x == "~" or y == "~":
            if x == y:
                continue
            return -1 if x == "~" else 1
        if x.isdigit() and y.isdigit():
            xi, yi = int(x), int(y)
            if xi != yi:
                return 1 if xi > yi else -1
            continue
        if x.isdigit() != y.isdigit():
            return 1 if x.isdigit() else -1
        if x != y:
            return 1 if x > y else -1

    rest_a, rest_b = sa[i:], sb[i:]
    if not rest_a and not rest_b:
        return 0
    # '~' restante indica versão anterior
    if rest_a and rest_a[0] == "~":
        return -1
    if rest_b and rest_b[0] == "~":
        return 1
    return 1 if rest_a else -1


def split_full_version(full_version: str) -> Tuple[str, int]:
    version, sep, revision = full_version.rpartition("-")
    if not sep or not revision.isdigit():
        return full_version, 0
    return version, int(revision)


def compare_full_versions(a: str, b: str) -> int:
    va, ra = split_full_version(a)
    vb, rb = split_full_version(b)
    result = compare_versions(va, vb)
    if result != 0:
        return result
    if ra == rb:
        return 0
    return 1 if ra > rb else -1
