"""Comparação de versões"""

from __future__ import annotations

import pytest

from bpm.version import compare_full_versions, compare_versions, split_full_version


@pytest.mark.parametrize("a,b,expected", [
    ("1.0", "1.0", 0),
    ("1.01", "1.1", 0),
    ("2.0", "10.0", -1),
    ("1.0.1", "1.0", 1),
    ("1.0", "1.0.0", -1),
    ("1.0a", "1.0", 1),
    ("1.0b", "1.0a", 1),
    ("1.a", "1.1", -1),
    ("1.0~rc1", "1.0", -1),
    ("1.0~rc1", "1.0~rc2", -1),
    ("1.0", "1.0~beta", 1),
])
def test_compare_versions(a: str, b: str, expected: int) -> None:
    assert compare_versions(a, b) == expected
    assert compare_versions(b, a) == -expected


def test_split_full_version() -> None:
    assert split_full_version("1.2.3-4") == ("1.2.3", 4)
    assert split_full_version("2024-rc-2") == ("2024-rc", 2)
    assert split_full_version("1.0") == ("1.0", 0)


def test_revision_breaks_ties() -> None:
    assert compare_full_versions("1.0-2", "1.0-1") == 1
    assert compare_full_versions("1.0-1", "1.0-1") == 0
    # versão manda sobre revisão
    assert compare_full_versions("1.1-1", "1.0-9") == 1
