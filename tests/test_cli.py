"""Linha de comando"""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from bpm.cli import main
from bpm.config import BPM_LOCK_FILE

from conftest import Repo


def _args(root: Path, tmp_path: Path, *rest: str) -> List[str]:
    return [
        "-R", str(root),
        "--config", str(tmp_path / "bpm.conf"),
        "--databases-dir", str(tmp_path / "databases"),
        *rest,
    ]


def test_install_list_remove(root: Path, tmp_path: Path, make_package, capsys) -> None:
    archive = make_package("hello", files={"usr/bin/hello": "oi"})
    main(_args(root, tmp_path, "-y", "install", str(archive)))
    assert (root / "usr/bin/hello").exists()
    assert not (root / BPM_LOCK_FILE).exists()

    capsys.readouterr()
    main(_args(root, tmp_path, "list"))
    assert capsys.readouterr().out.strip() == "hello 1.0-1 (Manual)"

    main(_args(root, tmp_path, "info", "hello"))
    out = capsys.readouterr().out
    assert "Nome: hello" in out
    assert "Motivo da instalação: Manual" in out

    main(_args(root, tmp_path, "-y", "remove", "hello"))
    assert not (root / "usr/bin/hello").exists()


def test_errors_exit(root: Path, tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        main(_args(root, tmp_path, "-y", "remove", "ghost"))
    assert "ghost" in str(exc.value.code)


def test_sync_and_catalog_info(root: Path, tmp_path: Path, repo: Repo, capsys) -> None:
    repo.add("hello", description="diz oi")
    repo.add("hello-extra", depends=["hello"])
    repo.publish()
    (tmp_path / "bpm.conf").write_text(f"databases:\n  - name: main\n    source: {repo.source}\n")
    main(_args(root, tmp_path, "sync"))
    assert (tmp_path / "databases" / "main.bpmdb").is_file()

    capsys.readouterr()
    main(_args(root, tmp_path, "info", "--catalog", "hello"))
    out = capsys.readouterr().out
    assert "Descrição: diz oi" in out
    assert "Base: main" in out
    assert "Dependentes no catálogo: hello-extra" in out


def test_declined_confirmation(root: Path, tmp_path: Path, make_package, monkeypatch) -> None:
    archive = make_package("hello", files={"usr/bin/hello": "oi"})
    monkeypatch.setattr("builtins.input", lambda _: "n")
    main(_args(root, tmp_path, "install", str(archive)))
    assert not (root / "usr/bin/hello").exists()


def test_os_errors_exit(root: Path, tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["-R", str(root), "--config", str(tmp_path), "list"])
    assert str(exc.value.code).startswith("Erro:")
