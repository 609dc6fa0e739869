"""Bases de pacotes e catálogo"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from bpm.catalog import Catalog, Database, source_url
from bpm.config import BPMConfig, DatabaseConfig
from bpm.errors import FormatError, TransportError

from conftest import Repo, info_mapping


def _db(name: str, entries: dict) -> Database:
    return Database.from_yaml(name, f"/srv/{name}", yaml.safe_dump({"database_version": 1, "entries": entries}))


def _entry(name: str, **fields) -> dict:
    return {"info": info_mapping(name, **fields), "filepath": f"binary/{name}.bpm", "download_size": 100, "installed_size": 400}


class TestDatabase:
    def test_from_yaml(self) -> None:
        db = _db("core", {"hello": _entry("hello", provides=["greeter"])})
        entry = db.entries["hello"]
        assert entry.database is db
        assert entry.database_name == "core"
        assert (entry.download_size, entry.installed_size) == (100, 400)
        assert db.virtual_packages["greeter"] == [entry]

    def test_unquoted_version_kept_as_text(self) -> None:
        text = (
            "entries:\n"
            "  hello:\n"
            "    filepath: binary/hello.bpm\n"
            "    download_size: 10\n"
            "    info:\n"
            "      name: hello\n"
            "      description: oi\n"
            "      version: 2.10\n"
            "      architecture: any\n"
            "      type: binary\n"
        )
        entry = Database.from_yaml("core", "/srv/core", text).entries["hello"]
        assert entry.info.version == "2.10"
        assert entry.download_size == 10

    def test_split_packages_expanded(self) -> None:
        src = _entry(
            "suite",
            type="source",
            url="https://example.org/suite",
            split_packages=[
                {"name": "suite-core", "description": "núcleo", "url": "https://outro"},
                {"name": "suite-extra", "description": "extras"},
            ],
        )
        db = _db("core", {"suite": src})
        assert sorted(db.entries) == ["suite-core", "suite-extra"]
        core = db.entries["suite-core"]
        assert core.info.url == "https://example.org/suite"
        assert core.filepath == "binary/suite.bpm"
        assert core.installed_size == 0
        assert core.download_size == 100

    @pytest.mark.parametrize("text", ["- nao e mapa\n", "entries: [1, 2]\n", "entries:\n  x:\n    info: {}\n"])
    def test_invalid_descriptor(self, text: str) -> None:
        with pytest.raises(FormatError):
            Database.from_yaml("bad", "/srv/bad", text)

    def test_entry_without_filepath(self) -> None:
        raw = _entry("hello")
        del raw["filepath"]
        with pytest.raises(FormatError, match="filepath"):
            _db("core", {"hello": raw})


class TestCatalog:
    @pytest.fixture()
    def catalog(self) -> Catalog:
        core = _db("core", {
            "hello": _entry("hello"),
            "openssl": _entry("openssl", provides=["libssl"]),
            "newtool": _entry("newtool", replaces=["oldtool"]),
        })
        extra = _db("extra", {
            "hello": _entry("hello", version="2.0"),
            "libressl": _entry("libressl", provides=["libssl"]),
            "curl": _entry("curl", depends=["libssl"]),
        })
        return Catalog([core, extra])

    def test_first_database_wins(self, catalog: Catalog) -> None:
        assert catalog.get("hello").info.version == "1.0"
        assert catalog.get("extra/hello").info.version == "2.0"
        assert catalog.get("nope/hello") is None
        assert catalog.get("a/b/c") is None
        assert catalog.get("") is None

    def test_virtual_providers(self, catalog: Catalog) -> None:
        assert [e.name for e in catalog.providers("libssl")] == ["openssl", "libressl"]
        assert catalog.resolve_virtual("libssl").name == "openssl"
        assert catalog.lookup("libssl").name == "openssl"
        assert catalog.lookup("missing") is None

    def test_find_replacement(self, catalog: Catalog) -> None:
        assert catalog.find_replacement("oldtool").name == "newtool"
        assert catalog.find_replacement("hello") is None

    def test_dependants(self, catalog: Catalog) -> None:
        assert catalog.dependants("openssl") == ["curl"]


class TestLoadAndSync:
    def test_source_url(self, tmp_path: Path) -> None:
        assert source_url("https://repo.example.org/core/", "binary/a b.bpm") == "https://repo.example.org/core/binary/a%20b.bpm"
        assert source_url(str(tmp_path), "database.bpmdb") == tmp_path.resolve().as_uri() + "/database.bpmdb"

    def test_load_skips_unsynced(self, tmp_path: Path, repo: Repo) -> None:
        repo.add("hello")
        dbdir = tmp_path / "databases"
        dbdir.mkdir()
        (dbdir / "main.bpmdb").write_text(repo.descriptor())
        config = BPMConfig(databases=[
            DatabaseConfig("main", str(repo.source)),
            DatabaseConfig("other", "/srv/other"),
            DatabaseConfig("off", "/srv/off", disabled=True),
        ])
        catalog = Catalog.load(config, dbdir)
        assert [db.name for db in catalog.databases] == ["main"]
        assert catalog.get("hello") is not None

    def test_sync_from_local_directory(self, tmp_path: Path, repo: Repo) -> None:
        repo.add("hello")
        repo.publish()
        config = BPMConfig(databases=[DatabaseConfig("main", str(repo.source))])
        catalog = Catalog.sync(config, tmp_path / "databases")
        assert (tmp_path / "databases" / "main.bpmdb").is_file()
        assert catalog.get("hello") is not None

    def test_sync_unreachable_source(self, tmp_path: Path) -> None:
        config = BPMConfig(databases=[DatabaseConfig("main", str(tmp_path / "nao-existe"))])
        with pytest.raises(TransportError):
            Catalog.sync(config, tmp_path / "databases")
        assert not (tmp_path / "databases" / "main.bpmdb").exists()

    def test_fetch_package(self, tmp_path: Path, repo: Repo) -> None:
        archive = repo.add("hello")
        db = repo.database()
        dest = db.fetch_package("hello", tmp_path / "cache")
        assert dest.read_bytes() == archive.read_bytes()
        with pytest.raises(TransportError):
            db.fetch_package("nope", tmp_path / "cache")
