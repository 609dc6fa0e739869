"""Registro de pacotes instalados"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from bpm.config import BPM_INSTALLED_DIR
from bpm.errors import FormatError
from bpm.installed import InstalledPackages
from bpm.package import InstallationReason, PackageFileEntry, package_info_from_mapping

from conftest import info_mapping


class TestRegistry:
    def test_empty_root(self, root: Path) -> None:
        installed = InstalledPackages(root)
        assert installed.names() == []
        assert installed.installation_reason("hello") is InstallationReason.UNKNOWN

    def test_write_and_reload(self, root: Path, record) -> None:
        record("hello", files={"usr/bin/hello": 10}, reason=InstallationReason.DEPENDENCY)
        installed = InstalledPackages(root)
        assert installed.names() == ["hello"]
        assert installed.installed_size("hello") == 10
        assert installed.installation_reason("hello") is InstallationReason.DEPENDENCY
        local = yaml.safe_load((root / BPM_INSTALLED_DIR / "hello" / "local").read_text())
        assert "installed_at" in local
        assert "updated_at" not in local

    def test_rewrite_keeps_reason_and_sets_updated_at(self, root: Path, record) -> None:
        record("hello", reason=InstallationReason.DEPENDENCY)
        installed = record("hello", version="2.0")
        assert installed.info("hello").version == "2.0"
        assert installed.installation_reason("hello") is InstallationReason.DEPENDENCY
        local = installed.read_local("hello")
        assert "updated_at" in local

    def test_missing_local_is_manual(self, root: Path, record) -> None:
        record("hello")
        (root / BPM_INSTALLED_DIR / "hello" / "local").unlink()
        assert InstalledPackages(root).installation_reason("hello") is InstallationReason.MANUAL

    def test_legacy_reason_file(self, root: Path, record) -> None:
        installed = record("hello")
        pkg_dir = root / BPM_INSTALLED_DIR / "hello"
        (pkg_dir / "local").unlink()
        (pkg_dir / "installation_reason").write_text("dependency\n")
        assert installed.installation_reason("hello") is InstallationReason.DEPENDENCY
        installed.set_installation_reason("hello", InstallationReason.MANUAL)
        assert not (pkg_dir / "installation_reason").exists()
        assert installed.installation_reason("hello") is InstallationReason.MANUAL

    def test_directory_without_info_is_skipped(self, root: Path, record) -> None:
        record("hello")
        (root / BPM_INSTALLED_DIR / "broken").mkdir()
        assert InstalledPackages(root).names() == ["hello"]

    def test_legacy_manifest_lines(self, root: Path, record) -> None:
        record("hello")
        (root / BPM_INSTALLED_DIR / "hello" / "files").write_text("usr/\nusr/bin/hello\n")
        pkg = InstalledPackages(root).get("hello")
        assert [e.path for e in pkg.files] == ["usr", "usr/bin/hello"]

    def test_invalid_utf8_info(self, root: Path, record) -> None:
        record("hello")
        (root / BPM_INSTALLED_DIR / "hello" / "info").write_bytes(b"name: ol\xff\n")
        with pytest.raises(FormatError, match="UTF-8"):
            InstalledPackages(root)

    def test_unquoted_version_in_registry(self, root: Path, record) -> None:
        record("hello")
        info_file = root / BPM_INSTALLED_DIR / "hello" / "info"
        info_file.write_text(info_file.read_text().replace("'1.0'", "1.10"))
        assert InstalledPackages(root).info("hello").version == "1.10"

    def test_remove_scripts_stored(self, root: Path) -> None:
        installed = InstalledPackages(root)
        info = package_info_from_mapping(info_mapping("hello"))
        installed.write_package(info, [], {"pre_remove.sh": "echo tchau"})
        assert installed.read_remove_script("hello", "pre_remove.sh") == "echo tchau"
        installed.write_package(info, [])
        assert installed.read_remove_script("hello", "pre_remove.sh") is None

    def test_delete_package(self, root: Path, record) -> None:
        installed = record("hello")
        installed.delete_package("hello")
        assert not installed.is_installed("hello")
        assert not (root / BPM_INSTALLED_DIR / "hello").exists()


class TestQueries:
    def test_virtual_provider(self, record) -> None:
        installed = record("openssl", provides=["libssl"])
        assert installed.virtual_provider("libssl") == "openssl"
        assert installed.is_provided("libssl")
        assert not installed.is_provided("libtls")

    def test_dependants_follow_provides(self, record) -> None:
        record("openssl", provides=["libssl"])
        record("curl", depends=["libssl"])
        record("wget", optional_depends=["openssl: https"])
        installed = record("vim")
        assert installed.dependants("openssl") == ["curl", "wget"]
        assert installed.dependants("openssl", include_optional=False) == ["curl"]

    def test_all_dependencies_postorder_with_cycle(self, record) -> None:
        record("a", depends=["b"])
        record("b", depends=["c", "a"])
        installed = record("c")
        assert installed.all_dependencies(installed.info("a")) == ["c", "a", "b"]

    def test_all_dependencies_resolves_virtual(self, record) -> None:
        record("openssl", provides=["libssl"])
        installed = record("curl", depends=["libssl", "missing"])
        assert installed.all_dependencies(installed.info("curl")) == ["openssl", "curl"]

    def test_all_package_files(self, record) -> None:
        record("a", files={"usr/share/common": 1, "usr/bin/a": 1})
        installed = record("b", files={"usr/share/common": 1})
        owners = installed.all_package_files(exclude=["a"])
        assert [p.name for p in owners["usr/share/common"]] == ["b"]
        assert "usr/bin/a" not in owners
        assert PackageFileEntry("usr/share/common", 0o644, 0, 0, 1) in installed.get("a").files
