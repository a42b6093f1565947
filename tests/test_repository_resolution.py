from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from prm_core.lock import PackageLock
from prm_core.repository import Repository
from prm_core.sources.cache import JsonCacheStore
from prm_core.sources.models import LOCAL, RemoteOrigin
from prm_core.sources.repositories import DirectoryRepository


def _package_dir(root: Path, name: str, version: str, body: str = "payload") -> Path:
    path = root / f"{name}-{version}"
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.yml").write_text(f"name: {name}\nversion: {version}\n", encoding="utf-8")
    (path / "data.txt").write_text(f"{body} {version}\n", encoding="utf-8")
    return path


def _published_index(tmp_path: Path, versions: list[str]) -> Path:
    publisher = Repository(tmp_path / "publisher")
    for version in versions:
        publisher.install_from_dir(_package_dir(tmp_path / "work", "demo", version))
    index_dir = tmp_path / "index"
    publisher.index_all(index_dir)
    return index_dir


def _consumer(tmp_path: Path, *sources) -> Repository:
    return Repository(
        tmp_path / "home",
        sources=sources,
        cache_store=JsonCacheStore(tmp_path / "cache.json"),
    )


class _FakeSource:
    def __init__(self, source: str, versions: dict[str, dict], archive: Path | None = None) -> None:
        self.source = source
        self.versions = versions
        self.archive = archive
        self.downloads: list[tuple[str, str]] = []

    def get_versions(self, name: str) -> dict[str, dict]:
        del name
        return dict(self.versions)

    def download_to(self, name: str, version: str, dest: Path) -> bool:
        self.downloads.append((name, version))
        if self.archive is None:
            return False
        shutil.copyfile(self.archive, dest)
        return True


def test_remote_version_wins_and_is_downloaded(tmp_path: Path) -> None:
    index_dir = _published_index(tmp_path, ["1.3.0"])
    remote = DirectoryRepository(index_dir)
    repo = _consumer(tmp_path, remote)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.0.0"))
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.2.0"))

    package = repo.find_package("demo", "^1.0.0")

    assert package is not None
    assert package.version == "1.3.0"
    assert package.info["repo"] == remote.source
    assert (repo.version_dir("demo", "1.3.0") / "data.txt").read_text(encoding="utf-8") == "payload 1.3.0\n"
    assert repo.get_version_info("demo", "1.3.0")["repo"] == remote.source
    assert not repo.archive_path("demo", "1.3.0").exists()
    # once downloaded with matching metadata the version is local
    assert repo.get_package_versions("demo", only_local=False)["1.3.0"] == LOCAL


def test_lock_pin_prevents_download(tmp_path: Path) -> None:
    remote = _FakeSource("https://remote.test", {"1.3.0": {"size": 1, "sha256": "aa"}})
    repo = _consumer(tmp_path, remote)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.0.0"))
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.2.0"))

    package = repo.find_package("demo", "^1.0.0", PackageLock({"demo": "1.0.0"}))

    assert package is not None
    assert package.version == "1.0.0"
    assert remote.downloads == []


def test_incompatible_pin_is_ignored(tmp_path: Path) -> None:
    repo = _consumer(tmp_path)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.2.0"))

    package = repo.find_package("demo", "^1.0.0", PackageLock({"demo": "2.0.0"}))

    assert package is not None
    assert package.version == "1.2.0"


def test_failed_download_resolves_to_nothing(tmp_path: Path) -> None:
    remote = _FakeSource("https://remote.test", {"2.0.0": {}})
    repo = _consumer(tmp_path, remote)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.0.0"))

    assert repo.find_package("demo", "^2.0.0") is None
    assert remote.downloads == [("demo", "2.0.0")]
    assert not repo.archive_path("demo", "2.0.0").exists()
    assert not repo.version_dir("demo", "2.0.0").exists()
    assert not repo.info_path("demo", "2.0.0").exists()


def test_downloaded_archive_for_other_version_is_rejected(tmp_path: Path) -> None:
    index_dir = _published_index(tmp_path, ["1.3.0"])
    remote = _FakeSource("https://remote.test", {"1.4.0": {}}, archive=index_dir / "demo" / "1.3.0.tar.gz")
    repo = _consumer(tmp_path, remote)

    assert repo.find_package("demo", "1.4.0") is None
    assert not repo.version_dir("demo", "1.4.0").exists()
    assert not repo.version_dir("demo", "1.3.0").exists()


def test_differing_remote_description_forces_redownload(tmp_path: Path) -> None:
    index_dir = _published_index(tmp_path, ["1.2.0"])
    remote = DirectoryRepository(index_dir)
    repo = _consumer(tmp_path, remote)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.2.0", body="stale"))

    # no published description for the local copy: it stays local
    assert repo.get_package_versions("demo", only_local=False)["1.2.0"] == LOCAL

    (repo.info_path("demo", "1.2.0")).write_text('{"size": 1, "sha256": "00"}', encoding="utf-8")
    assert repo.get_package_versions("demo", only_local=False)["1.2.0"] == RemoteOrigin(remote.source)

    package = repo.find_package("demo", "1.2.0")
    assert package is not None
    assert (repo.version_dir("demo", "1.2.0") / "data.txt").read_text(encoding="utf-8") == "payload 1.2.0\n"


def test_only_local_listing_skips_sources(tmp_path: Path) -> None:
    remote = _FakeSource("https://remote.test", {"9.0.0": {}})
    repo = _consumer(tmp_path, remote)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.0.0"))

    assert repo.get_package_versions("demo") == {"1.0.0": LOCAL}
    assert repo.get_package_versions("missing") == {}


def test_non_semantic_local_versions_are_skipped(tmp_path: Path) -> None:
    repo = _consumer(tmp_path)
    repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.0.0"))
    unversioned = tmp_path / "local" / "demo-last"
    unversioned.mkdir(parents=True)
    (unversioned / "package.yml").write_text("name: demo\n", encoding="utf-8")
    repo.install_from_dir(unversioned)

    assert set(repo.get_package_versions("demo")) == {"1.0.0", "last"}
    assert repo.find_package("demo", "*").version == "1.0.0"
    assert repo.find_package("demo", "last") is None
    assert repo.get_package("demo", "last").name == "demo"
    assert repo.find_package("demo", "^3.0.0") is None


def test_highest_matching_version_across_sources(tmp_path: Path) -> None:
    first = _FakeSource("https://one.test", {"1.1.0": {}})
    second = _FakeSource("https://two.test", {"1.5.0": {}, "2.0.0": {}})
    repo = _consumer(tmp_path, first, second)

    origins = repo.get_package_versions("demo", only_local=False)

    assert origins == {"1.1.0": RemoteOrigin("https://one.test"), "1.5.0": RemoteOrigin("https://two.test"), "2.0.0": RemoteOrigin("https://two.test")}
    assert repo.find_package("demo", "^1.0.0") is None
    assert second.downloads == [("demo", "1.5.0")]
    assert first.downloads == []


def test_invalid_names_are_rejected(tmp_path: Path) -> None:
    repo = _consumer(tmp_path)
    with pytest.raises(ValueError):
        repo.version_dir("../escape", "1.0.0")
    with pytest.raises(ValueError):
        repo.archive_path("demo", "..")


def test_failed_redownload_keeps_published_archive(tmp_path: Path) -> None:
    remote = _FakeSource("https://remote.test", {"1.2.0": {"size": 1, "sha256": "ff"}})
    repo = _consumer(tmp_path, remote)
    package = repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.2.0"))
    archive = repo.archive_package(package)
    archive_bytes = archive.read_bytes()
    repo.info_path("demo", "1.2.0").write_text('{"size": 2, "sha256": "00"}', encoding="utf-8")

    assert repo.find_package("demo", "1.2.0") is None

    assert remote.downloads == [("demo", "1.2.0")]
    assert archive.read_bytes() == archive_bytes
    assert (repo.version_dir("demo", "1.2.0") / "data.txt").read_text(encoding="utf-8") == "payload 1.2.0\n"
    assert [p.name for p in (repo.dir / "demo").iterdir() if p.name.startswith(".")] == []


def test_redownload_refreshes_published_archive(tmp_path: Path) -> None:
    index_dir = _published_index(tmp_path, ["1.2.0"])
    repo = _consumer(tmp_path, DirectoryRepository(index_dir))
    package = repo.install_from_dir(_package_dir(tmp_path / "local", "demo", "1.2.0", body="stale"))
    archive = repo.archive_package(package)
    repo.info_path("demo", "1.2.0").write_text('{"size": 1, "sha256": "00"}', encoding="utf-8")

    assert repo.find_package("demo", "1.2.0") is not None

    assert archive.read_bytes() == (index_dir / "demo" / "1.2.0.tar.gz").read_bytes()
    assert [p.name for p in (repo.dir / "demo").iterdir() if p.name.startswith(".")] == []
