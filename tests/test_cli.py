from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from prm_cli.app import app

runner = CliRunner()


def _package_dir(root: Path, version: str = "1.0.0") -> Path:
    path = root / f"demo-{version}"
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.yml").write_text(f"name: demo\nversion: {version}\n", encoding="utf-8")
    (path / "README.md").write_text("# demo\n", encoding="utf-8")
    (path / "main.txt").write_text("main\n", encoding="utf-8")
    return path


def _invoke(home: Path, *args: str):
    return runner.invoke(app, ["--home", str(home), *args])


def test_install_versions_and_find(tmp_path: Path) -> None:
    home = tmp_path / "ws"
    for version in ("1.0.0", "1.2.0", "2.0.0"):
        result = _invoke(home, "install", str(_package_dir(tmp_path / "src", version)))
        assert result.exit_code == 0, result.output
        assert f"installed demo@{version}" in result.output

    listed = _invoke(home, "versions", "demo", "--local")
    assert listed.exit_code == 0
    assert listed.output.splitlines() == [
        "demo@1.0.0 origin=local",
        "demo@1.2.0 origin=local",
        "demo@2.0.0 origin=local",
    ]

    found = _invoke(home, "find", "demo", "^1.0.0")
    assert found.exit_code == 0
    assert "[prm:find] demo@1.2.0" in found.output


def test_find_honours_lock_file_and_vendors(tmp_path: Path) -> None:
    home = tmp_path / "ws"
    for version in ("1.0.0", "1.2.0"):
        _invoke(home, "install", str(_package_dir(tmp_path / "src", version)))
    lock_file = tmp_path / "package-lock.yml"
    vendor = tmp_path / "vendor"

    pinned = _invoke(home, "lock", "demo", "1.0.0", "--lock", str(lock_file))
    assert pinned.exit_code == 0
    assert yaml.safe_load(lock_file.read_text(encoding="utf-8")) == {"dependencies": {"demo": "1.0.0"}}

    found = _invoke(home, "find", "demo", "^1.0.0", "--lock", str(lock_file), "--vendor", str(vendor))
    assert found.exit_code == 0, found.output
    assert "demo@1.0.0" in found.output
    assert (vendor / "demo" / "main.txt").is_file()


def test_find_unknown_package_fails(tmp_path: Path) -> None:
    result = _invoke(tmp_path / "ws", "find", "missing")
    assert result.exit_code == 1
    assert "no package found for missing@*" in result.output


def test_lock_rejects_malformed_version(tmp_path: Path) -> None:
    result = _invoke(tmp_path / "ws", "lock", "demo", "one.two", "--lock", str(tmp_path / "lock.yml"))
    assert result.exit_code == 1
    assert "[prm:lock] error:" in result.output
    assert not (tmp_path / "lock.yml").exists()


def test_install_without_manifest_reports_error(tmp_path: Path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()
    result = _invoke(tmp_path / "ws", "install", str(empty))
    assert result.exit_code == 1
    assert "[prm:install] error:" in result.output


def test_archive_index_and_reinstall(tmp_path: Path) -> None:
    home = tmp_path / "ws"
    _invoke(home, "install", str(_package_dir(tmp_path / "src")))

    archived = _invoke(home, "archive", "demo", "1.0.0")
    assert archived.exit_code == 0, archived.output
    archive = Path(archived.output.strip())
    assert archive.is_file()

    other = _invoke(tmp_path / "other", "install", str(archive))
    assert other.exit_code == 0, other.output
    assert (tmp_path / "other" / "packages" / "demo" / "1.0.0" / "main.txt").is_file()

    publish = tmp_path / "publish"
    indexed = _invoke(home, "index", "--dest", str(publish))
    assert indexed.exit_code == 0
    assert "modules=1 added=1 updated=0 skipped=0" in indexed.output
    again = _invoke(home, "index", "--dest", str(publish))
    assert "added=0 updated=0 skipped=1" in again.output


def test_archive_of_missing_version_fails(tmp_path: Path) -> None:
    result = _invoke(tmp_path / "ws", "archive", "demo", "9.9.9")
    assert result.exit_code == 1
    assert "is not installed" in result.output


def test_versions_lists_remote_sources(tmp_path: Path) -> None:
    publisher = tmp_path / "publisher"
    _invoke(publisher, "install", str(_package_dir(tmp_path / "src", "3.0.0")))
    publish = tmp_path / "publish"
    _invoke(publisher, "index", "--dest", str(publish))

    home = tmp_path / "ws"
    (home / "config").mkdir(parents=True)
    (home / "config" / "config.toml").write_text(
        f'[[sources]]\ntype = "dir"\nurl = "{publish.as_posix()}"\n', encoding="utf-8"
    )

    listed = _invoke(home, "versions", "demo")
    assert listed.exit_code == 0
    assert listed.output.strip() == f"demo@3.0.0 origin={publish.resolve().as_uri()}"

    found = _invoke(home, "find", "demo")
    assert found.exit_code == 0, found.output
    assert (home / "packages" / "demo" / "3.0.0" / "main.txt").is_file()

    cleared = _invoke(home, "cache-clear")
    assert cleared.exit_code == 0
    assert '"external": {}' in (home / "packages" / "cache.json").read_text(encoding="utf-8")


def test_serve_runs_registry_on_package_tree(monkeypatch, tmp_path: Path) -> None:
    import prm_cli.app as app_mod

    calls = {}

    def _fake_run(asgi_app, host: str, port: int, log_level: str) -> None:
        calls.update(app=asgi_app, host=host, port=port)

    monkeypatch.delenv("PRM_REGISTRY_HOST", raising=False)
    monkeypatch.delenv("PRM_REGISTRY_DIR", raising=False)
    monkeypatch.setattr(app_mod.uvicorn, "run", _fake_run)
    result = _invoke(tmp_path / "ws", "serve", "--port", "9100")

    assert result.exit_code == 0, result.output
    assert calls["host"] == "127.0.0.1"
    assert calls["port"] == 9100
    assert str((tmp_path / "ws" / "packages").resolve()) in result.output


def test_serve_uses_registry_dir_from_environment(monkeypatch, tmp_path: Path) -> None:
    import prm_cli.app as app_mod

    served = []
    monkeypatch.setenv("PRM_REGISTRY_DIR", str(tmp_path / "published"))
    monkeypatch.setattr(app_mod.uvicorn, "run", lambda asgi_app, **kwargs: served.append(kwargs))

    result = _invoke(tmp_path / "ws", "serve")

    assert result.exit_code == 0, result.output
    assert f"(index: {(tmp_path / 'published').resolve()})" in result.output
    assert len(served) == 1

    explicit = _invoke(tmp_path / "ws", "serve", "--dir", str(tmp_path / "explicit"))
    assert f"(index: {(tmp_path / 'explicit').resolve()})" in explicit.output
