from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from prm_core.config import WorkspaceLayout, resolve_home
from prm_core.errors import PrmError
from prm_core.lock import LOCK_FILENAME, read_lock, write_lock
from prm_core.package import Package
from prm_core.repository import Repository
from prm_core.semver import parse as parse_version
from prm_registry import RegistrySettings, make_app

app = typer.Typer(help="Package repository manager", no_args_is_help=True)


def _repository(ctx: typer.Context) -> Repository:
    layout: WorkspaceLayout = ctx.obj["layout"]
    return Repository.from_workspace(layout)


def _fail(command: str, exc: Exception) -> None:
    typer.echo(f"[prm:{command}] error: {exc}")
    raise typer.Exit(1)


def _describe(package: Package) -> str:
    parts = [package.key]
    if package.info.get("repo"):
        parts.append(f"repo={package.info['repo']}")
    if package.size is not None:
        parts.append(f"size={package.size}")
    if package.sha256:
        parts.append(f"sha256={package.sha256}")
    return " ".join(parts)


@app.callback()
def main_options(
    ctx: typer.Context,
    home: Optional[Path] = typer.Option(None, "--home", help="Workspace directory (default: $PRM_HOME or ./.prm)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress information"),
) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"layout": WorkspaceLayout(resolve_home(home))}


@app.command("versions")
def versions(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name"),
    local: bool = typer.Option(False, "--local", help="Only list installed versions"),
) -> None:
    """List known versions of a package and where each comes from."""
    try:
        origins = _repository(ctx).get_package_versions(name, only_local=local)
    except (PrmError, ValueError) as exc:
        _fail("versions", exc)
    if not origins:
        typer.echo(f"[prm:versions] no versions found for {name}")
        return

    def _order(version: str):
        try:
            return (1, parse_version(version))
        except ValueError:
            return (0, version)

    for version in sorted(origins, key=_order):
        typer.echo(f"{name}@{version} origin={origins[version]}")


@app.command("find")
def find(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name"),
    pattern: str = typer.Argument("*", help="Version or range, e.g. ^1.2.0"),
    lock_file: Optional[Path] = typer.Option(None, "--lock", help=f"Lock file (e.g. {LOCK_FILENAME})"),
    vendor: Optional[Path] = typer.Option(None, "--vendor", help="Copy the resolved package into this directory"),
) -> None:
    """Resolve a package version, downloading it when needed."""
    repository = _repository(ctx)
    lock = read_lock(lock_file) if lock_file else None
    try:
        package = repository.find_package(name, pattern, lock)
        if package is None:
            typer.echo(f"[prm:find] no package found for {name}@{pattern}")
            raise typer.Exit(1)
        typer.echo(f"[prm:find] {_describe(package)}")
        if vendor is not None:
            target = repository.copy_to(package, vendor)
            typer.echo(f"[prm:find] vendored into {target.as_posix()}")
    except (PrmError, ValueError) as exc:
        _fail("find", exc)


@app.command("install")
def install(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Package directory or .tar.gz archive"),
) -> None:
    """Install a package from a directory or an archive."""
    repository = _repository(ctx)
    try:
        if path.is_dir():
            package = repository.install_from_dir(path)
            typer.echo(f"[prm:install] installed {package.key}")
            return
        if not repository.install_from_archive(path):
            typer.echo(f"[prm:install] {path} has no package manifest")
            raise typer.Exit(1)
        typer.echo(f"[prm:install] installed {path.name}")
    except (PrmError, ValueError) as exc:
        _fail("install", exc)


@app.command("archive")
def archive(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Installed version"),
) -> None:
    """Produce (or reuse) the archive of an installed version."""
    repository = _repository(ctx)
    try:
        package = repository.get_package(name, version)
        path = repository.archive_package(package) if package is not None else None
    except (PrmError, ValueError) as exc:
        _fail("archive", exc)
    if path is None:
        typer.echo(f"[prm:archive] {name}@{version} is not installed")
        raise typer.Exit(1)
    typer.echo(path.as_posix())


@app.command("index")
def index(
    ctx: typer.Context,
    modules: Optional[List[str]] = typer.Argument(None, help="Only re-index these modules"),
    dest: Optional[Path] = typer.Option(None, "--dest", help="Publish directory (default: the package tree)"),
) -> None:
    """Re-index installed packages into a publishable index."""
    try:
        report = _repository(ctx).index_all(dest, modules or ())
    except (PrmError, ValueError) as exc:
        _fail("index", exc)
    typer.echo(
        f"[prm:index] modules={len(report.modules)} added={len(report.added)} "
        f"updated={len(report.updated)} skipped={len(report.skipped)}"
    )


@app.command("lock")
def lock(
    name: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Exact version to pin"),
    lock_file: Path = typer.Option(Path(LOCK_FILENAME), "--lock", help="Lock file to update"),
) -> None:
    """Pin a package to an exact version in a lock file."""
    try:
        parse_version(version)
    except ValueError as exc:
        _fail("lock", exc)
    current = read_lock(lock_file)
    current.pin(name, version)
    write_lock(lock_file, current)
    typer.echo(f"[prm:lock] {name} -> {version} ({lock_file.as_posix()})")


@app.command("cache-clear")
def cache_clear(ctx: typer.Context) -> None:
    """Forget all cached remote version listings."""
    _repository(ctx).cache.invalidate()
    typer.echo("[prm:cache-clear] ok")


@app.command("serve")
def serve(
    ctx: typer.Context,
    index_dir: Optional[Path] = typer.Option(
        None, "--dir", help="Published index directory (default: $PRM_REGISTRY_DIR, then the package tree)"
    ),
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
) -> None:
    """Serve a published index over HTTP."""
    layout: WorkspaceLayout = ctx.obj["layout"]
    settings = RegistrySettings.from_env(index_dir, default_dir=layout.packages_dir)
    host = host or settings.host
    port = port or settings.port
    typer.echo(f"Starting registry on http://{host}:{port}  (index: {settings.index_dir})")
    uvicorn.run(make_app(settings), host=host, port=port, log_level="info")
