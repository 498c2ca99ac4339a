"""
CLI interface for planner state synchronization.

Usage:
    flowsync migrate --identity alice
    flowsync export --identity alice --owner alice
    flowsync import --identity alice --yes
    flowsync get profile/settings
    flowsync set profile/settings '{"theme": "dark"}'
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .backup_export import BackupExporter
from .backup_import import BackupImporter
from .config import SyncConfig, get_backup_token, get_default_store_path, load_or_create_config
from .github import GitHubRepository
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .migration import migrate, needs_migration
from .session import SyncSession
from .types import Identity, SyncResult, SyncStatus


# Configure quiet mode by default (suppress verbose library output)
# Set FLOWSYNC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("FLOWSYNC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_store_override: Optional[Path] = None


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="flowsync",
    help="Planner state sync, migration and GitHub backup.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="FLOWSYNC_STORE_PATH",
        help="Path to the store directory (default: ~/.flowsync/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Planner state sync, migration and GitHub backup."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

IdentityOption = Annotated[
    Optional[str],
    typer.Option(
        "--identity", "-i",
        envvar="FLOWSYNC_IDENTITY",
        help="Account id (default: [identity] id from flowsync.toml)"
    )
]

OwnerOption = Annotated[
    Optional[str],
    typer.Option("--owner", help="Backup repository owner (default: [backup] owner)")
]

RepoOption = Annotated[
    Optional[str],
    typer.Option("--repo", help="Backup repository name (default: [backup] repo)")
]


def _get_config() -> SyncConfig:
    store_path = _store_override if _store_override is not None else get_default_store_path()
    try:
        config = load_or_create_config(store_path.expanduser())
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    configure_ops_log(config.path)
    return config


def _resolve_identity(config: SyncConfig, identity: Optional[str]) -> Optional[Identity]:
    if identity:
        try:
            return Identity(identity)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
    return config.identity


def _require_identity(config: SyncConfig, identity: Optional[str]) -> Identity:
    resolved = _resolve_identity(config, identity)
    if resolved is None:
        typer.echo("Error: no identity (use --identity or set [identity] id)", err=True)
        raise typer.Exit(1)
    return resolved


def _get_repository(config: SyncConfig, owner: Optional[str], repo: Optional[str]) -> GitHubRepository:
    token = get_backup_token()
    if not token:
        typer.echo("Error: set FLOWSYNC_GITHUB_TOKEN or GITHUB_TOKEN", err=True)
        raise typer.Exit(1)
    owner = owner or config.backup.owner
    repo = repo or config.backup.repo
    if not owner or not repo:
        typer.echo("Error: no backup repository (use --owner/--repo or set [backup])", err=True)
        raise typer.Exit(1)
    return GitHubRepository(token, owner, repo)


def _echo_progress(status: SyncStatus, message: str) -> None:
    if status not in (SyncStatus.SUCCESS, SyncStatus.ERROR):
        typer.echo(f"[{status.value}] {message}", err=True)


def _finish(result: SyncResult) -> None:
    if not result.ok:
        typer.echo(f"Error: {result.message}", err=True)
        raise typer.Exit(1)
    typer.echo(result.message)


# -----------------------------------------------------------------------------
# Migration
# -----------------------------------------------------------------------------

@app.command("migrate")
def migrate_command(
    identity: IdentityOption = None,
    check: Annotated[bool, typer.Option(
        "--check", help="Only report whether migration is needed"
    )] = False,
):
    """Migrate legacy flat documents to the hierarchical layout (once)."""
    config = _get_config()
    who = _require_identity(config, identity)

    async def run():
        session = SyncSession.from_config(config, who)
        try:
            if check:
                return await needs_migration(session.remote, who)
            return await migrate(session.remote, who)
        finally:
            await session.close()

    result = asyncio.run(run())
    if check:
        typer.echo("Migration needed" if result else "Already migrated")
        return
    if not result.success:
        typer.echo(f"Error: migration failed: {result.error}", err=True)
        raise typer.Exit(1)
    if result.already_migrated:
        typer.echo("Already migrated")
    else:
        typer.echo(f"Migrated {result.writes} documents")


# -----------------------------------------------------------------------------
# Backup
# -----------------------------------------------------------------------------

@app.command("export")
def export_command(
    identity: IdentityOption = None,
    owner: OwnerOption = None,
    repo: RepoOption = None,
):
    """Back up planner data to the GitHub repository as one commit."""
    config = _get_config()
    who = _require_identity(config, identity)
    repository = _get_repository(config, owner, repo)

    async def run() -> SyncResult:
        session = SyncSession.from_config(config, who)
        try:
            async with repository:
                exporter = BackupExporter(session.remote, repository, on_progress=_echo_progress)
                return await exporter.run(who)
        finally:
            await session.close()

    _finish(asyncio.run(run()))


@app.command("import")
def import_command(
    identity: IdentityOption = None,
    owner: OwnerOption = None,
    repo: RepoOption = None,
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Do not ask for confirmation"
    )] = False,
):
    """Restore planner data from the GitHub repository (merges into current data)."""
    config = _get_config()
    who = _require_identity(config, identity)
    repository = _get_repository(config, owner, repo)

    if not yes and not typer.confirm(
        f"This will merge the backup in {repository.full_name} into the data of {who.id}. Continue?"
    ):
        raise typer.Exit(0)

    async def run() -> SyncResult:
        session = SyncSession.from_config(config, who)
        try:
            async with repository:
                importer = BackupImporter(
                    session.remote,
                    repository,
                    batch_limit=config.batch_limit,
                    on_progress=_echo_progress,
                )
                return await importer.run(who)
        finally:
            await session.close()

    result = asyncio.run(run())
    _finish(result)
    if result.stats:
        typer.echo(", ".join(f"{k}: {v}" for k, v in sorted(result.stats.items())), err=True)


# -----------------------------------------------------------------------------
# Documents
# -----------------------------------------------------------------------------

async def _read_document(session: SyncSession, path: str) -> Any:
    cache = session.document(path)
    if cache.loading:
        loaded = asyncio.Event()
        cache.add_listener(lambda c: None if c.loading else loaded.set())
        await loaded.wait()
    value = cache.value
    session.release(cache)
    return value


@app.command("get")
def get_command(
    path: Annotated[str, typer.Argument(help="Logical document path, e.g. profile/settings")],
    identity: IdentityOption = None,
):
    """Print a document as JSON (local fallback store when there is no identity)."""
    config = _get_config()
    who = _resolve_identity(config, identity)

    async def run() -> Any:
        session = SyncSession.from_config(config, who)
        try:
            return await _read_document(session, path)
        finally:
            await session.close()

    try:
        value = asyncio.run(run())
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if value is None:
        typer.echo(f"Not found: {path}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(value, indent=2, ensure_ascii=False))


@app.command("set")
def set_command(
    path: Annotated[str, typer.Argument(help="Logical document path")],
    value: Annotated[str, typer.Argument(help="JSON object, merged into the document")],
    identity: IdentityOption = None,
):
    """Write a document through the debounced cache and wait for it to settle."""
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: invalid JSON: {e}", err=True)
        raise typer.Exit(1)
    if not isinstance(data, dict):
        typer.echo("Error: value must be a JSON object", err=True)
        raise typer.Exit(1)

    config = _get_config()
    who = _resolve_identity(config, identity)

    async def run() -> None:
        session = SyncSession.from_config(config, who)
        try:
            session.document(path).write(data)
        finally:
            await session.close()

    try:
        asyncio.run(run())
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Saved {path}")


@app.command("config")
def config_command():
    """Show the resolved configuration."""
    config = _get_config()
    typer.echo(f"store: {config.path}")
    typer.echo(f"config: {config.config_path}")
    typer.echo(f"backend: {config.backend}")
    typer.echo(f"debounce_delay: {config.debounce_delay}")
    typer.echo(f"batch_limit: {config.batch_limit}")
    typer.echo(f"identity: {config.identity_id or '(none)'}")
    backup = f"{config.backup.owner}/{config.backup.repo}" if config.backup.configured else "(not configured)"
    typer.echo(f"backup: {backup}")
    typer.echo(f"token: {'set' if get_backup_token() else 'not set'}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="flowsync CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
