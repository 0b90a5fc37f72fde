from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from gitvault.auth import missing_token_hint, resolve_github_token
from gitvault.config import (
    DEFAULT_BRANCH,
    GitVaultConfig,
    load_config,
    normalize_repo_id,
    save_config,
)
from gitvault.errors import (
    BaselinePersistError,
    GitVaultError,
    LocalChangesError,
    RemoteError,
    RemoteWriteError,
    StaleRemoteError,
)
from gitvault.filters import build_path_filter
from gitvault.github_api import GitHubRepository
from gitvault.log import setup_logging
from gitvault.models import SyncBaseline
from gitvault.notify import ConsoleNotifier
from gitvault.pull import pull_from_remote
from gitvault.push import DEFAULT_WORKERS, push_to_remote
from gitvault.scanner import fingerprint_map, scan_vault_with_progress
from gitvault.state_db import ensure_db, load_baseline, load_records, save_baseline
from gitvault.status_service import compute_status
from gitvault.vault import LocalVault


app = typer.Typer(help="Keep a local vault in step with a GitHub branch.")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    setup_logging(verbose=verbose)


def _vault_for(config: GitVaultConfig) -> LocalVault:
    return LocalVault(config.local_root_path, build_path_filter(config.include, config.exclude))


def _remote_for(config: GitVaultConfig, *, require_token: bool) -> GitHubRepository:
    token = resolve_github_token(config.token)
    if require_token and not token:
        raise RuntimeError(missing_token_hint())
    return GitHubRepository.from_config(config, token)


def _render_paths(title: str, paths: list[str], style: str) -> None:
    if not paths:
        return
    table = Table(title=f"{title} ({len(paths)})", title_style=style, show_header=False)
    table.add_column("Path")
    for path in paths:
        table.add_row(path)
    console.print(table)


async def _init_async(
    root: Path,
    repo: str,
    branch: str,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    skip_remote: bool,
) -> int:
    normalized = normalize_repo_id(repo)
    if normalized.count("/") != 1:
        console.print(f"[red]Expected `owner/name` or a GitHub URL, got {repo!r}.[/red]")
        return 1

    config = GitVaultConfig(
        repo=normalized,
        local_root=str(root),
        branch=branch,
        include=list(include),
        exclude=list(exclude),
    )
    await ensure_db(config.state_db_path)
    path = save_config(config, root)
    console.print(f"[green]Initialized gitvault[/green] at {config.local_root_path}")
    console.print(f"Config: {path}")
    console.print(f"State DB: {config.state_db_path}")
    if normalized != repo.strip():
        console.print(f"Repo normalized: {repo} -> {normalized}")

    if skip_remote or await load_baseline(config.state_db_path) is not None:
        return 0

    try:
        remote = _remote_for(config, require_token=False)
        tip = remote.get_ref_tip_commit()
    except RemoteError as exc:
        console.print(f"[yellow]Could not read {config.repo}@{config.branch}:[/yellow] {exc}")
        console.print("Run `gv pull` once the branch is reachable.")
        return 0

    # No fingerprints yet: the first push uploads every vault file.
    await save_baseline(config.state_db_path, SyncBaseline(last_fetched_commit_sha=tip))
    console.print(f"Tracking {config.repo}@{config.branch} at {tip[:12]}")
    return 0


@app.command()
def init(
    repo: str = typer.Argument(..., help="GitHub repository, `owner/name` or URL."),
    branch: str = typer.Option(DEFAULT_BRANCH, "--branch", "-b", help="Branch to synchronize."),
    include: list[str] | None = typer.Option(
        None, "--include", help="Include glob pattern(s) for vault paths (repeatable)."
    ),
    exclude: list[str] | None = typer.Option(
        None, "--exclude", help="Exclude glob pattern(s) for vault paths (repeatable)."
    ),
    skip_remote: bool = typer.Option(
        False, "--skip-remote", help="Do not contact GitHub to record the current branch tip."
    ),
) -> None:
    """Initialize gitvault config in the current directory."""
    raise typer.Exit(
        code=asyncio.run(
            _init_async(
                Path.cwd().resolve(),
                repo,
                branch,
                tuple(include or ()),
                tuple(exclude or ()),
                skip_remote,
            )
        )
    )


async def _status_async() -> int:
    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    vault = _vault_for(config)
    if not vault.root.exists():
        console.print(f"[red]Configured local_root does not exist: {vault.root}[/red]")
        return 1

    baseline = await load_baseline(config.state_db_path) or SyncBaseline()
    previous_records = await load_records(config.state_db_path)
    try:
        records = scan_vault_with_progress(vault, previous_records=previous_records, console=console)
    except KeyboardInterrupt:
        console.print("[yellow]Status interrupted.[/yellow]")
        return 130

    result = compute_status(baseline.local_sha, fingerprint_map(records), vault)
    if result.first_sync:
        console.print("[yellow]No baseline recorded: every file will be pushed as changed.[/yellow]")
    _render_paths("Created", result.created, "green")
    _render_paths("Changed", result.changed, "cyan")
    _render_paths("Deleted", result.deleted, "red")
    if not result.has_changes:
        console.print("[green]No local changes detected.[/green]")
    console.print(f"Tracked files: {result.snapshot_count}")
    if baseline.last_fetched_commit_sha:
        console.print(f"Last synchronized commit: {baseline.last_fetched_commit_sha}")
    return 0


@app.command()
def status() -> None:
    """Show local changes since the last synchronization (no network access)."""
    raise typer.Exit(code=asyncio.run(_status_async()))


async def _push_async(message: str | None, workers: int) -> int:
    try:
        config = load_config()
        vault = _vault_for(config)
        remote = _remote_for(config, require_token=True)
        result = await push_to_remote(
            vault,
            remote,
            config.state_db_path,
            notifier=ConsoleNotifier(console),
            message=message,
            max_workers=workers,
            console=console,
            repo_label=f"{config.repo}@{config.branch}",
        )
    except KeyboardInterrupt:
        console.print("[yellow]Push interrupted.[/yellow] The baseline was not updated.")
        return 130
    except StaleRemoteError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        return 1
    except RemoteWriteError as exc:
        console.print(f"[red]{exc}[/red]")
        console.print("Nothing was recorded locally; it is safe to run `gv push` again.")
        return 1
    except BaselinePersistError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    except (FileNotFoundError, ValueError, RuntimeError, GitVaultError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if result.dropped_paths:
        _render_paths("Skipped (vanished during push)", result.dropped_paths, "yellow")
    if result.pushed:
        console.print(f"Commit: {result.commit_sha}")
    return 0


@app.command()
def push(
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message."),
    workers: int = typer.Option(
        DEFAULT_WORKERS, "--workers", min=1, help="Parallel file reads / blob uploads."
    ),
) -> None:
    """Commit local changes to the remote branch and record the new baseline."""
    raise typer.Exit(code=asyncio.run(_push_async(message, workers)))


async def _pull_async(workers: int) -> int:
    try:
        config = load_config()
        vault = _vault_for(config)
        vault.root.mkdir(parents=True, exist_ok=True)
        remote = _remote_for(config, require_token=False)
        result = await pull_from_remote(
            vault,
            remote,
            config.state_db_path,
            notifier=ConsoleNotifier(console),
            max_workers=workers,
            console=console,
        )
    except KeyboardInterrupt:
        console.print("[yellow]Pull interrupted.[/yellow] The baseline was not updated.")
        return 130
    except LocalChangesError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        return 1
    except (FileNotFoundError, ValueError, RuntimeError, GitVaultError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    console.print(
        f"At {result.commit_sha[:12] or 'unknown'}: {result.snapshot_count} tracked file(s)"
    )
    return 0


@app.command()
def pull(
    workers: int = typer.Option(DEFAULT_WORKERS, "--workers", min=1, help="Parallel downloads."),
) -> None:
    """Fast-forward the vault to the remote branch tip."""
    raise typer.Exit(code=asyncio.run(_pull_async(workers)))
