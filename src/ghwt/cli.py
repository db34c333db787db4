"""CLI entry point for ghwt."""

import logging
import shutil
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ghwt.config import Config, ConfigError, get_default_config_path, load_config, save_config
from ghwt.core.identity import InvalidIdentifier, InvalidProjectName, classify, validate_project
from ghwt.core.lint import lint_workspace
from ghwt.core.notes import NoteError, create_dashboard, read_note
from ghwt.core.paths import ProjectPaths, session_name
from ghwt.core.repository import CloneError, clone_project
from ghwt.core.sync import SyncReport, SyncService, SyncStatus, WorktreeSyncResult
from ghwt.core.tmux_manager import TmuxError, TmuxManager, launch_session
from ghwt.core.worktree import WorktreeError, WorktreeManager
from ghwt.core.worktree_list import list_worktrees
from ghwt.models.identity import Identity

console = Console()

SYNC_STATUS_STYLES = {
    SyncStatus.SYNCED: "green",
    SyncStatus.PARTIAL: "yellow",
    SyncStatus.MISSING_WORKTREE: "red",
    SyncStatus.RECREATED: "cyan",
    SyncStatus.ERROR: "bold red",
    SyncStatus.CLEANED: "green",
    SyncStatus.SKIPPED: "dim",
}


def get_config(ctx: click.Context) -> Config:
    """
    Load the configuration once per invocation.

    Raises:
        click.ClickException: If the configuration is invalid.
    """
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(ctx.obj.get("config_path"))
        except ConfigError as e:
            raise click.ClickException(str(e)) from e
    return ctx.obj["config"]


def parse_identity(raw: str) -> Identity:
    try:
        return classify(raw)
    except InvalidIdentifier as e:
        raise click.ClickException(str(e)) from e


def project_argument(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[str]:
    """Reject project names that are not a single directory name."""
    if value is None:
        return value
    try:
        return validate_project(value)
    except InvalidProjectName as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param) from e


@click.group()
@click.version_option(package_name="ghwt")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a config file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool) -> None:
    """ghwt - git worktrees for branches and pull requests, with notes.

    Each worktree gets a deterministic directory, a Markdown note with
    synced metadata, and optionally a tmux session.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
    )


@main.command("init")
@click.option("--projects-root", help="Root directory for repositories and worktrees.")
@click.option("--vault-path", help="Directory of the notes vault.")
@click.option("-f", "--force", is_flag=True, help="Overwrite an existing config file.")
@click.pass_context
def init_workspace(
    ctx: click.Context,
    projects_root: Optional[str],
    vault_path: Optional[str],
    force: bool,
) -> None:
    """Create the workspace directories and a default config file.

    Example:
        ghwt init
        ghwt init --projects-root ~/code --vault-path ~/vault
    """
    config_path = Path(ctx.obj.get("config_path") or get_default_config_path()).expanduser()
    if config_path.exists() and not force:
        raise click.ClickException(
            f"Config file already exists: {config_path}\nUse --force to overwrite."
        )

    overrides = {}
    if projects_root:
        overrides["projects_root"] = projects_root
    if vault_path:
        overrides["vault_path"] = vault_path
    config = Config(**overrides)
    paths = ProjectPaths.load(config)

    for directory in (
        paths.repos_root,
        paths.worktrees_root,
        paths.ci_artifacts_config_root,
        paths.session_config_root,
        paths.vault_root,
    ):
        if directory.exists():
            console.print(f"[dim]Already exists:[/dim] {directory}")
        else:
            directory.mkdir(parents=True)
            console.print(f"[green]Created:[/green] {directory}")

    save_config(config, config_path)
    console.print(f"[green]Config saved:[/green] {config_path}")

    dashboard = create_dashboard(paths.vault_root)
    if dashboard:
        console.print(f"[green]Dashboard created:[/green] {dashboard}")

    console.print()
    for tool in ("git", "gh", "tmux"):
        if shutil.which(tool):
            console.print(f"[green]found[/green]   {tool}")
        else:
            console.print(f"[yellow]missing[/yellow] {tool}")


@main.command("create")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.option("--from", "base_branch", help="Base branch for creating new branches.")
@click.option("--no-fetch", is_flag=True, help="Don't fetch remotes first.")
@click.option("--exist-ok", is_flag=True, help="Reuse an existing worktree directory.")
@click.option(
    "--session/--no-session",
    default=True,
    help="Start the project's tmux session (default: enabled).",
)
@click.pass_context
def create_worktree(
    ctx: click.Context,
    project: str,
    branch: str,
    base_branch: Optional[str],
    no_fetch: bool,
    exist_ok: bool,
    session: bool,
) -> None:
    """Create a worktree for BRANCH (a branch name or PR number) of PROJECT.

    Example:
        ghwt create galaxy fix/bug-123
        ghwt create galaxy 1234
        ghwt create galaxy my-feature --from main
    """
    config = get_config(ctx)
    manager = WorktreeManager(config)

    try:
        with console.status(f"[bold blue]Creating worktree for '{branch}'..."):
            result = manager.create(
                project,
                branch,
                base_branch=base_branch,
                fetch=not no_fetch,
                exist_ok=exist_ok,
            )
    except (InvalidIdentifier, InvalidProjectName) as e:
        raise click.ClickException(str(e)) from e
    except WorktreeError as e:
        raise click.ClickException(str(e)) from e

    console.print()
    if result.created_worktree:
        console.print("[bold green]Worktree created successfully!")
    else:
        console.print("[bold yellow]Worktree already existed, note refreshed.")
    console.print()
    console.print(f"[bold]Branch:[/bold]  {result.branch}")
    if result.base_branch:
        console.print(f"[bold]Base:[/bold]    {result.base_branch}")
    if result.pr_url:
        console.print(f"[bold]PR:[/bold]      {result.pr_url}")
    console.print(f"[bold]Path:[/bold]    {result.worktree_path}")
    console.print(f"[bold]Note:[/bold]    {result.note_path}")

    if session:
        name = session_name(project, result.name)
        try:
            info = launch_session(config, project, result.branch, name, result.worktree_path)
        except TmuxError as e:
            console.print(f"[yellow]Warning: Could not create tmux session: {e}[/yellow]")
        else:
            if info:
                console.print(f"[bold]Session:[/bold] {info.session_name}")
                console.print(f"[dim]Attach with: ghwt attach {project} {result.name}[/dim]")


@main.command("rm")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def remove_worktree(ctx: click.Context, project: str, branch: str, yes: bool) -> None:
    """Remove a worktree, kill its session and archive its note.

    Example:
        ghwt rm galaxy fix/bug-123
        ghwt rm galaxy 1234 -y
    """
    config = get_config(ctx)
    identity = parse_identity(branch)
    paths = ProjectPaths.load(config)

    if not yes:
        console.print()
        console.print("[bold]About to remove worktree:[/bold]")
        console.print(f"  Path: {paths.worktree(project, identity)}")
        console.print(f"  Note: {paths.note(project, identity)} [yellow](will be archived)[/yellow]")
        console.print()

        if not click.confirm("Are you sure you want to remove this worktree?"):
            console.print("[yellow]Aborted.[/yellow]")
            return

    try:
        with console.status(f"[bold red]Removing worktree '{branch}'..."):
            result = WorktreeManager(config).remove(project, branch)
    except (InvalidProjectName, WorktreeError) as e:
        raise click.ClickException(str(e)) from e

    console.print()
    if result.killed_session:
        console.print(f"[green]Killed tmux session:[/green] {result.killed_session}")
    if result.removed_worktree:
        console.print(f"[green]Deleted worktree:[/green] {result.worktree_path}")
    else:
        console.print(f"[yellow]Worktree not found:[/yellow] {result.worktree_path}")
    if result.archived_note:
        console.print(f"[green]Archived note:[/green] {result.archived_note}")


def results_table(title: str, results: list[WorktreeSyncResult]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Project", style="bold")
    table.add_column("Worktree", style="green")
    table.add_column("Status", justify="center")
    table.add_column("Message")

    for result in results:
        style = SYNC_STATUS_STYLES[result.status]
        table.add_row(
            result.project or "-",
            result.name or Path(result.note_path).stem,
            f"[{style}]{result.status.value}[/{style}]",
            result.message,
        )
    return table


def print_sync_report(report: SyncReport) -> None:
    if not report.results and not report.recreated_sessions:
        console.print("[yellow]No worktree notes found.[/yellow]")
        return

    console.print()
    console.print(results_table("Sync Results", report.results))
    console.print(
        f"[bold]{report.successful}[/bold] synced, "
        f"[bold]{report.partial}[/bold] partial, "
        f"[bold]{report.missing_worktrees}[/bold] missing, "
        f"[bold]{report.failed}[/bold] failed, "
        f"[bold]{report.recreated_notes}[/bold] notes recreated"
    )
    for name in report.recreated_sessions:
        console.print(f"[cyan]Recreated tmux session:[/cyan] {name}")
    console.print()


@main.command("sync")
@click.argument("project", required=False, callback=project_argument)
@click.option("--sessions", is_flag=True, help="Recreate missing tmux sessions.")
@click.option(
    "-w",
    "--watch",
    is_flag=True,
    help="Keep syncing every sync_interval seconds.",
)
@click.pass_context
def sync_worktrees(ctx: click.Context, project: Optional[str], sessions: bool, watch: bool) -> None:
    """Refresh git, PR and CI metadata in worktree notes.

    Example:
        ghwt sync
        ghwt sync galaxy --sessions
        ghwt sync --watch
    """
    service = SyncService(get_config(ctx))

    if watch:
        service.watch(project, sessions, on_report=print_sync_report)
        return

    with console.status("[bold blue]Syncing worktree notes..."):
        report = service.sync_all(project, recreate_sessions=sessions)
    print_sync_report(report)


@main.command("list")
@click.argument("project", required=False, callback=project_argument)
@click.pass_context
def list_all(ctx: click.Context, project: Optional[str]) -> None:
    """List worktrees, optionally only those of PROJECT.

    Example:
        ghwt list
        ghwt list galaxy
    """
    config = get_config(ctx)
    worktrees = list_worktrees(config, project)

    if not worktrees:
        console.print("[yellow]No worktrees found.[/yellow]")
        return

    paths = ProjectPaths.load(config)
    table = Table(title="Worktrees", show_header=True, header_style="bold cyan")
    table.add_column("Project", style="bold")
    table.add_column("Kind")
    table.add_column("Name", style="green")
    table.add_column("Status", justify="center")
    table.add_column("Path")

    for wt in worktrees:
        status = "[dim]no note[/dim]"
        note = paths.note(wt.project, wt.identity)
        if note.exists():
            try:
                status = read_note(note).metadata().manual.status.value
            except NoteError:
                status = "[red]invalid note[/red]"

        table.add_row(wt.project, wt.kind.value, wt.name, status, wt.short_path)

    console.print()
    console.print(table)
    console.print()


@main.command("attach")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.pass_context
def attach_session(ctx: click.Context, project: str, branch: str) -> None:
    """Attach to the tmux session of a worktree.

    Example:
        ghwt attach galaxy fix/bug-123
    """
    config = get_config(ctx)
    identity = parse_identity(branch)
    worktree_path = ProjectPaths.load(config).worktree(project, identity)

    if not worktree_path.exists():
        raise click.ClickException(f"Worktree not found: {worktree_path}")

    try:
        TmuxManager(config.terminal_ui).attach(session_name(project, identity.name), worktree_path)
    except TmuxError as e:
        raise click.ClickException(str(e)) from e


@main.command("path")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.pass_context
def print_worktree_path(ctx: click.Context, project: str, branch: str) -> None:
    """Print the worktree path of BRANCH.

    Example:
        cd "$(ghwt path galaxy 1234)"
    """
    paths = ProjectPaths.load(get_config(ctx))
    click.echo(paths.worktree(project, parse_identity(branch)))


@main.command("path-note")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.pass_context
def print_note_path(ctx: click.Context, project: str, branch: str) -> None:
    """Print the note path of BRANCH."""
    paths = ProjectPaths.load(get_config(ctx))
    click.echo(paths.note(project, parse_identity(branch)))


@main.command("path-ci-artifacts")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.pass_context
def print_ci_artifacts_path(ctx: click.Context, project: str, branch: str) -> None:
    """Print the CI artifacts directory of BRANCH."""
    paths = ProjectPaths.load(get_config(ctx))
    click.echo(paths.ci_artifacts(project, parse_identity(branch)))


@main.command("clone")
@click.argument("url")
@click.argument("branch", required=False)
@click.option("--upstream", help="URL to add as the 'upstream' remote.")
@click.option("--no-push", is_flag=True, help="Disable pushing to origin.")
@click.option("--no-fork-check", is_flag=True, help="Clone URL even if you have a fork of it.")
@click.pass_context
def clone_repository(
    ctx: click.Context,
    url: str,
    branch: Optional[str],
    upstream: Optional[str],
    no_push: bool,
    no_fork_check: bool,
) -> None:
    """Clone URL as a new project, optionally creating a worktree for BRANCH.

    Example:
        ghwt clone https://github.com/acme/galaxy.git
        ghwt clone git@github.com:acme/galaxy.git main --no-push
    """
    config = get_config(ctx)

    try:
        with console.status(f"[bold blue]Cloning {url}..."):
            result = clone_project(
                config,
                url,
                upstream=upstream,
                push=not no_push,
                fork_check=not no_fork_check,
            )
    except CloneError as e:
        raise click.ClickException(str(e)) from e

    console.print(f"[green]Cloned:[/green] {result.repository_path}")
    console.print(f"[bold]Origin:[/bold]   {result.origin_url}")
    if result.upstream_url:
        console.print(f"[bold]Upstream:[/bold] {result.upstream_url}")
    if result.fork_detected:
        console.print("[dim]Found your fork, cloned it as origin.[/dim]")
    if result.push_disabled:
        console.print("[dim]Pushing to origin is disabled.[/dim]")

    if branch:
        try:
            created = WorktreeManager(config).create(result.project, branch, fetch=False)
        except (InvalidIdentifier, WorktreeError) as e:
            raise click.ClickException(str(e)) from e
        console.print(f"[green]Worktree created:[/green] {created.worktree_path}")


@main.command("attach-pr")
@click.argument("project", callback=project_argument)
@click.argument("branch")
@click.option("-n", "--number", "pr_number", type=click.IntRange(min=1), required=True, help="Pull request number.")
@click.pass_context
def attach_pull_request(ctx: click.Context, project: str, branch: str, pr_number: int) -> None:
    """Link pull request NUMBER to the existing worktree of BRANCH.

    Example:
        ghwt attach-pr galaxy my-feature -n 1234
    """
    manager = WorktreeManager(get_config(ctx))
    try:
        metadata = manager.attach_pr(project, branch, pr_number)
    except (InvalidIdentifier, WorktreeError) as e:
        raise click.ClickException(str(e)) from e

    console.print(f"[green]Attached PR #{metadata.manual.pr_number}:[/green] {metadata.manual.pr}")


@main.command("lint")
@click.option("--session-only", is_flag=True, help="Skip the config file check.")
@click.option("--config-only", is_flag=True, help="Skip the session config check.")
@click.pass_context
def lint(ctx: click.Context, session_only: bool, config_only: bool) -> None:
    """Check the config, session configs, notes and directory layout.

    Exits with status 1 when any error is found.

    Example:
        ghwt lint
        ghwt lint --config-only
    """
    report = lint_workspace(ctx.obj.get("config_path"), session_only=session_only, config_only=config_only)

    for message in report.passed:
        console.print(f"[green]ok[/green]      {message}")
    for message in report.warnings:
        console.print(f"[yellow]warning[/yellow] {message}")
    for message in report.errors:
        console.print(f"[red]error[/red]   {message}")

    console.print()
    console.print(
        f"[bold]{len(report.errors)}[/bold] errors, [bold]{len(report.warnings)}[/bold] warnings"
    )
    if not report.ok:
        ctx.exit(1)


def select_ci_notes(service: SyncService, project: Optional[str], branch: Optional[str]) -> list[Path]:
    identity = parse_identity(branch) if branch else None
    notes = service.select_notes(project, identity)
    if branch and not notes:
        raise click.ClickException(f"Note not found: {service.paths.note(project, identity)}")
    return notes


def print_ci_results(title: str, results: list[WorktreeSyncResult]) -> bool:
    """Print a results table. Returns True if any result is an error."""
    if not results:
        console.print("[yellow]No worktree notes found.[/yellow]")
        return False

    console.print()
    console.print(results_table(title, results))
    failed = sum(1 for r in results if r.status == SyncStatus.ERROR)
    skipped = sum(1 for r in results if r.status == SyncStatus.SKIPPED)
    console.print(
        f"[bold]{len(results) - failed - skipped}[/bold] done, "
        f"[bold]{skipped}[/bold] skipped, "
        f"[bold]{failed}[/bold] failed"
    )
    return failed > 0


@main.command("ci-artifacts-download")
@click.argument("project", required=False, callback=project_argument)
@click.argument("branch", required=False)
@click.pass_context
def download_ci_artifacts(ctx: click.Context, project: Optional[str], branch: Optional[str]) -> None:
    """Download CI artifacts for PR worktrees, even when they look current.

    Example:
        ghwt ci-artifacts-download
        ghwt ci-artifacts-download galaxy 1234
    """
    service = SyncService(get_config(ctx))
    notes = select_ci_notes(service, project, branch)

    with console.status("[bold blue]Downloading CI artifacts..."):
        results = [service.download_ci_artifacts(note) for note in notes]
    if print_ci_results("CI Artifact Downloads", results):
        ctx.exit(1)


@main.command("ci-artifacts-clean")
@click.argument("project", required=False, callback=project_argument)
@click.argument("branch", required=False)
@click.pass_context
def clean_ci_artifacts(ctx: click.Context, project: Optional[str], branch: Optional[str]) -> None:
    """Delete downloaded CI artifacts and clear the CI fields of their notes.

    Example:
        ghwt ci-artifacts-clean galaxy
        ghwt ci-artifacts-clean galaxy 1234
    """
    service = SyncService(get_config(ctx))
    notes = select_ci_notes(service, project, branch)

    results = [service.clean_ci_artifacts(note) for note in notes]
    if print_ci_results("CI Artifact Cleanup", results):
        ctx.exit(1)


@main.command("clean-sessions")
@click.argument("project", required=False, callback=project_argument)
@click.option("-f", "--force", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def clean_sessions(ctx: click.Context, project: Optional[str], force: bool) -> None:
    """Kill the running tmux sessions of worktrees.

    Example:
        ghwt clean-sessions
        ghwt clean-sessions galaxy --force
    """
    config = get_config(ctx)
    tmux = TmuxManager(config.terminal_ui)

    expected = [session_name(wt.project, wt.name) for wt in list_worktrees(config, project)]
    running = set(tmux.list_session_names())
    sessions = [name for name in expected if name in running]

    if not sessions:
        console.print("[green]No active ghwt sessions found.[/green]")
        return

    console.print()
    console.print(f"[bold]Found {len(sessions)} active session(s):[/bold]")
    for name in sessions:
        console.print(f"  - {name}")
    console.print()

    if not force and not click.confirm(f"Kill these {len(sessions)} session(s)?"):
        console.print("[yellow]Aborted.[/yellow]")
        return

    killed = 0
    for name in sessions:
        try:
            tmux.kill_session(name)
            killed += 1
        except TmuxError as e:
            console.print(f"[yellow]Warning: Could not kill session {name}: {e}[/yellow]")
    console.print(f"[green]Killed {killed} tmux session(s).[/green]")


if __name__ == "__main__":
    main()
