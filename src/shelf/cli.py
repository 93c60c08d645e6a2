"""CLI for shelf."""

from pathlib import Path
from typing import List, Optional, Sequence
import logging
import os

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from . import catalog
from .config import ShelfConfig, save_config
from .constants import DEFAULT_REMOTE_REF, OBJECT_GRACE_SECONDS
from .context import ShelfContext
from .core import BatchResult, EntryStatus
from .errors import ConflictError, ShelfError
from .reconciler import StateReconciler
from .remotes import DirectoryRemote, validate_ref
from .sync import SyncCoordinator
from .textgen import CommandGenerator, PromptKind, draft
from .utils import humanize_timestamp


app = typer.Typer(help="""\
Track dotfiles scattered across the filesystem, see which ones changed
since they were last saved, and sync them with a remote.""")

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    EntryStatus.CLEAN: ("[green]✓[/green]", "clean"),
    EntryStatus.DIRTY: ("[yellow]M[/yellow]", "modified"),
    EntryStatus.MISSING: ("[red]-[/red]", "missing"),
    EntryStatus.DELETED: ("[red]![/red]", "not a file"),
}


class ConsolePrompter:
    """Prompter that asks on the terminal."""

    def __init__(self, console: Console, home: Optional[Path] = None):
        self.console = console
        self.home = home

    def choose_many(self, candidates: Sequence[str]) -> List[str]:
        self.console.print(f"[bold]Found {len(candidates)} untracked files:[/bold]")
        for i, candidate in enumerate(candidates, 1):
            category = catalog.category_of(Path(candidate), self.home) if self.home else None
            label = f" [dim]({category})[/dim]" if category else ""
            self.console.print(f"  [cyan]{i:>3}[/cyan] {escape(candidate)}{label}")
        answer = Prompt.ask(
            "Files to track (e.g. 1,3-5, 'all' or 'none')",
            console=self.console,
            default="none",
        )
        return [candidates[i] for i in parse_selection(answer, len(candidates))]

    def choose_one(self, message: str, options: Sequence[str]) -> str:
        return Prompt.ask(escape(message), console=self.console, choices=list(options), default=options[0])


def parse_selection(answer: str, count: int) -> List[int]:
    """Turn "1,3-5" style input into zero-based indices.

    Raises:
        typer.BadParameter: On numbers out of range or unparseable input
    """
    answer = answer.strip().lower()
    if answer in ("", "none", "n"):
        return []
    if answer in ("all", "a", "*"):
        return list(range(count))

    picked: List[int] = []
    for part in answer.replace(" ", "").split(","):
        if not part:
            continue
        try:
            if "-" in part:
                lo, hi = (int(x) for x in part.split("-", 1))
            else:
                lo = hi = int(part)
        except ValueError:
            raise typer.BadParameter(f"Not a number or range: {part}")
        if lo < 1 or hi > count or lo > hi:
            raise typer.BadParameter(f"Out of range: {part} (1-{count})")
        for i in range(lo - 1, hi):
            if i not in picked:
                picked.append(i)
    return picked


def _fail(e: ShelfError) -> None:
    console.print(f"[red]✗[/red] {escape(str(e))}")
    if isinstance(e, ConflictError):
        for path in e.paths:
            console.print(f"  [red]⚠[/red] {path}")
    raise typer.Exit(1)


def require_reconciler() -> StateReconciler:
    """Open the store for this invocation.

    Raises:
        typer.Exit: If the configuration or store cannot be loaded
    """
    try:
        return StateReconciler.open(ShelfContext())
    except ShelfError as e:
        _fail(e)


def require_sync(reconciler: StateReconciler, remote: Optional[Path]) -> SyncCoordinator:
    """Build a sync coordinator for the configured (or given) remote."""
    config = reconciler.ctx.config
    location = remote or config.remote
    if not location:
        console.print("[red]✗[/red] No remote configured")
        console.print()
        console.print(f"Set [cyan]remote[/cyan] in {reconciler.ctx.config_path} or pass [cyan]--remote[/cyan]")
        raise typer.Exit(1)
    return SyncCoordinator(
        reconciler,
        DirectoryRemote(Path(location), lock_timeout=config.lock_timeout),
        prompter=ConsolePrompter(console),
        fetch_retries=config.fetch_retries,
        default_ref=config.remote_ref,
    )


def _print_batch(result: BatchResult, verb: str) -> None:
    if result.succeeded:
        console.print(f"[green]✓[/green] {verb} {len(result.succeeded)} files:")
        for path in result.succeeded:
            console.print(f"  [green]+[/green] {path}")
    for path, error in result.failed.items():
        console.print(f"[red]✗[/red] {path}: {escape(error)}")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Track and sync dotfiles."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose)],
        force=True,
    )


@app.command()
def track(
    files: List[Path] = typer.Argument(..., help="Files to track"),
):
    """Start tracking files with their current content as baseline.

    Examples:
        shelf track ~/.bashrc ~/.gitconfig
        shelf track ~/.config/nvim/init.lua
    """
    reconciler = require_reconciler()
    result = reconciler.track_many(files)
    _print_batch(result, "Tracking")
    if not result.all_ok:
        raise typer.Exit(1)


@app.command()
def untrack(
    files: List[Path] = typer.Argument(..., help="Files or directories to untrack"),
    recursive: bool = typer.Option(False, "-r", "--recursive", help="Untrack everything under a directory"),
):
    """Stop tracking files (doesn't delete them from disk).

    Examples:
        shelf untrack ~/.bashrc
        shelf untrack -r ~/.config/i3
    """
    reconciler = require_reconciler()

    removed = []
    try:
        for file in files:
            result = reconciler.untrack(file, recursive=recursive)
            if result.noop:
                console.print(f"[yellow]⚠[/yellow] Nothing tracked under {result.target}")
            removed.extend(result.removed)
    except ShelfError as e:
        _fail(e)

    if removed:
        console.print(f"[green]✓[/green] Untracked {len(removed)} files:")
        for path in removed:
            console.print(f"  [red]-[/red] {path}")


@app.command("list")
def list_files(
    dirty: bool = typer.Option(False, "--dirty", help="Only show files with unsaved changes"),
):
    """List tracked files and their status."""
    reconciler = require_reconciler()
    try:
        states = reconciler.list(dirty_only=dirty)
    except ShelfError as e:
        _fail(e)

    if not states:
        console.print("[green]✓[/green] No unsaved changes" if dirty else "[yellow]No tracked files[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=1)
    table.add_column("Path", style="cyan")
    table.add_column("Status")
    table.add_column("Saved", style="dim")
    for state in states:
        icon, label = STATUS_STYLES[state.status]
        table.add_row(icon, state.path, label, humanize_timestamp(state.entry.last_saved_at))
    console.print(table)


@app.command()
def save(
    files: Optional[List[Path]] = typer.Argument(None, help="Files to save (default: all modified)"),
):
    """Accept the current content of tracked files as their new baseline.

    Examples:
        shelf save              # Save every modified file
        shelf save ~/.zshrc     # Save one file
    """
    reconciler = require_reconciler()

    if not files:
        result = reconciler.save_all()
        if not result.outcomes:
            console.print("[green]✓[/green] Nothing to save")
            return
        _print_batch(result, "Saved")
        if not result.all_ok:
            raise typer.Exit(1)
        return

    saved = []
    try:
        for file in files:
            saved.append(reconciler.save(file).logical_path)
    except ShelfError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Saved {len(saved)} files")


@app.command()
def restore(
    files: List[Path] = typer.Argument(..., help="Files to restore"),
):
    """Rewrite files from their last saved content, discarding changes."""
    reconciler = require_reconciler()
    try:
        for file in files:
            entry = reconciler.restore(file)
            console.print(f"  [blue]↺[/blue] {entry.logical_path}")
    except ShelfError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Restored {len(files)} files")


@app.command()
def diff(
    files: Optional[List[Path]] = typer.Argument(None, help="Files to diff (default: all modified)"),
):
    """Show changes since the last save."""
    reconciler = require_reconciler()
    try:
        text = reconciler.diff_many(files)
    except ShelfError as e:
        _fail(e)
    if text:
        console.print(text, markup=False, highlight=False, end="")


@app.command()
def suggest(
    root: Optional[Path] = typer.Option(None, "--root", help="Directory to scan (default: home)"),
):
    """Find dotfiles worth tracking and pick which ones to track.

    Well-known dotfiles (shell, editor, VCS, window manager configs) are
    listed first, followed by other small text files found under the root.
    """
    reconciler = require_reconciler()

    try:
        home = Path(os.path.abspath(Path(root).expanduser())) if root else reconciler.ctx.scan_root
        result = reconciler.suggest(ConsolePrompter(console, home=home), root)
    except ShelfError as e:
        _fail(e)

    for warning in reconciler.scan_warnings:
        console.print(f"[yellow]⚠[/yellow] Skipped {warning.path}: {warning.reason}")

    if not result.outcomes:
        console.print("[dim]Nothing tracked[/dim]")
        return
    _print_batch(result, "Tracking")


@app.command()
def push(
    ref: Optional[str] = typer.Option(None, "--ref", help="Remote ref (default: from config)"),
    remote: Optional[Path] = typer.Option(None, "--remote", help="Remote directory"),
):
    """Upload tracked files to the remote."""
    reconciler = require_reconciler()
    coordinator = require_sync(reconciler, remote)

    try:
        plan = coordinator.push_plan(ref)
        console.print(f"[bold]{plan.summary()}[/bold]")
        result = coordinator.push(ref)
    except ShelfError as e:
        _fail(e)

    for path in result.skipped:
        console.print(f"  [dim]skipped {path}[/dim]")
    console.print(f"[green]{result.summary()}[/green]")


@app.command()
def pull(
    ref: Optional[str] = typer.Option(None, "--ref", help="Remote ref (default: from config)"),
    remote: Optional[Path] = typer.Option(None, "--remote", help="Remote directory"),
    restore_missing: bool = typer.Option(False, "--restore-missing", help="Also restore files missing locally"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be pulled"),
):
    """Update local files from the remote.

    Files with unsaved local changes are never overwritten without asking.

    Examples:
        shelf pull
        shelf pull --ref laptop --restore-missing
    """
    reconciler = require_reconciler()
    coordinator = require_sync(reconciler, remote)

    try:
        plan = coordinator.pull_plan(ref, restore_missing=restore_missing)
        console.print(f"[bold]{plan.summary()}[/bold]")
        for path in plan.will_update + plan.will_add + plan.will_restore:
            console.print(f"  [blue]↓[/blue] {path}")
        for path in plan.conflicts:
            console.print(f"  [red]⚠[/red] {path}")

        if dry_run:
            console.print("\n[dim]Dry run - no changes made[/dim]")
            return

        result = coordinator.pull_apply(plan)
    except ShelfError as e:
        _fail(e)

    for path in result.changed_locally:
        console.print(f"  [yellow]⚠[/yellow] {path} changed while pulling, left as is")
    console.print(f"[green]{result.summary()}[/green]")


@app.command()
def init(
    remote: Optional[Path] = typer.Option(None, "--remote", help="Remote directory to push to and pull from"),
    ref: str = typer.Option(DEFAULT_REMOTE_REF, "--ref", help="Remote ref for this machine"),
    generator: Optional[str] = typer.Option(None, "--generator", help="Command that drafts commit messages and reviews"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
):
    """Write the config file for this machine.

    Examples:
        shelf init --remote ~/Dropbox/dotfiles
        shelf init --remote /mnt/nas/dotfiles --ref laptop --generator "llm -m gpt-4o-mini"
    """
    ctx = ShelfContext()
    if ctx.config_path.exists() and not force:
        console.print(f"[red]✗[/red] {ctx.config_path} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    try:
        validate_ref(ref, "init")
        config = ShelfConfig(
            remote=str(remote.expanduser()) if remote else None,
            remote_ref=ref,
            generator=generator,
        )
        save_config(config, ctx.config_path)
        ctx.ensure_dirs()
    except ShelfError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Wrote {ctx.config_path}")
    if not remote:
        console.print("[dim]No remote set; push and pull need --remote[/dim]")


def require_generator(reconciler: StateReconciler) -> CommandGenerator:
    """Build the configured text generator.

    Raises:
        typer.Exit: If no generator is configured or its command is malformed
    """
    config = reconciler.ctx.config
    if not config.generator:
        console.print("[red]✗[/red] No text generator configured")
        console.print()
        console.print(
            f"Set [cyan]generator[/cyan] in {reconciler.ctx.config_path} to a command "
            "that reads a prompt on stdin, e.g. [cyan]llm -m gpt-4o-mini[/cyan]"
        )
        raise typer.Exit(1)
    try:
        return CommandGenerator(config.generator, timeout=config.generator_timeout)
    except ShelfError as e:
        _fail(e)


def _draft_for(reconciler: StateReconciler, kind: PromptKind, files: Optional[List[Path]]) -> Optional[str]:
    """Draft text of a kind from the diff of files (default: all modified)."""
    try:
        diff_text = reconciler.diff_many(files)
    except ShelfError as e:
        _fail(e)
    if not diff_text.strip():
        console.print("[green]✓[/green] No unsaved changes")
        return None

    generator = require_generator(reconciler)
    try:
        with console.status(f"Drafting {kind.value}..."):
            return draft(kind, diff_text, generator, reconciler.ctx.config_dir)
    except ShelfError as e:
        _fail(e)


@app.command()
def commit(
    files: Optional[List[Path]] = typer.Argument(None, help="Files to describe (default: all modified)"),
    save_after: bool = typer.Option(False, "--save", help="Save the described files after drafting"),
):
    """Draft a commit message for unsaved changes.

    Examples:
        shelf commit
        shelf commit ~/.zshrc --save
    """
    reconciler = require_reconciler()
    message = _draft_for(reconciler, PromptKind.COMMIT, files)
    if message is None:
        return
    console.print(message, markup=False, highlight=False)

    if save_after:
        if files:
            try:
                for file in files:
                    reconciler.save(file)
            except ShelfError as e:
                _fail(e)
            console.print(f"[green]✓[/green] Saved {len(files)} files")
        else:
            result = reconciler.save_all()
            _print_batch(result, "Saved")
            if not result.all_ok:
                raise typer.Exit(1)


@app.command()
def review(
    files: Optional[List[Path]] = typer.Argument(None, help="Files to review (default: all modified)"),
):
    """Ask the text generator to review unsaved changes."""
    text = _draft_for(require_reconciler(), PromptKind.REVIEW, files)
    if text is not None:
        console.print(text, markup=False, highlight=False)


@app.command()
def gc(
    grace: float = typer.Option(
        OBJECT_GRACE_SECONDS, "--grace", help="Keep unreferenced objects younger than this many seconds"
    ),
):
    """Delete saved baselines that no tracked file refers to."""
    reconciler = require_reconciler()
    try:
        removed = reconciler.prune_objects(grace=grace)
    except ShelfError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Removed {removed} unreferenced objects")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
