import argparse
import logging
import sys
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from . import config as config_mod
from . import ops
from .config import SyncConfig
from .constants import APP_NAME, LOG_FILE, MAX_LOG_SIZE
from .detector import ChangeVerdict
from .exceptions import SydError
from .git_wrapper import MergeAnalysis
from .paths import resolve

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

_STATE_STYLES = {
    ops.FileState.SYNCED: ("✔", "green"),
    ops.FileState.LOCAL_NEWER: ("⚠", "yellow"),
    ops.FileState.DRIFTED: ("⚠", "magenta"),
    ops.FileState.NOT_BACKED_UP: ("✗", "red"),
    ops.FileState.SOURCE_MISSING: ("✗", "bold red"),
}


def setup_logging(verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): If True, debug output goes to stderr. Otherwise only
                        warnings and errors do. INFO and above always go to
                        the rotating log file.
    """
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    try:
        log_file = resolve(LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_SIZE, backupCount=5
        )
    except (OSError, SydError) as e:
        logger.warning(f"File logging disabled: {e}")
        return
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _copy_progress(total: int, label: str) -> tuple[Progress, Callable]:
    """Builds a rich progress bar and the callback that advances it.

    The bar only appears once the first file is copied, so prompts issued
    before that point keep the terminal to themselves.
    """
    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("{task.fields[file]}", style="dim"),
        console=console,
        transient=True,
    )
    task = progress.add_task(label, total=total, file="")

    def advance(item: ops.SyncItem) -> None:
        if not progress.live.is_started:
            progress.start()
        progress.update(task, advance=1, file=item.entry.file_name)

    return progress, advance


def _describe(item: ops.SyncItem) -> str:
    reason = "new" if item.verdict is ChangeVerdict.MISSING else "changed"
    return f"{item.entry.source} ({reason})"


def run_backup(conf: SyncConfig, dry_run: bool = False) -> None:
    """Runs the backup workflow and reports the outcome."""
    if dry_run:
        result = ops.backup_files(conf, dry_run=True)
        if not result.pending:
            console.print("[green]Nothing to back up.[/green]")
            return
        console.print("[bold]Would back up:[/bold]")
        for item in result.pending:
            console.print(f"   • {_describe(item)}")
        return

    progress, advance = _copy_progress(len(conf.entries), "Backing up")
    try:
        result = ops.backup_files(conf, progress=advance)
    finally:
        progress.stop()

    for item in result.skipped:
        console.print(f"[yellow]⚠ Source file missing:[/yellow] {item.entry.source}")

    if not result.copied:
        console.print("[green]All files are up to date, no backup needed.[/green]")
    elif result.commit is None:
        console.print(
            f"Copied {len(result.copied)} file(s). "
            "[dim]Mirror already matched HEAD; nothing to commit.[/dim]"
        )
    else:
        console.print(
            f"[bold green]✔ Backed up {len(result.copied)} file(s)[/bold green] "
            f"[dim]({result.commit[:8]} → {conf.git.remote_url})[/dim]"
        )


def _confirm_restore(items: list[ops.SyncItem]) -> bool:
    console.print("[bold]The following live files will be overwritten:[/bold]")
    for item in items:
        console.print(f"   • {item.dest}")
    return Confirm.ask("Proceed with restore?", default=False)


def run_restore(conf: SyncConfig, force: bool = False, dry_run: bool = False) -> None:
    """Runs the restore workflow and reports the outcome."""
    with console.status("Fetching mirror...", spinner="dots"):
        analysis = ops.fetch_mirror(conf)

    if analysis is None:
        console.print(f"[dim]Cloned {conf.git.remote_url}[/dim]")
    elif analysis is MergeAnalysis.FAST_FORWARD:
        console.print("[dim]Fast-forwarded mirror to the latest backup.[/dim]")

    progress, advance = _copy_progress(len(conf.entries), "Restoring")
    try:
        result = ops.restore_files(
            conf,
            fetch=False,
            force=force,
            dry_run=dry_run,
            confirm=_confirm_restore,
            progress=advance,
        )
    finally:
        progress.stop()

    for item in result.skipped:
        console.print(f"[yellow]⚠ Backup file not found:[/yellow] {item.source}")

    if result.aborted:
        console.print("[yellow]Restore cancelled.[/yellow]")
    elif result.dry_run:
        console.print("[bold]Would restore:[/bold]")
        for item in result.pending:
            console.print(f"   • {_describe(item)}")
    elif not result.copied:
        console.print("[green]All files are up to date, no restore needed.[/green]")
    else:
        console.print(
            f"[bold green]✔ Restored {len(result.copied)} file(s).[/bold green]"
        )


def show_status(conf: SyncConfig) -> None:
    """Displays the mirror state and the state of every tracked file."""
    report = ops.collect_status(conf)

    mirror = Text()
    mirror.append("Directory: ", style="bold")
    mirror.append(f"{report.mirror_dir}\n")
    mirror.append("Status:    ", style="bold")
    if report.mirror_exists:
        mirror.append("✔ Exists\n", style="green")
    else:
        mirror.append("✗ Does not exist\n", style="red")

    mirror.append("Remote:    ", style="bold")
    mirror.append(f"{report.remote_url}\n")
    if report.is_repository:
        mirror.append("Branch:    ", style="bold")
        mirror.append(f"{report.branch or '(detached)'}\n")
        mirror.append("Modified:  ", style="bold")
        mirror.append(f"{report.modified} files\n")
        mirror.append("Untracked: ", style="bold")
        mirror.append(f"{report.untracked} files", style="dim")
    else:
        mirror.append("Git:       ", style="bold")
        mirror.append("✗ Not initialized", style="red")

    console.print(Panel(mirror, title="Mirror Status", expand=False))

    if not report.files:
        console.print("[dim]No tracked files configured.[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Tracked File", style="cyan")
    table.add_column("State")
    for file_status in report.files:
        icon, style = _STATE_STYLES[file_status.state]
        table.add_row(
            str(file_status.live).replace(str(Path.home()), "~"),
            f"[{style}]{icon} {file_status.state.value}[/{style}]",
        )
    console.print(table)


def show_config_reference(config_path: Path | None = None) -> None:
    """Displays the configuration schema and where syd looks for it."""
    table = Table(title="syd Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "files",
        "folder",
        "str",
        "required",
        "Mirror directory holding the git repository (may use ~).",
    )
    table.add_row(
        "", "paths", "list", "[]", "Live files to track. Base names must be unique."
    )
    table.add_row(
        "git",
        "remote_url",
        "str",
        "required",
        "Remote the mirror is pushed to and restored from.",
    )
    table.add_row("", "branch", "str", '"main"', "The single synchronized branch.")
    table.add_row(
        "",
        "commit_message",
        "str",
        '"Update dotfiles"',
        "Message used for backup commits.",
    )

    console.print(table)
    console.print("\n[bold]Search order:[/bold]")
    for candidate in config_mod.search_paths(config_path):
        marker = "[green]✔[/green]" if candidate.is_file() else "[dim]-[/dim]"
        console.print(f"   {marker} {candidate}")


class SydHelpFormatter(argparse.HelpFormatter):
    """Groups the subcommands into logical categories in the help output."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []
            groups = {
                "Synchronization": ["backup", "restore"],
                "Inspection": ["status", "config"],
            }

            subactions = list(self._iter_indented_subactions(action))
            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")
                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Back up and restore dotfiles through a git mirror.",
        formatter_class=SydHelpFormatter,
    )
    parser.add_argument(
        "--config", "-c", type=Path, help="Use this configuration file"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    backup_parser = subparsers.add_parser(
        "backup", help="Copy tracked files into the mirror, commit and push"
    )
    backup_parser.add_argument(
        "--dry-run", "-n", action="store_true", help="Only show what would change"
    )

    restore_parser = subparsers.add_parser(
        "restore", help="Fetch the mirror and copy files back to their locations"
    )
    restore_parser.add_argument(
        "--force", "-f", action="store_true", help="Overwrite without asking"
    )
    restore_parser.add_argument(
        "--dry-run", "-n", action="store_true", help="Only show what would change"
    )

    subparsers.add_parser(
        "status", aliases=["list"], help="Show mirror and tracked file status"
    )
    subparsers.add_parser("config", help="Show configuration options and locations")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the syd CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_usage(sys.stderr)
        err_console.print("[bold red]Error:[/bold red] a command is required")
        sys.exit(2)

    setup_logging(args.verbose)

    try:
        if args.command == "config":
            show_config_reference(args.config)
            return

        conf = config_mod.load(args.config)

        if args.command == "backup":
            run_backup(conf, dry_run=args.dry_run)
        elif args.command == "restore":
            run_restore(conf, force=args.force, dry_run=args.dry_run)
        elif args.command in ("status", "list"):
            show_status(conf)
    except SydError as e:
        logger.debug("Command failed", exc_info=True)
        err_console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
