"""portpatch CLI: Typer + Rich terminal interface.

Patches a port's extracted sources with a unified diff, keeping a
timestamped snapshot to restore from if the patch does not apply.
"""

from __future__ import annotations

from pathlib import Path

import click
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from typer.core import TyperCommand

from portpatch import __version__
from portpatch.backup import BackupManager
from portpatch.logs import configure_logging
from portpatch.schemas.job import JobConfig, WorkflowResult
from portpatch.settings import load_settings
from portpatch.workflow import PatchWorkflow

console = Console()

app = typer.Typer(
    name="portpatch",
    help="Apply a patch to a port's sources with automatic backup and restore.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    rich_markup_mode="rich",
)


class _PatchCommand(TyperCommand):
    """Reports malformed arguments with exit status 1 instead of click's 2."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"portpatch {__version__}")
        raise typer.Exit()


@app.command(cls=_PatchCommand)
def patch(
    port_name: str = typer.Argument(..., help="Port to patch, e.g. 'st'"),
    patch_file: str = typer.Argument(..., help="Unified diff to apply"),
    backup_dir_arg: str = typer.Argument(
        None, metavar="[BACKUP_DIR]", help="Snapshot directory (same as --backup-dir)",
    ),
    backup_dir: str = typer.Option(
        None, "--backup-dir", "-b",
        help="Directory holding {port}-original-{timestamp} snapshots",
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n",
        help="Extract and snapshot only; show the patch command instead of running it",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show debug output, including every command and its output",
    ),
    force: bool = typer.Option(
        False, "--force", "-f",
        help="Run the patch utility in force mode",
    ),
    ports_dir: str = typer.Option(
        None, "--ports-dir",
        help="Ports tree root (default from config: /usr/ports)",
    ),
    category: str = typer.Option(
        None, "--category",
        help="Ports category holding the port (default from config: x11)",
    ),
    keep: int = typer.Option(
        None, "--keep", min=1,
        help="After a successful patch, keep only the N newest snapshots",
    ),
    config: str = typer.Option(
        None, "--config",
        help="Settings file (TOML) instead of $PORTPATCH_CONFIG or the defaults",
    ),
    version: bool = typer.Option(
        False, "--version",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Back up, patch, and rebuild PORT_NAME with PATCH_FILE."""
    try:
        settings = load_settings(Path(config) if config else None)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None

    log = configure_logging(verbose, settings.log_file, console)

    try:
        job = JobConfig(
            port_name=port_name.rstrip("/"),
            patch_file=Path(patch_file),
            backup_dir=Path(backup_dir or backup_dir_arg or settings.backup_dir),
            ports_dir=Path(ports_dir) if ports_dir else settings.ports_dir,
            category=category or settings.category,
            dry_run=dry_run,
            force=force,
            make_program=settings.make_program,
            patch_program=settings.patch_program,
            strip_level=settings.strip_level,
            command_timeout=settings.timeout_or_none,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid job:[/red] {e}")
        raise typer.Exit(1) from None

    if job.dry_run:
        log.info("Running in dry-run mode")

    backups = BackupManager(job.backup_dir)
    result = PatchWorkflow(job, backups=backups, logger=log).run()

    if result.success and keep and not job.dry_run:
        result.steps.append("prune")
        try:
            backups.prune(job.port_name, keep)
        except OSError as e:
            log.warning("Pruning old backups failed: %s", e)

    _render_result(result)

    if not result.success:
        raise typer.Exit(1)
    log.info("Operation completed successfully")


def _render_result(result: WorkflowResult) -> None:
    """Print a summary panel for a finished run."""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Port", result.port_name)
    table.add_row("State", result.state.value)
    table.add_row("Steps", " -> ".join(result.steps) or "-")
    if result.source_dir is not None:
        table.add_row("Sources", str(result.source_dir))
    if result.snapshot is not None:
        table.add_row("Snapshot", str(result.snapshot.path))
    if result.restored is not None:
        table.add_row("Restored", "yes" if result.restored else "[red]NO[/red]")

    if result.success:
        title = "[bold green]Dry run complete[/bold green]" if result.simulated \
            else "[bold green]Patched[/bold green]"
        console.print(Panel(table, title=title, border_style="green"))
        return

    table.add_row("Error", f"[red]{result.error_kind}[/red]")
    for i, cause in enumerate(result.causes):
        table.add_row("Cause" if i == 0 else "", Text(cause))
    console.print(Panel(table, title="[bold red]Patch failed[/bold red]", border_style="red"))
