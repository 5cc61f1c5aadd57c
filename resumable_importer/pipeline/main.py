"""CLI entry point for the resumable importer.

This module provides the command-line interface for running an import
with progress indicators, resume prompts, and error handling.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from resumable_importer.models.config import ConfigManager, ImporterConfig
from resumable_importer.pipeline.orchestrator import ImportPipeline, ImportRunResult
from resumable_importer.pipeline.output import JSONOutputFormatter


console = Console()


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--base-url", help="Upstream API base URL (overrides config)")
@click.option("--username", "-u", help="Account whose listing is imported (overrides config)")
@click.option("--token", envvar="IMPORTER_ACCESS_TOKEN", help="Bearer access token")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Directory imported items are written to (overrides config)",
)
@click.option(
    "--resume/--fresh",
    default=True,
    help="Resume an interrupted import if one exists (default) or start over",
)
@click.option(
    "--fetch-limit",
    "-n",
    type=int,
    help="Maximum number of items to fetch (overrides config)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option(
    "--unsave",
    is_flag=True,
    help="Unsave imported items upstream once the import completes",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Disable progress bars (useful for CI/CD)",
)
@click.version_option(version="1.0.0", prog_name="resumable-importer")
def main(
    config: Path,
    base_url: Optional[str],
    username: Optional[str],
    token: Optional[str],
    output: Optional[Path],
    resume: bool,
    fetch_limit: Optional[int],
    log_level: Optional[str],
    unsave: bool,
    no_progress: bool,
) -> None:
    """
    Resumable Importer - rate-limited, checkpointed import of a paginated listing.

    Fetches every page of the configured listing through a rate-limited,
    circuit-broken request queue, stores each item locally and checkpoints
    progress so an interrupted run continues where it stopped.

    Examples:

        # Import using config/config.yaml
        $ resumable-importer

        # Start over, ignoring any saved checkpoint
        $ resumable-importer --fresh

        # Import at most 200 items into a custom directory
        $ resumable-importer -n 200 -o saved-items
    """
    try:
        cli_overrides = {
            "base_url": base_url,
            "username": username,
            "access_token": token,
            "output_directory": str(output) if output else None,
            "fetch_limit": fetch_limit,
            "log_level": log_level.upper() if log_level else None,
            "unsave_after_import": True if unsave else None,
        }

        config_manager = ConfigManager(config)
        importer_config = config_manager.load_config(cli_overrides)

        _display_config_summary(importer_config, resume, no_progress)

        result = asyncio.run(_run_import_with_progress(importer_config, resume, no_progress))

        formatter = JSONOutputFormatter()
        formatter.save(result, str(importer_config.summary_path))

        _display_results(result, importer_config.summary_path, no_progress)

        sys.exit(1 if result.error else 0)

    except KeyboardInterrupt:
        console.print("\n[yellow]Import interrupted; run again to resume[/yellow]")
        sys.exit(130)  # Standard exit code for SIGINT
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {escape(str(e))}", style="bold red")
        if "--debug" in sys.argv:
            console.print_exception()
        sys.exit(1)


async def _run_import_with_progress(
    config: ImporterConfig,
    resume: bool,
    no_progress: bool,
) -> ImportRunResult:
    """
    Run the import with progress tracking.

    Args:
        config: Importer configuration
        resume: Whether to resume a saved checkpoint
        no_progress: Whether to disable progress bars

    Returns:
        Import run result
    """
    pipeline = ImportPipeline(config)

    if resume and await pipeline.has_resumable_session():
        console.print("[cyan]Resuming interrupted import...[/cyan]")

    if no_progress:
        console.print("[cyan]Running import...[/cyan]")
        return await pipeline.run(resume=resume)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        total = min(config.fetch_limit, config.max_items)
        fetch_task = progress.add_task("[cyan]Fetching...", total=total)
        process_task = progress.add_task("[green]Importing...", total=total)

        def on_progress(update) -> None:
            progress.update(
                fetch_task,
                completed=update.fetched_count,
                description=f"[cyan]Fetching ({update.phase.value})...",
            )
            progress.update(process_task, completed=update.processed_count)

        return await pipeline.run(resume=resume, on_progress=on_progress)


def _display_config_summary(config: ImporterConfig, resume: bool, no_progress: bool) -> None:
    """Display configuration summary before running."""
    if no_progress:
        return

    console.print("\n[bold cyan]Import Configuration[/bold cyan]")
    console.print(f"  Listing: {config.base_url}{config.listing_url}")
    console.print(f"  Rate Limit: {config.rate_limit_requests} req / {config.rate_limit_window:g}s")
    console.print(f"  Concurrency: {config.max_concurrent}")
    console.print(f"  Fetch Limit: {config.fetch_limit}")
    console.print(f"  Output: {config.output_directory}")
    console.print(f"  Mode: {'resume' if resume else 'fresh'}")
    if config.unsave_after_import:
        console.print("  Unsave: after import")
    console.print()


def _display_results(
    result: ImportRunResult,
    summary_path: Path,
    no_progress: bool,
) -> None:
    """Display final results summary."""
    progress = result.progress

    if no_progress:
        if progress:
            console.print(
                f"✓ Import {progress.phase.value}: {progress.imported_count} imported, "
                f"{progress.skipped_count} skipped, {progress.failed_count} failed"
            )
        if result.error:
            console.print(f"✗ Stopped: {escape(result.error)}")
        console.print(f"✓ Summary saved to: {summary_path}")
        return

    title = "Import Stopped" if result.error else "Import Finished"
    console.print(f"\n[bold green]{title}[/bold green]\n")

    summary_table = Table(title="Import Summary", show_header=False)
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="green")

    if progress:
        summary_table.add_row("Phase", progress.phase.value)
        summary_table.add_row("Fetched", str(progress.fetched_count))
        summary_table.add_row("Imported", str(progress.imported_count))
        summary_table.add_row("Skipped", str(progress.skipped_count))
        summary_table.add_row("Failed", str(progress.failed_count))
        summary_table.add_row("Elapsed", f"{progress.elapsed_seconds:.2f}s")
    if result.fetch and result.fetch.unsaved_count:
        summary_table.add_row("Unsaved", str(result.fetch.unsaved_count))
    summary_table.add_row(
        "Request Success Rate",
        f"{result.performance.request_success_rate * 100:.1f}%",
    )
    summary_table.add_row("Circuit", result.queue_status.circuit_state.value)

    console.print(summary_table)
    console.print()

    if result.recent_errors:
        error_table = Table(title="Recent Errors")
        error_table.add_column("Item", style="cyan")
        error_table.add_column("Error", style="red")
        error_table.add_column("Retryable", justify="center", style="yellow")
        for error in result.recent_errors:
            error_table.add_row(escape(error.item_id), escape(error.error), "yes" if error.retryable else "no")
        console.print(error_table)
        console.print()

    for bottleneck in result.bottlenecks:
        console.print(
            f"[yellow]⚠ {bottleneck.description}[/yellow] ({bottleneck.severity}): "
            f"{bottleneck.recommendation}"
        )

    if result.error:
        console.print(f"[yellow]Stopped early:[/yellow] {escape(result.error)}")
        console.print("[yellow]Progress was saved; run again to resume.[/yellow]")
    console.print(f"[bold]Summary saved to:[/bold] {summary_path}")
    console.print()


if __name__ == "__main__":
    main()
