"""CLI entry point for ex-remover."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ex_remover.config import Settings
from ex_remover.credits import CreditLedger, JsonFileCreditStore
from ex_remover.discovery import discover_images, get_batch_stats, load_records
from ex_remover.errors import InsufficientCredits, RemoverError
from ex_remover.export import DEFAULT_ARCHIVE_NAME, export_results, generate_report
from ex_remover.orchestrator import BatchOrchestrator
from ex_remover.provider import OpenAIVisionEditAdapter
from ex_remover.records import ImageRecord, ImageStatus, ImageStore, Point, StatusUpdate
from ex_remover.reverify import ReverifyCoordinator

console = Console()

STATUS_STYLES = {
    ImageStatus.QUEUED: "dim",
    ImageStatus.VERIFYING: "cyan",
    ImageStatus.PROCESSING: "blue",
    ImageStatus.PERSON_NOT_FOUND: "yellow",
    ImageStatus.DONE: "green",
    ImageStatus.FAILED: "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler.

    Args:
        verbose: If True, set log level to DEBUG
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def open_ledger(settings: Settings) -> CreditLedger:
    return CreditLedger.open(
        JsonFileCreditStore(settings.credits_file),
        default=settings.default_credits,
        bonus=settings.bonus_credits,
    )


def print_update(record: ImageRecord, update: StatusUpdate) -> None:
    style = STATUS_STYLES[update.status]
    console.print(f"  {escape(record.filename)}: [{style}]{update.status.value}[/{style}]")
    if update.error:
        console.print(f"    [red]{escape(update.error)}[/red]")


def print_results(store: ImageStore, balance: int) -> None:
    table = Table(title="Results")
    table.add_column("Image", style="cyan")
    table.add_column("Status")
    table.add_column("Notes")
    for record in store:
        style = STATUS_STYLES[record.status]
        notes = record.error or ("kept original" if record.is_pass_through else "")
        table.add_row(
            escape(record.filename), f"[{style}]{record.status.value}[/{style}]", escape(notes)
        )
    console.print(table)
    console.print(f"Credits remaining: [bold]{balance}[/bold]")


def find_record(store: ImageStore, name: str) -> ImageRecord:
    for record in store:
        if record.filename == name or record.id == name:
            return record
    raise click.BadParameter(f"No image named {name} in this batch")


def prompt_point(message: str) -> Point:
    while True:
        raw = click.prompt(message)
        try:
            return Point.parse(raw)
        except ValueError as e:
            console.print(f"[red]{escape(str(e))}[/red]")


async def review(orchestrator: BatchOrchestrator, coordinator: ReverifyCoordinator) -> None:
    """Ask the user about every image the subject was not found in, then offer fixes."""
    store = orchestrator.store

    for record_id in store.ids_with_status(ImageStatus.PERSON_NOT_FOUND):
        record = store.get(record_id)
        # An earlier re-point may have settled this one already
        if record.status != ImageStatus.PERSON_NOT_FOUND:
            continue
        console.print(f"\n[yellow]Subject not found in[/yellow] {escape(record.filename)}")
        choice = click.prompt(
            "  [n]ot here, [p]oint again, [s]kip",
            type=click.Choice(["n", "p", "s"]),
            default="s",
        )
        if choice == "n":
            orchestrator.mark_not_present(record_id)
        elif choice == "p":
            point = prompt_point("  Point at the person (X,Y in image pixels)")
            await coordinator.free_repoint(record_id, point)

    while store.ids_with_status(ImageStatus.DONE):
        name = click.prompt(
            f"\nFix an image for 1 credit (balance {orchestrator.ledger.balance}), "
            "or press Enter to finish",
            default="",
            show_default=False,
        )
        if not name:
            break
        try:
            record = find_record(store, name)
            point = prompt_point("  Point at the person (X,Y in image pixels)")
            await coordinator.paid_refix(record.id, point)
        except InsufficientCredits as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            break
        except (click.BadParameter, RemoverError) as e:
            console.print(f"[red]{escape(str(e))}[/red]")


async def run_session(
    orchestrator: BatchOrchestrator,
    point: Point | None,
    reference: str | None,
    description: str | None,
    interactive: bool,
) -> None:
    if point is not None:
        record_id = find_record(orchestrator.store, reference).id if reference else None
        found = await orchestrator.identify_target(point, record_id)
        console.print(f"\n[bold]Subject:[/bold] {escape(found)}")
    if description:
        orchestrator.set_description(description)

    console.print("\n[bold]Removing subject...[/bold]")
    await orchestrator.run()

    if interactive:
        await review(orchestrator, ReverifyCoordinator(orchestrator))


@click.group()
def main() -> None:
    """Ex Remover - remove one person from a batch of photos."""


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def credits(verbose: bool) -> None:
    """Show the credit balance."""
    setup_logging(verbose)
    try:
        ledger = open_ledger(Settings.from_env())
    except RemoverError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        sys.exit(1)
    console.print(f"Credits: [bold]{ledger.balance}[/bold]")


@main.command()
@click.argument(
    "paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path)
)
@click.option("--point", "-p", type=str, help="X,Y of the person on the reference photo")
@click.option("--reference", type=str, help="Reference photo name (defaults to the first)")
@click.option("--description", "-d", type=str, help="Use or override the subject description")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path(DEFAULT_ARCHIVE_NAME),
    help="Archive for finished images",
)
@click.option(
    "--report",
    type=click.Path(path_type=Path),
    default=None,
    help="Also write a batch report to this path",
)
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "markdown", "both"], case_sensitive=False),
    default="json",
    help="Report format",
)
@click.option("--interactive", "-i", is_flag=True, help="Review misses and fix images")
@click.option("--dry-run", is_flag=True, help="Show what would be processed without calling API")
@click.option("--recursive", "-r", is_flag=True, help="Include subdirectories")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def run(
    paths: tuple[Path, ...],
    point: str | None,
    reference: str | None,
    description: str | None,
    output: Path,
    report: Path | None,
    format: str,
    interactive: bool,
    dry_run: bool,
    recursive: bool,
    verbose: bool,
) -> None:
    """Remove the person at POINT from every photo in PATHS.

    Examples:

        \b
        # Identify the person at (420, 310) in the first photo
        $ ex-remover run ./photos --point 420,310

        \b
        # Review misses and fix results afterwards
        $ ex-remover run ./photos --point 420,310 --interactive
    """
    setup_logging(verbose)

    console.print("\n[bold cyan]Ex Remover[/bold cyan]\n")

    parsed_point = None
    if point:
        try:
            parsed_point = Point.parse(point)
        except ValueError as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            sys.exit(1)
    elif not description:
        console.print("[bold red]Error:[/bold red] Pass --point or --description")
        sys.exit(1)

    try:
        images, ignored = discover_images(list(paths), recursive=recursive)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        sys.exit(1)

    if ignored:
        console.print("[yellow]Some files were not valid image types and were ignored.[/yellow]")

    records, messages = load_records(images)
    for message in messages:
        console.print(f"[yellow]{escape(message)}[/yellow]")

    if not records:
        console.print("[yellow]No images found.[/yellow]")
        sys.exit(0)

    stats = get_batch_stats(records)
    table = Table(title="Batch Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total Images", str(stats["total"]))
    table.add_row("Total Size", f"{stats['total_size_mb']} MB")
    for media_type, count in stats["by_type"].items():
        table.add_row(f"  {media_type}", str(count))
    table.add_row("Cost", f"{stats['total']} credit(s)")
    console.print(table)

    if dry_run:
        console.print("\n[yellow]Dry run - stopping here.[/yellow]")
        for record in records[:10]:
            console.print(f"  - {escape(record.filename)}")
        if len(records) > 10:
            console.print(f"  ... and {len(records) - 10} more")
        sys.exit(0)

    settings = Settings.from_env()
    try:
        ledger = open_ledger(settings)
        adapter = OpenAIVisionEditAdapter(
            api_key=settings.api_key,
            vision_model=settings.vision_model,
            edit_model=settings.edit_model,
            timeout=settings.timeout,
        )
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        sys.exit(1)

    store = ImageStore(records)
    store.subscribe(print_update)
    orchestrator = BatchOrchestrator(store, ledger, adapter)

    try:
        asyncio.run(
            run_session(orchestrator, parsed_point, reference, description, interactive)
        )
    except InsufficientCredits as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        console.print(f"Buy at least {e.shortfall} more credit(s) to run this batch.")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        sys.exit(1)

    print_results(store, ledger.balance)

    try:
        count = export_results(store, output)
        console.print(f"Saved {count} image(s) to: [cyan]{escape(str(output))}[/cyan]")
    except ValueError as e:
        console.print(f"[yellow]{escape(str(e))}[/yellow]")

    if report:
        generate_report(store, orchestrator.descriptor.text, ledger.balance, report, format=format)
        console.print(f"Report saved next to: [cyan]{escape(str(report))}[/cyan]")

    console.print()


if __name__ == "__main__":
    main()
