"""Extraction commands for the channel transcripts CLI."""

import asyncio
import json

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from backend.app.models.extraction_contracts import (
    DateFilter,
    ExtractionParams,
    FetchPolicy,
    VideoResult,
)
from ..api_client import ApiRequestError, build_http_client
from ..config import Config
from ..stream_consumer import ExtractionOutcome, ExtractionProgress, ExtractionSession

console = Console()

DATE_FILTER_CHOICES = [date_filter.value for date_filter in DateFilter]
POLICY_CHOICES = [policy.value for policy in FetchPolicy]


async def run_extraction(
    config: Config,
    params: ExtractionParams,
    policy: FetchPolicy | None = None,
) -> ExtractionProgress:
    """Run one extraction against the server, rendering a progress bar while it streams."""
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress_bar:
        task_id = progress_bar.add_task("Listing videos...", total=None)

        def on_progress(progress: ExtractionProgress):
            progress_bar.update(
                task_id,
                completed=progress.current,
                total=progress.total or None,
                description=progress.message or "Fetching transcripts...",
            )

        def on_result(result: VideoResult):
            progress_bar.console.print(f"[green]✓[/green] {result.title}")

        async with build_http_client(config.base_url, timeout_seconds=config.timeout_seconds) as client:
            session = ExtractionSession(client, on_progress=on_progress, on_result=on_result)
            await session.start(params, policy=policy)
            try:
                return await session.wait()
            except asyncio.CancelledError:
                await session.cancel()
                raise


def render_results(results: list[VideoResult], show_transcripts: bool = False):
    """Print extracted videos as a table, optionally followed by their transcripts."""
    table = Table(title=f"{len(results)} transcripts")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("URL", style="cyan")
    table.add_column("Words", justify="right")

    for index, result in enumerate(results, start=1):
        table.add_row(str(index), result.title, result.url, str(len(result.transcript.split())))
    console.print(table)

    if show_transcripts:
        for result in results:
            console.print(f"\n[bold]{result.title}[/bold]\n{result.url}\n")
            console.print(result.transcript, markup=False)


def params_from_options(config: Config, channel: str, language, date_filter) -> ExtractionParams:
    return ExtractionParams(
        channel_reference=channel,
        language=language or config.language,
        date_filter=DateFilter(date_filter or config.date_filter),
    )


def report_outcome(progress: ExtractionProgress) -> bool:
    """Print how the extraction ended. Returns True when it completed."""
    if progress.outcome is ExtractionOutcome.COMPLETED:
        console.print(f"[green]{progress.message}[/green]")
        return True
    if progress.outcome is ExtractionOutcome.CANCELLED:
        console.print("[yellow]Extraction cancelled[/yellow]")
        return False
    console.print(f"[red]Extraction failed:[/red] {progress.error}")
    return False


@click.command()
@click.argument("channel")
@click.option("--language", "-l", default=None, help="Transcript language code.")
@click.option(
    "--date-filter",
    "-d",
    type=click.Choice(DATE_FILTER_CHOICES),
    default=None,
    help="Only include videos published in this window.",
)
@click.option(
    "--policy",
    type=click.Choice(POLICY_CHOICES),
    default=None,
    help="Override the server's transcript fetch policy.",
)
@click.option("--show-transcripts", is_flag=True, help="Print full transcripts after the summary table.")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON.")
def extract(channel: str, language, date_filter, policy, show_transcripts: bool, as_json: bool):
    """Extract transcripts for every video of CHANNEL."""
    config = Config.load()
    params = params_from_options(config, channel, language, date_filter)

    try:
        progress = asyncio.run(
            run_extraction(config, params, FetchPolicy(policy) if policy else None)
        )
    except ApiRequestError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        console.print("[yellow]Extraction cancelled[/yellow]")
        raise SystemExit(130)

    if as_json:
        click.echo(json.dumps([result.model_dump() for result in progress.results], indent=2))
        if progress.outcome is not ExtractionOutcome.COMPLETED:
            raise SystemExit(1)
        return

    if progress.results:
        render_results(progress.results, show_transcripts=show_transcripts)
    if not report_outcome(progress):
        raise SystemExit(1)
