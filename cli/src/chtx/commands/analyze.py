"""AI analysis command for the channel transcripts CLI."""

import asyncio

import click
from rich.console import Console

from ..api_client import ApiRequestError, ChannelTranscriptsApi, InvalidInputError, build_http_client
from ..config import Config
from .extract import DATE_FILTER_CHOICES, params_from_options, report_outcome, run_extraction

console = Console()


async def _analyze(config: Config, transcripts, prompt: str) -> str:
    def on_chunk(chunk: str):
        console.print(chunk, end="", markup=False, highlight=False)

    async with build_http_client(config.base_url, timeout_seconds=config.timeout_seconds) as client:
        analysis = await ChannelTranscriptsApi(client).analyze(transcripts, prompt, on_chunk=on_chunk)
    console.print()
    return analysis


@click.command()
@click.argument("channel")
@click.option("--prompt", "-p", required=True, help="What to ask about the channel's videos.")
@click.option("--language", "-l", default=None, help="Transcript language code.")
@click.option(
    "--date-filter",
    "-d",
    type=click.Choice(DATE_FILTER_CHOICES),
    default=None,
    help="Only include videos published in this window.",
)
def analyze(channel: str, prompt: str, language, date_filter):
    """Extract CHANNEL's transcripts and analyze them with PROMPT."""
    if not prompt.strip():
        raise click.BadParameter("The prompt must not be empty.", param_hint="--prompt")

    config = Config.load()
    params = params_from_options(config, channel, language, date_filter)

    try:
        progress = asyncio.run(run_extraction(config, params))
    except ApiRequestError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        console.print("[yellow]Extraction cancelled[/yellow]")
        raise SystemExit(130)

    if not report_outcome(progress):
        raise SystemExit(1)

    console.print(f"\n[bold cyan]Analysis of {len(progress.results)} videos[/bold cyan]\n")
    try:
        asyncio.run(_analyze(config, progress.results, prompt))
    except (ApiRequestError, InvalidInputError) as exc:
        raise click.ClickException(str(exc)) from exc
