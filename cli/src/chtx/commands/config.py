"""Configuration commands for the channel transcripts CLI."""

import click
from rich.console import Console

from backend.app.models.extraction_contracts import DateFilter
from ..config import Config, default_config_path

console = Console()


@click.command(name="config")
@click.option("--base-url", default=None, help="Base URL of the channel transcripts API.")
@click.option("--language", default=None, help="Default transcript language code.")
@click.option(
    "--date-filter",
    type=click.Choice([date_filter.value for date_filter in DateFilter]),
    default=None,
    help="Default date filter.",
)
def configure(base_url, language, date_filter):
    """Show or update the CLI configuration."""
    config = Config.load()

    if base_url is None and language is None and date_filter is None:
        console.print(f"[bold]Config file:[/bold] {default_config_path()}")
        console.print(f"  base_url: {config.base_url}")
        console.print(f"  language: {config.language}")
        console.print(f"  date_filter: {config.date_filter}")
        return

    if base_url is not None:
        config.base_url = base_url.rstrip("/")
    if language is not None:
        config.language = language
    if date_filter is not None:
        config.date_filter = date_filter
    config.save()
    console.print("[green]Configuration saved[/green]")
