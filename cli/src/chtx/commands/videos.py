"""Listing and single-transcript commands for the channel transcripts CLI."""

import asyncio

import click
from rich.console import Console
from rich.table import Table

from ..api_client import ApiRequestError, ChannelTranscriptsApi, InvalidInputError, build_http_client
from ..config import Config

console = Console()


async def _list_videos(config: Config, channel: str):
    async with build_http_client(config.base_url, timeout_seconds=config.timeout_seconds) as client:
        return await ChannelTranscriptsApi(client).list_videos(channel)


async def _get_transcript(config: Config, video_id: str, language: str):
    async with build_http_client(config.base_url, timeout_seconds=config.timeout_seconds) as client:
        return await ChannelTranscriptsApi(client).get_transcript(video_id, language)


@click.command()
@click.argument("channel")
def videos(channel: str):
    """List the videos of CHANNEL, newest first."""
    config = Config.load()

    try:
        channel_videos = asyncio.run(_list_videos(config, channel))
    except (ApiRequestError, InvalidInputError) as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title=f"{len(channel_videos)} videos")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    for video in channel_videos:
        table.add_row(video.id, video.title)
    console.print(table)


@click.command()
@click.argument("video_id")
@click.option("--language", "-l", default=None, help="Transcript language code.")
def transcript(video_id: str, language):
    """Print the transcript of a single video."""
    config = Config.load()

    try:
        text = asyncio.run(_get_transcript(config, video_id, language or config.language))
    except (ApiRequestError, InvalidInputError) as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(text, markup=False)
