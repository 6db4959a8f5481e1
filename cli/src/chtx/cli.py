"""Main CLI entry point for channel transcripts."""

import click

from .commands import analyze, config, extract, videos


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Channel transcripts - extract and analyze a YouTube channel's transcripts."""
    pass


# Extraction commands
main.add_command(extract.extract)
main.add_command(analyze.analyze)

# Single-resource commands
main.add_command(videos.videos)
main.add_command(videos.transcript)

# Configuration
main.add_command(config.configure)


if __name__ == "__main__":
    main()
