from __future__ import annotations

import json
from pathlib import Path

import click

from backend.app.main import app


@click.command()
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("openapi") / "channel-transcripts.json",
    show_default=True,
    help="Where to write the OpenAPI schema.",
)
def main(output_path: Path) -> None:
    """Write the HTTP API's OpenAPI schema to disk."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(app.openapi(), indent=2), encoding="utf-8")
    click.echo(f"Wrote OpenAPI schema to {output_path}")


if __name__ == "__main__":
    main()
