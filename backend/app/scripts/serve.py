from __future__ import annotations

import click
import uvicorn


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Restart the server when source files change.")
def main(host: str, port: int, reload: bool) -> None:
    """Run the channel transcripts API."""
    uvicorn.run(
        "backend.app.main:app",
        host=host,
        port=port,
        reload=reload,
        # Logging is configured by the application lifespan.
        log_config=None,
    )


if __name__ == "__main__":
    main()
