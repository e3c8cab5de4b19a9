# order_engine/cli/serve.py
"""Run the API under uvicorn; the port defaults to $PORT as on hosted platforms."""
import os

import click
import uvicorn


@click.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=lambda: int(os.environ.get("PORT", 8000)), help="Defaults to $PORT or 8000")
@click.option("--reload/--no-reload", default=False, help="Reload on code changes (development only)")
@click.option("--log-level", default="info", show_default=True)
def serve(host, port, reload, log_level):
    """Start the order engine API."""
    click.echo(f"Starting order engine on {host}:{port}")
    uvicorn.run("order_engine.main:app", host=host, port=port, reload=reload, log_level=log_level)


if __name__ == "__main__":
    serve()
