#!/usr/bin/env python3
"""
DriveStream CLI - Command Line Interface

- ingest: serve the ingestion API
- consume: run the stream consumer
- config: show effective settings
"""

import asyncio
import json
import logging
import sys

import click

from .config import load_settings
from .errors import ConfigurationError, ConsumerFatalError

logger = logging.getLogger(__name__)


def _settings_or_exit():
    try:
        return load_settings()
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)


@click.group()
@click.version_option(version="1.0.0", prog_name="drivestream")
def main():
    """DriveStream - vehicle telemetry ingestion and processing"""
    pass


@main.command()
@click.option('--host', default=None, help='Bind address (defaults to HTTP_HOST)')
@click.option('--port', default=None, type=int, help='Bind port (defaults to HTTP_PORT)')
def ingest(host, port):
    """Serve the telemetry ingestion API"""
    import uvicorn
    from .main import app, configure_logging

    cfg = _settings_or_exit()
    configure_logging(cfg.app.log_level)
    uvicorn.run(app, host=host or cfg.app.http_host, port=port or cfg.app.http_port)


@main.command()
def consume():
    """Run the raw telemetry consumer until SIGINT/SIGTERM"""
    from .main import configure_logging
    from .processing import run_processing

    cfg = _settings_or_exit()
    configure_logging(cfg.app.log_level)
    try:
        consumer = asyncio.run(run_processing(cfg))
    except ConsumerFatalError as e:
        logger.error(f"Consumer stopped on broker failure: {e}")
        sys.exit(1)
    except ConfigurationError as e:
        logger.error(f"Consumer could not start: {e}")
        sys.exit(2)

    totals = consumer.stats.totals
    click.echo(
        f"Processed {totals.received} messages "
        f"(stored={totals.stored} skipped={totals.skipped} failed={totals.failed})"
    )


@main.command(name="config")
def show_config():
    """Print the effective settings as JSON"""
    cfg = _settings_or_exit()
    click.echo(json.dumps(cfg.as_dict(), indent=2, sort_keys=True))


if __name__ == '__main__':
    main()
