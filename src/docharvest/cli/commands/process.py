"""
Extraction commands: process a document, detect its media type.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from docharvest.exceptions import ConfigurationError, DocHarvestError


def _load_settings(config_path: str | None):
    from docharvest.config import get_settings, load_settings

    try:
        return load_settings(config_path) if config_path else get_settings()
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="YAML config file")
@click.option("--output", "-o", help="Output file for the result (JSON)")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
def process(path: str, config_path: str | None, output: str | None, json_logs: bool, log_level: str | None):
    """Extract text and metadata from a document.

    Prints the processing result as JSON. Exits with status 1 when
    extraction fails.

    Examples:
        docharvest process ./scan.pdf
        docharvest process ./report.docx --output result.json
        docharvest process ./scan.pdf --config docharvest.yaml --json-logs
    """
    from docharvest.core.policy import ExtractionPolicy
    from docharvest.logging import setup_logging

    settings = _load_settings(config_path)
    setup_logging(
        level=log_level or settings.logging.level,
        json_format=json_logs or settings.logging.json_format,
        log_file=settings.logging.file,
    )

    policy = ExtractionPolicy(settings=settings)
    with open(path, "rb") as f:
        result = policy.process(f, document_id=Path(path).name)

    payload = json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str)
    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload + "\n", encoding="utf-8")
        click.echo(f"Result written to: {output_path}", err=True)
    else:
        click.echo(payload)

    if not result.success:
        sys.exit(1)


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def detect(path: str):
    """Print the detected media type of a document.

    Examples:
        docharvest detect ./unknown.bin
    """
    from docharvest.core.detection import TypeDetector
    from docharvest.core.stream import StreamBuffer

    try:
        with open(path, "rb") as f:
            media_type = TypeDetector().detect(StreamBuffer(f), Path(path).name)
    except DocHarvestError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(str(media_type))
