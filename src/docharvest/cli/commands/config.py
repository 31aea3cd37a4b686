"""
Configuration management commands.
"""

import sys

import click


@click.group()
def config():
    """Configuration management."""
    pass


@config.command("show")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="YAML config file")
def config_show(config_path: str | None):
    """Display the effective configuration (file + environment + defaults) as YAML."""
    import yaml

    from docharvest.config import load_settings
    from docharvest.exceptions import ConfigurationError

    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False), nl=False)
