"""
docharvest CLI entry point.

Usage:
    docharvest process PATH [--config FILE] [--output FILE] [--json-logs]
    docharvest detect PATH
    docharvest config show [--config FILE]
"""

import click

from docharvest.cli.commands import config, detect, process


@click.group()
@click.version_option(package_name="docharvest")
def cli():
    """docharvest - Adaptive document text & metadata extraction"""
    pass


cli.add_command(process)
cli.add_command(detect)
cli.add_command(config)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
