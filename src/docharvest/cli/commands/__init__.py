"""
CLI command modules.
"""

# Extraction commands
from docharvest.cli.commands.process import detect, process

# Configuration commands
from docharvest.cli.commands.config import config

__all__ = [
    "config",
    "detect",
    "process",
]
