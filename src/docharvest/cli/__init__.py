"""
docharvest CLI module.

Commands live in docharvest.cli.commands and are attached to the
top-level group in docharvest.__main__.
"""
