"""Root CLI group and version flag."""

import click

from agentwire import __version__
from agentwire.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="agentwire")
def cli() -> None:
    """agentwire — drive the Claude Code agent from the command line."""


cli.add_command(run)
