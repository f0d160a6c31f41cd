"""
myresourcectl: command line for the MyResource controller.

Each command group lives in its own module and is attached to the
main Click group through a register function.

Entry point: myresource_controller.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="myresourcectl")
def main():
    """MyResource controller. Declare a count, get that many VMs."""


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .run import register_run_commands
from .resources import register_resource_commands
from .config_cmd import register_config_commands

register_run_commands(main)
register_resource_commands(main)
register_config_commands(main)
