"""Config commands: show."""

from __future__ import annotations

import json

import click
from rich.table import Table

from ._common import CONTROLLER_HOME, console, load_or_exit


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Controller configuration."""

    @config.command("show")
    @click.option("--home", default=CONTROLLER_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def config_show(home, json_out):
        """Print the effective configuration (file merged over defaults)."""
        cfg = load_or_exit(home)
        data = cfg.model_dump(mode="json")
        data["log_file"] = str(cfg.effective_log_file)

        if json_out:
            click.echo(json.dumps(data, indent=2))
            return

        table = Table(title=f"Configuration ({cfg.home})", show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, "[dim]-[/]" if value is None else str(value))
        console.print()
        console.print(table)
        console.print()
