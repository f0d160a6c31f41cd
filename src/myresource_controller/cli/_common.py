"""Shared utilities for the CLI command modules.

Provides the Rich console, phase formatting, and the helpers that turn
command-line options into a config and a store.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console

from .. import CONTROLLER_HOME
from ..config import ControllerConfig, load_config
from ..models import Phase, ResourceKey
from ..store import ResourceStore, open_store

console = Console()


def phase_label(phase: Optional[Phase]) -> str:
    """Map a phase to Rich markup.

    Args:
        phase: Published phase, or None if nothing was published yet.

    Returns:
        str: Rich markup string for the phase.
    """
    if phase is None:
        return "[dim]-[/]"
    return {
        Phase.SCALED_UP: "[bold green]ScaledUp[/]",
        Phase.SCALED_DOWN: "[bold cyan]ScaledDown[/]",
        Phase.NO_OP: "[green]NoOp[/]",
        Phase.ERROR: "[bold red]Error[/]",
    }.get(phase, phase.value)


def store_options(func):
    """Attach --home, --store and --namespace to a command."""
    func = click.option("--namespace", "-n", default=None, help="Namespace to operate in.")(func)
    func = click.option(
        "--store", default=None,
        type=click.Choice(["kubernetes", "file", "memory"]),
        help="Where resources live (default: from config).",
    )(func)
    func = click.option("--home", default=CONTROLLER_HOME, type=click.Path())(func)
    return func


def load_or_exit(home: str, **overrides) -> ControllerConfig:
    """Load the config, printing the problem and exiting if it is invalid."""
    try:
        return load_config(Path(home).expanduser(), **overrides)
    except ValueError as exc:
        console.print(f"\n  [red]Invalid configuration:[/] {exc}\n")
        sys.exit(1)


def open_from_options(
    home: str, store: Optional[str], namespace: Optional[str],
) -> Tuple[ControllerConfig, ResourceStore]:
    """Build the config and store that a resource command works against."""
    config = load_or_exit(home, store=store, namespace=namespace)
    try:
        return config, open_store(config.store, config.home, config.namespace)
    except RuntimeError as exc:
        console.print(f"\n  [red]Error:[/] {exc}\n")
        sys.exit(1)


def parse_key(value: str, namespace: Optional[str] = None) -> ResourceKey:
    """Parse 'namespace/name' or 'name' (using --namespace, else 'default')."""
    try:
        key = ResourceKey.parse(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="KEY")
    if namespace and "/" not in value:
        key = ResourceKey(namespace, key.name)
    return key
