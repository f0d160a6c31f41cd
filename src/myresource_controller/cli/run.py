"""Controller commands: run, reconcile."""

from __future__ import annotations

import json
import os
import sys

import click
from rich.panel import Panel

from ._common import CONTROLLER_HOME, console, load_or_exit, open_from_options, parse_key, phase_label, store_options


def register_run_commands(main: click.Group) -> None:
    """Register the run and reconcile commands."""

    @main.command("run")
    @click.option("--home", default=CONTROLLER_HOME, type=click.Path())
    @click.option(
        "--store", default=None,
        type=click.Choice(["kubernetes", "file", "memory"]),
        help="Where resources live (default: from config).",
    )
    @click.option("--namespace", "-n", default=None, help="Only watch this namespace.")
    @click.option("--workers", default=None, type=int, help="Concurrent reconcile workers.")
    @click.option("--resync", "resync_interval", default=None, type=float,
                  help="Seconds between full resyncs.")
    @click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR.")
    def run(home, store, namespace, workers, resync_interval, log_level):
        """Run the controller in the foreground.

        Watches MyResource objects, reconciles each one toward its
        desiredCount, and stops cleanly on Ctrl+C or SIGTERM. Against a
        cluster the watch, retries and resync are run by kopf.
        """
        from ..controller import ControllerService

        config = load_or_exit(
            home,
            store=store,
            namespace=namespace,
            workers=workers,
            resync_interval=resync_interval,
            log_level=log_level,
        )
        svc = None
        if config.store != "kubernetes":
            try:
                svc = ControllerService(config)
            except RuntimeError as exc:
                console.print(f"\n  [red]Error:[/] {exc}\n")
                sys.exit(1)

        console.print()
        console.print(
            Panel(
                f"Store: [bold]{config.store}[/]\n"
                f"Namespace: [bold]{config.namespace or 'all'}[/]\n"
                f"Workers: [bold]{config.workers}[/] | Resync: {config.resync_interval:.0f}s\n"
                f"Log: {config.effective_log_file}\n"
                f"PID: {os.getpid()}",
                title="[green]Controller starting[/]",
                border_style="green",
            )
        )
        console.print("  [dim]Running in foreground (Ctrl+C to stop)[/]\n")
        if svc is None:
            from ..handlers import run_operator

            try:
                run_operator(config)
            except RuntimeError as exc:
                console.print(f"\n  [red]Error:[/] {exc}\n")
                sys.exit(1)
            return
        svc.start()
        svc.run_forever()

    @main.command("reconcile")
    @click.argument("key")
    @store_options
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def reconcile(key, home, store, namespace, json_out):
        """Run a single reconcile pass for KEY (namespace/name)."""
        from ..controller import build_reconciler
        from ..errors import ControllerError

        config, resource_store = open_from_options(home, store, namespace)
        resource_key = parse_key(key, namespace)
        reconciler = build_reconciler(config, resource_store)

        try:
            result = reconciler.reconcile(resource_key)
        except ControllerError as exc:
            if json_out:
                click.echo(json.dumps({"key": str(resource_key), "error": str(exc)}, indent=2))
            else:
                console.print(f"\n  [red]Reconcile failed:[/] {exc}\n")
            sys.exit(1)

        if json_out:
            click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
            return

        console.print(f"\n  [cyan]{result.key}[/]: {result.action}")
        if result.phase is not None:
            console.print(f"  Phase: {phase_label(result.phase)}")
        if result.requeue:
            console.print("  [dim]Another pass is needed; run reconcile again.[/]")
        console.print()
