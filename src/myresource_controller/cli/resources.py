"""Resource commands: apply, get, list, delete."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
import yaml
from rich.panel import Panel
from rich.table import Table

from ._common import console, open_from_options, parse_key, phase_label, store_options


def register_resource_commands(main: click.Group) -> None:
    """Register the MyResource object commands."""

    @main.command("apply")
    @click.option("-f", "--filename", "manifest", required=True,
                  type=click.Path(exists=True, dir_okay=False), help="YAML manifest.")
    @store_options
    def apply(manifest, home, store, namespace):
        """Create a MyResource, or update the spec of an existing one."""
        from ..errors import PersistenceError
        from ..models import MyResource

        _, resource_store = open_from_options(home, store, namespace)
        try:
            data = yaml.safe_load(Path(manifest).read_text(encoding="utf-8"))
            resource = MyResource.from_manifest(data or {})
        except (yaml.YAMLError, ValueError) as exc:
            console.print(f"\n  [red]Invalid manifest:[/] {exc}\n")
            sys.exit(1)
        if namespace:
            resource.metadata.namespace = namespace

        try:
            existing = resource_store.get(resource.key)
            if existing is None:
                resource_store.create(resource)
                verb = "created"
            else:
                existing.spec = resource.spec
                existing.metadata.labels.update(resource.metadata.labels)
                resource_store.update(existing)
                verb = "configured"
        except PersistenceError as exc:
            console.print(f"\n  [red]Error:[/] {exc}\n")
            sys.exit(1)

        console.print(f"\n  [green]myresource/{resource.key}[/] {verb}\n")

    @main.command("get")
    @click.argument("key")
    @store_options
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def get(key, home, store, namespace, json_out):
        """Show one MyResource."""
        _, resource_store = open_from_options(home, store, namespace)
        resource_key = parse_key(key, namespace)
        resource = resource_store.get(resource_key)

        if resource is None:
            console.print(f"\n  [yellow]{resource_key} not found.[/]\n")
            sys.exit(1)

        if json_out:
            click.echo(json.dumps(resource.to_manifest(), indent=2))
            return

        provider = ", ".join(resource.spec.populated_providers) or "[dim]none[/]"
        deleting = (
            f"\nDeleting since: {resource.metadata.deletion_timestamp.isoformat()}"
            if resource.is_deleting else ""
        )
        console.print()
        console.print(
            Panel(
                f"Desired: [bold]{resource.spec.desired_count}[/]\n"
                f"Current: [bold]{resource.status.current_count}[/]\n"
                f"Phase: {phase_label(resource.status.phase)}\n"
                f"Provider: {provider}\n"
                f"Finalizers: {', '.join(resource.metadata.finalizers) or '[dim]none[/]'}"
                f"{deleting}",
                title=f"[cyan]{resource_key}[/]",
                border_style="cyan",
            )
        )
        console.print()

    @main.command("list")
    @store_options
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def list_resources(home, store, namespace, json_out):
        """List MyResources with desired and current counts."""
        _, resource_store = open_from_options(home, store, namespace)
        resources = []
        for key in resource_store.list_keys():
            if namespace and key.namespace != namespace:
                continue
            resource = resource_store.get(key)
            if resource is not None:
                resources.append(resource)

        if json_out:
            click.echo(json.dumps([r.to_manifest() for r in resources], indent=2))
            return

        console.print()
        if not resources:
            console.print("  [dim]No resources found.[/]\n")
            return

        table = Table(title="MyResources", show_lines=False)
        table.add_column("Namespace", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Desired", justify="right")
        table.add_column("Current", justify="right")
        table.add_column("Phase")
        table.add_column("Provider")
        for r in resources:
            name = f"{r.metadata.name} [yellow](deleting)[/]" if r.is_deleting else r.metadata.name
            table.add_row(
                r.metadata.namespace,
                name,
                str(r.spec.desired_count),
                str(r.status.current_count),
                phase_label(r.status.phase),
                ", ".join(r.spec.populated_providers) or "-",
            )
        console.print(table)
        console.print()

    @main.command("delete")
    @click.argument("key")
    @store_options
    def delete(key, home, store, namespace):
        """Request deletion of a MyResource.

        Cloud instances are left alone; the controller only releases
        its finalizer.
        """
        from ..errors import PersistenceError

        _, resource_store = open_from_options(home, store, namespace)
        resource_key = parse_key(key, namespace)
        try:
            deleted = resource_store.delete(resource_key)
        except PersistenceError as exc:
            console.print(f"\n  [red]Error:[/] {exc}\n")
            sys.exit(1)

        if not deleted:
            console.print(f"\n  [yellow]{resource_key} not found.[/]\n")
            sys.exit(1)
        console.print(f"\n  [green]myresource/{resource_key}[/] deleted\n")
