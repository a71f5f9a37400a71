"""assignments command: list photos waiting for your review."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from doublevision_cli.commands._shared import get_user_id, get_workflow, handle_errors

console = Console()


@click.command("assignments")
@click.pass_context
def assignments_cmd(ctx):
    """Show your pending assignments.

    If none are left, a new batch of random photos is assigned first.
    """
    workflow = get_workflow(ctx)
    user_id = get_user_id(ctx)
    with handle_errors():
        assignments = workflow.get_assignments(user_id)

    if not assignments:
        console.print("[yellow]No photos are available for review right now.[/yellow]")
        return

    store = ctx.obj["store"]
    table = Table(title=f"Assignments for {user_id}", show_header=True, header_style="bold cyan")
    table.add_column("Photo", style="bold")
    table.add_column("Image URL")
    table.add_column("Assigned At", width=20)
    for a in assignments:
        photo = store.get_photo(a.photo_id)
        table.add_row(a.photo_id, photo.image_url if photo else "", a.assigned_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)
