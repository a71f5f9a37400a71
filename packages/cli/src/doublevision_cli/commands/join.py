"""join command: register the acting user."""

from __future__ import annotations

import click
from rich.console import Console

from doublevision_cli.commands._shared import get_user_id, get_workflow, handle_errors
from doublevision_core.rating import rating_tier

console = Console()


@click.command("join")
@click.option("--name", required=True, help="Display name.")
@click.option("--email", required=True, help="Email address; one account per email.")
@click.option(
    "--provider",
    type=click.Choice(["github", "google"]),
    default="github",
    show_default=True,
    help="Identity provider the account came from.",
)
@click.pass_context
def join_cmd(ctx, name: str, email: str, provider: str):
    """Register yourself, or update your name and email if you already joined."""
    workflow = get_workflow(ctx)
    with handle_errors():
        user = workflow.register_user(get_user_id(ctx), name, email, provider)
    tier = rating_tier(user.rating)
    console.print(f"[green]Welcome, {user.name}![/green] Rating: {user.rating} {tier.icon} {tier.name}")
