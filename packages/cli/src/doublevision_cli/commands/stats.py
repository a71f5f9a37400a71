"""stats and leaderboard commands."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from doublevision_cli.commands._shared import get_user_id, get_workflow, handle_errors
from doublevision_core.rating import rating_tier

console = Console()


@click.command("stats")
@click.pass_context
def stats_cmd(ctx):
    """Show your rating, tier, review progress and upload eligibility."""
    workflow = get_workflow(ctx)
    with handle_errors():
        stats = workflow.user_stats(get_user_id(ctx))

    user = stats.user
    console.print(f"\n[bold]{user.name}[/bold] ({user.email})")
    console.print(f"  Rating:           {user.rating} {stats.tier.icon} {stats.tier.name}")
    console.print(f"  Reviews written:  {user.total_reviews}")
    console.print(f"  Photos uploaded:  {user.photo_count}")
    console.print(f"  Member since:     {user.joined_at:%Y-%m-%d}")
    console.print(f"  Completed today:  {stats.completed_today}")

    a = stats.assignments
    console.print(
        f"  Assignments:      {a.completed}/{a.total_assigned} completed ({a.completion_rate:.0f}%), {a.pending} pending"
    )

    r = stats.reviews
    if r.total_reviews:
        console.print(
            f"  Moderation:       {r.approved_reviews} approved, {r.rejected_reviews} rejected, "
            f"avg {r.average_word_count:.0f} words"
        )

    upload = "[green]yes[/green]" if stats.can_upload_today else "[yellow]already uploaded today[/yellow]"
    feedback = "[green]unlocked[/green]" if stats.feedback_unlocked else f"[yellow]complete {workflow.review_quota} reviews[/yellow]"
    console.print(f"  Can upload today: {upload}")
    console.print(f"  Feedback:         {feedback}")


@click.command("leaderboard")
@click.option("--top", default=10, show_default=True, help="Number of reviewers to show.")
@click.pass_context
def leaderboard_cmd(ctx, top: int):
    """Show the highest-rated reviewers."""
    users = get_workflow(ctx).leaderboard(top)
    if not users:
        console.print("[yellow]No reviewers yet.[/yellow]")
        return

    table = Table(title="Leaderboard", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", width=4)
    table.add_column("Reviewer", style="bold")
    table.add_column("Rating", justify="right")
    table.add_column("Tier")
    table.add_column("Reviews", justify="right")
    for rank, user in enumerate(users, start=1):
        tier = rating_tier(user.rating)
        table.add_row(str(rank), user.name, str(user.rating), f"{tier.icon} {tier.name}", str(user.total_reviews))
    console.print(table)
