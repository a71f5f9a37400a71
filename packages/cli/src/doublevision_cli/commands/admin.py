"""Operator commands: moderate, moderation-stats, cleanup."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from doublevision_cli.commands._shared import get_workflow

console = Console()


@click.command("moderate")
@click.option("--limit", default=50, show_default=True, help="Maximum number of pending reviews to process.")
@click.pass_context
def moderate_cmd(ctx, limit: int):
    """Moderate reviews still pending, for example after an interrupted run."""
    results = get_workflow(ctx).moderate_pending(limit)
    if not results:
        console.print("[green]No pending reviews.[/green]")
        return

    approved = sum(1 for status in results.values() if status == "approved")
    rejected = sum(1 for status in results.values() if status == "rejected")
    console.print(f"Moderated {len(results)} review(s): [green]{approved} approved[/green], [red]{rejected} rejected[/red]")


@click.command("moderation-stats")
@click.option("--recent", default=10, show_default=True, help="Number of recent rejections to list.")
@click.pass_context
def moderation_stats_cmd(ctx, recent: int):
    """Show moderation outcomes across all reviews."""
    workflow = get_workflow(ctx)
    stats = workflow.moderation_stats()

    console.print("\n[bold]Moderation stats[/bold]")
    console.print(f"  Total reviews:   {stats.total_reviews}")
    console.print(f"  Approved:        {stats.approved}")
    console.print(f"  Rejected:        {stats.rejected} ({stats.rejection_rate:.1f}%)")
    console.print(f"  Pending:         {stats.pending}")
    console.print(f"  Avg confidence:  {stats.avg_confidence:.1f}%")

    reason_table = Table(title="Rejections by Reason", show_header=True)
    reason_table.add_column("Reason", style="bold")
    reason_table.add_column("Count", justify="right")
    for reason, count in stats.by_reason.items():
        reason_table.add_row(reason.replace("_", "-"), str(count))
    console.print(reason_table)

    rejections = workflow.recent_rejections(recent)
    if rejections:
        table = Table(title="Recent Rejections", show_header=True, header_style="bold cyan")
        table.add_column("Review", style="bold")
        table.add_column("Reviewer")
        table.add_column("Confidence", justify="right")
        table.add_column("Reasoning", max_width=60)
        for review in rejections:
            table.add_row(
                review.id,
                review.reviewer_id,
                f"{review.ai_analysis.confidence}%",
                review.ai_analysis.reasoning,
            )
        console.print(table)


@click.command("cleanup")
@click.option("--days", default=7, show_default=True, help="Delete incomplete assignments older than this many days.")
@click.pass_context
def cleanup_cmd(ctx, days: int):
    """Delete stale incomplete assignments so their photos can be reassigned."""
    removed = get_workflow(ctx).cleanup_stale_assignments(days)
    console.print(f"Removed {removed} stale assignment(s).")
