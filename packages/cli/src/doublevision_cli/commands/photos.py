"""upload and feedback commands: your own photos."""

from __future__ import annotations

import mimetypes
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from doublevision_cli.commands._shared import get_user_id, get_workflow, handle_errors

console = Console()


@click.command("upload")
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def upload_cmd(ctx, image: Path):
    """Upload today's photo (JPEG, PNG or WebP, up to 10MB).

    Requires your completed review quota; one upload per UTC day.
    """
    content_type = mimetypes.guess_type(image.name)[0] or "application/octet-stream"
    workflow = get_workflow(ctx)
    with handle_errors():
        photo = workflow.upload_photo(get_user_id(ctx), image.read_bytes(), content_type, image.name)
    console.print(f"[green]Photo uploaded.[/green] Id: {photo.id}")
    console.print(f"  {photo.image_url}")


@click.command("feedback")
@click.option("--photo", "photo_id", default=None, help="Photo id. Defaults to your latest upload.")
@click.pass_context
def feedback_cmd(ctx, photo_id: str | None):
    """Show approved reviews on one of your photos."""
    workflow = get_workflow(ctx)
    with handle_errors():
        feedback = workflow.get_feedback(get_user_id(ctx), photo_id)

    if feedback is None:
        console.print("[yellow]You haven't uploaded any photos yet.[/yellow]")
        return

    console.print(f"\n[bold]Feedback for photo [cyan]{feedback.photo.id}[/cyan][/bold]")
    console.print(f"  Status:         {feedback.photo.status}")
    console.print(f"  Reviews:        {feedback.total_reviews}")
    console.print(f"  Average score:  {feedback.average_score:.2f}")

    dist_table = Table(title="Score Distribution", show_header=True)
    dist_table.add_column("Score", style="bold")
    dist_table.add_column("Count", justify="right")
    for score in range(5, 0, -1):
        dist_table.add_row("★" * score, str(feedback.rating_distribution.get(score, 0)))
    console.print(dist_table)

    for review in feedback.reviews:
        console.print(f"\n[bold]{review.score}/5[/bold] [dim]{review.created_at:%Y-%m-%d}[/dim]")
        console.print(review.comment)
