"""review command: submit a review for an assigned photo."""

from __future__ import annotations

import click
from rich.console import Console

from doublevision_cli.commands._shared import get_user_id, get_workflow, handle_errors

console = Console()


@click.command("review")
@click.option("--photo", "photo_id", required=True, help="Id of the assigned photo.")
@click.option("--score", type=int, required=True, help="Score from 1 to 5.")
@click.option("--comment", default=None, help="Review text (50-500 words).")
@click.option(
    "--comment-file",
    type=click.File("r"),
    default=None,
    help="Read the review text from a file ('-' for stdin).",
)
@click.pass_context
def review_cmd(ctx, photo_id: str, score: int, comment: str | None, comment_file):
    """Submit a review. Moderation and your rating update happen in the background."""
    if comment is None and comment_file is None:
        raise click.UsageError("Provide the review text with --comment or --comment-file.")
    if comment is not None and comment_file is not None:
        raise click.UsageError("Use only one of --comment and --comment-file.")
    text = comment if comment is not None else comment_file.read()

    workflow = get_workflow(ctx)
    with handle_errors():
        review = workflow.submit_review(get_user_id(ctx), photo_id, score, text)

    console.print(f"[green]Review submitted[/green] ({review.word_count} words). Id: {review.id}")

    # Moderation runs on a worker thread; wait for it so the outcome can be shown.
    workflow.wait()
    moderated = ctx.obj["store"].get_review(review.id)
    if moderated is None:
        return
    style = {"approved": "green", "rejected": "red"}.get(moderated.moderation_status, "yellow")
    console.print(f"Moderation: [{style}]{moderated.moderation_status}[/{style}]")
    if moderated.ai_analysis and moderated.ai_analysis.reasoning:
        console.print(f"[dim]{moderated.ai_analysis.reasoning}[/dim]")
