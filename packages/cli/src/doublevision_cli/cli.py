"""CLI entry point for doublevision.

Commands:
  join              register (or update) the acting user
  assignments       show pending photo assignments, handing out a batch if empty
  review            submit a review for an assigned photo
  moderate          moderate reviews still pending
  upload            upload today's photo
  feedback          show approved feedback on one of your photos
  stats             show your rating, tier and progress
  leaderboard       show the top-rated reviewers
  moderation-stats  show moderation outcomes across all reviews
  cleanup           delete stale incomplete assignments
"""

from __future__ import annotations

import importlib.metadata
import logging
from concurrent.futures import ThreadPoolExecutor

import click
import yaml
from rich.console import Console

from doublevision_cli.commands.admin import cleanup_cmd, moderate_cmd, moderation_stats_cmd
from doublevision_cli.commands.assignments import assignments_cmd
from doublevision_cli.commands.join import join_cmd
from doublevision_cli.commands.photos import feedback_cmd, upload_cmd
from doublevision_cli.commands.review import review_cmd
from doublevision_cli.commands.stats import leaderboard_cmd, stats_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the SQLite store from config.

    This factory lives in cli.py so neither doublevision_core nor
    doublevision_store know about the CLI config format.
    """
    from doublevision_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path", ".doublevision.db"))


def _build_workflow(config: dict, store):
    """Wire the workflow's collaborators from config."""
    from doublevision_core.gh.issues import get_issue_tracker
    from doublevision_core.providers.factory import get_moderator
    from doublevision_core.rate_limit import RateLimiter
    from doublevision_core.workflow import ReviewWorkflow
    from doublevision_store.blob import LocalBlobStore

    moderator = get_moderator(config)
    if moderator is None:
        console.print("[yellow]AI moderation is not configured; new reviews will be approved by default.[/yellow]")

    return ReviewWorkflow(
        store=store,
        moderator=moderator,
        issue_tracker=get_issue_tracker(config),
        blob_store=LocalBlobStore(
            upload_dir=config.get("upload_dir", "uploads"),
            public_base_url=config.get("public_base_url", "http://localhost:8000/uploads"),
        ),
        rate_limiter=RateLimiter(
            limit=int(config.get("review_rate_limit", 10)),
            window_seconds=float(config.get("review_rate_window_seconds", 60)),
        ),
        executor=ThreadPoolExecutor(
            max_workers=int(config.get("moderation_workers", 4)),
            thread_name_prefix="moderation",
        ),
        review_quota=int(config.get("review_quota", 5)),
        batch_size=int(config.get("assignment_batch_size", 5)),
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("doublevision"),
    prog_name="doublevision",
)
@click.option(
    "--config",
    "config_path",
    default=".doublevision.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="DOUBLEVISION_CONFIG",
)
@click.option("--user", "user_id", default=None, help="Act as this user id. Defaults to DOUBLEVISION_USER or gh login.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, user_id: str | None, verbose: bool):
    """Peer photo reviews with AI moderation and reviewer ratings."""
    from doublevision_core.config import load_config
    from doublevision_cli.auth import resolve_user_id

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except (ValueError, yaml.YAMLError) as e:
        raise click.UsageError(f"Could not load {config_path}: {e}") from e
    store = _build_store(config)
    try:
        workflow = _build_workflow(config, store)
    except (ValueError, ImportError) as e:
        store.close()
        raise click.UsageError(str(e)) from e

    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.obj["workflow"] = workflow
    ctx.obj["user_id"] = resolve_user_id(user_id)

    # Callbacks run last-registered first: drain moderation, then close the store.
    ctx.call_on_close(store.close)
    ctx.call_on_close(workflow.close)


main.add_command(join_cmd)
main.add_command(assignments_cmd)
main.add_command(review_cmd)
main.add_command(moderate_cmd)
main.add_command(upload_cmd)
main.add_command(feedback_cmd)
main.add_command(stats_cmd)
main.add_command(leaderboard_cmd)
main.add_command(moderation_stats_cmd)
main.add_command(cleanup_cmd)
