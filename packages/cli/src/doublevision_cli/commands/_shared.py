"""Helpers shared by the command modules."""

from __future__ import annotations

from contextlib import contextmanager

import click

from doublevision_core.errors import DoubleVisionError, InvalidInput


def get_workflow(ctx: click.Context):
    return ctx.obj["workflow"]


def get_user_id(ctx: click.Context) -> str:
    user_id = ctx.obj.get("user_id")
    if not user_id:
        raise click.UsageError(
            "No user identity found. Pass --user, set DOUBLEVISION_USER, or run `gh auth login`."
        )
    return user_id


@contextmanager
def handle_errors():
    """Turn workflow errors into click errors with a readable message."""
    try:
        yield
    except InvalidInput as e:
        message = str(e)
        if e.word_count is not None:
            message += f" (current: {e.word_count} words)"
        raise click.ClickException(message) from e
    except DoubleVisionError as e:
        raise click.ClickException(str(e)) from e
