"""Reviewer identity resolution with gh CLI fallback.

Resolution order (stops at first success):
  1. --user option
  2. DOUBLEVISION_USER environment variable
  3. `gh api user --jq .login` (GitHub CLI session, works after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_user_id(explicit: str | None = None) -> str | None:
    """Return the acting user's id or None if no source is available.

    Never raises. Commands that need an identity turn None into Unauthorized.
    """
    if explicit:
        return explicit

    user_id = os.environ.get("DOUBLEVISION_USER")
    if user_id:
        return user_id

    try:
        result = subprocess.run(
            ["gh", "api", "user", "--jq", ".login"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            login = result.stdout.strip()
            if login:
                logger.debug("Resolved user id via gh CLI session.")
                return login
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or timed out.
        pass

    return None
