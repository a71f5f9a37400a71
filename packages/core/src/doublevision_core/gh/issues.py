"""Moderation alerts filed as GitHub issues.

High-confidence rejections are reported to a GitHub repository so a human
can double-check the AI decision. Filing is fire-and-forget: every tracker
swallows and logs its own failures so the review pipeline never sees them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from github import Github, GithubException

logger = logging.getLogger(__name__)

ALERT_CONFIDENCE_THRESHOLD = 70
_EXCERPT_CHARS = 200

# GitHub has no native priority field; a label carries it instead.
_PRIORITY_LABELS = {
    "offensive": "priority: urgent",
    "irrelevant": "priority: normal",
    "ai-generated": "priority: normal",
}


@dataclass
class ModerationAlert:
    review_id: str
    photo_id: str
    reviewer_id: str
    reason: str  # "offensive" | "irrelevant" | "ai-generated"
    confidence: int
    reasoning: str
    review_text: str
    moderation_status: str = "rejected"


@dataclass
class IssueData:
    title: str
    body: str
    labels: list[str] = field(default_factory=list)


def format_moderation_alert(alert: ModerationAlert) -> IssueData:
    excerpt = alert.review_text[:_EXCERPT_CHARS]
    if len(alert.review_text) > _EXCERPT_CHARS:
        excerpt += "..."

    body = f"""## Moderation Alert

**Reason:** {alert.reason}
**Confidence:** {alert.confidence}%
**Status:** {alert.moderation_status}

### AI Reasoning
{alert.reasoning}

### Review Details
- **Review ID:** `{alert.review_id}`
- **Photo ID:** `{alert.photo_id}`
- **Reviewer ID:** `{alert.reviewer_id}`

### Review Text Preview
```
{excerpt}
```

### Action Required
- [ ] Review the content manually
- [ ] Verify AI moderation decision
- [ ] Update review status if necessary

---
*Filed automatically by DoubleVision AI moderation.*"""

    return IssueData(
        title=f"Moderation Alert: {alert.reason} content detected ({alert.confidence}% confidence)",
        body=body,
        labels=["moderation", "ai-alert", alert.reason, _PRIORITY_LABELS.get(alert.reason, "priority: normal")],
    )


class BaseIssueTracker(ABC):
    @abstractmethod
    def report_moderation_alert(self, alert: ModerationAlert) -> str | None:
        """File an alert and return the created issue's URL, or None on failure.

        Must never raise.
        """


class NoOpIssueTracker(BaseIssueTracker):
    """Logs alerts instead of filing them. Used by default when no repo is configured."""

    def report_moderation_alert(self, alert: ModerationAlert) -> str | None:
        logger.info(
            "Moderation alert for review %s (%s, %d%%) not filed: no issue tracker configured.",
            alert.review_id,
            alert.reason,
            alert.confidence,
        )
        return None


class GitHubIssueTracker(BaseIssueTracker):
    def __init__(self, repo_name: str, token: str):
        self._repo_name = repo_name
        self._gh = Github(token)

    def _get_repo(self):
        return self._gh.get_repo(self._repo_name)

    def report_moderation_alert(self, alert: ModerationAlert) -> str | None:
        issue_data = format_moderation_alert(alert)
        try:
            issue = self._get_repo().create_issue(
                title=issue_data.title,
                body=issue_data.body,
                labels=issue_data.labels,
            )
        except GithubException as e:
            logger.warning("Could not file moderation alert for review %s: %s", alert.review_id, e)
            return None
        except Exception as e:
            # Network errors surface as requests exceptions, not GithubException.
            logger.warning(
                "Could not file moderation alert for review %s (%s): %s", alert.review_id, type(e).__name__, e
            )
            return None
        logger.info("Filed moderation alert for review %s: %s", alert.review_id, issue.html_url)
        return issue.html_url


def get_issue_tracker(config: dict) -> BaseIssueTracker:
    repo_name = config.get("issue_repo")
    token = config.get("github_token")
    if not repo_name:
        return NoOpIssueTracker()
    if not token:
        logger.warning("issue_repo is set but no GitHub token is available; moderation alerts will not be filed.")
        return NoOpIssueTracker()
    return GitHubIssueTracker(repo_name=repo_name, token=token)
