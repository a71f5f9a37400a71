"""Moderation decision rule.

Only offensiveness and relevance can reject a review, and only when the
model is confident. The ai_generated flag is recorded for audit and never
rejects on its own.
"""

from __future__ import annotations

from doublevision_store.models import AIAnalysis

OFFENSIVE_REJECT_CONFIDENCE = 70
IRRELEVANT_REJECT_CONFIDENCE = 80


def moderation_decision(analysis: AIAnalysis) -> str:
    """Return "approved" or "rejected" for an AI analysis."""
    if analysis.offensive and analysis.confidence >= OFFENSIVE_REJECT_CONFIDENCE:
        return "rejected"
    if not analysis.relevant and analysis.confidence >= IRRELEVANT_REJECT_CONFIDENCE:
        return "rejected"
    return "approved"


def rejection_reason(analysis: AIAnalysis) -> str:
    if analysis.offensive:
        return "offensive"
    if not analysis.relevant:
        return "irrelevant"
    return "ai-generated"


def fail_open_analysis(reason: str) -> AIAnalysis:
    """Analysis recorded when the moderation provider could not be used."""
    return AIAnalysis(
        offensive=False,
        ai_generated=False,
        relevant=True,
        confidence=0,
        reasoning=f"Moderation failed - defaulted to approval ({reason})",
    )
