"""Keyword heuristics for workflow stage and skill classification."""

from datetime import datetime, timedelta, timezone
from typing import Optional

WORKFLOW_STAGES = ["research", "design", "plan", "build", "test", "deploy", "launch"]
UNKNOWN_STAGE = "unknown"

# Checked in stage order; the first matching stage wins.
WORKFLOW_KEYWORDS: dict[str, list[str]] = {
    "research": ["research", "analysis", "investigate", "discovery", "interview"],
    "design": ["design", "mockup", "wireframe", "prototype", "ux", "ui"],
    "plan": ["plan", "roadmap", "spec", "backlog", "groom", "architecture"],
    "build": ["build", "implement", "develop", "code", "create", "engineer", "integrate"],
    "test": ["test", "qa", "validate", "verify", "quality", "bug", "regression"],
    "deploy": ["deploy", "release", "ship", "rollout", "publish", "handoff", "handover"],
    "launch": ["launch", "go live", "golive", "announce", "marketing push"],
}

SKILL_KEYWORDS: dict[str, list[str]] = {
    "design": ["design", "ux", "ui", "prototype", "wireframe", "figma"],
    "frontend": ["frontend", "react", "next", "typescript", "javascript", "ui component"],
    "backend": ["backend", "api", "database", "server", "supabase", "postgres", "node"],
    "data": ["analytics", "data", "metrics", "sql", "dashboard"],
    "marketing": ["launch", "campaign", "marketing", "go-to-market", "growth", "seo"],
    "qa": ["test", "qa", "quality", "bugs", "regression", "verify"],
    "devops": ["deploy", "pipeline", "infrastructure", "devops", "ci", "cd", "kubernetes"],
    "research": ["research", "interview", "discovery", "analysis"],
    "product": ["plan", "strategy", "roadmap", "prioritize"],
}


def infer_workflow_stage(text: str) -> str:
    """Classify task text into a workflow stage, or ``unknown``.

    Matching is substring-based on the lowercased text.
    """
    lowered = (text or "").lower()
    for stage in WORKFLOW_STAGES:
        if any(keyword in lowered for keyword in WORKFLOW_KEYWORDS[stage]):
            return stage
    return UNKNOWN_STAGE


def extract_skill_tags(text: str) -> set[str]:
    """Collect every skill whose keywords appear in the text."""
    lowered = (text or "").lower()
    return {
        skill
        for skill, keywords in SKILL_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    }


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_time_gap(
    predecessor_at: Optional[datetime],
    successor_at: Optional[datetime],
    threshold_days: int = 7,
) -> bool:
    """True if the successor was created more than threshold_days after the predecessor."""
    if predecessor_at is None or successor_at is None:
        return False
    return _as_utc(successor_at) - _as_utc(predecessor_at) > timedelta(days=threshold_days)


def is_action_type_jump(predecessor_text: str, successor_text: str) -> bool:
    """True if the two tasks sit two or more workflow stages apart."""
    first = infer_workflow_stage(predecessor_text)
    second = infer_workflow_stage(successor_text)
    if UNKNOWN_STAGE in (first, second):
        return False
    return abs(WORKFLOW_STAGES.index(second) - WORKFLOW_STAGES.index(first)) >= 2


def is_skill_jump(predecessor_text: str, successor_text: str) -> bool:
    """True if both tasks have skill tags and share none."""
    first = extract_skill_tags(predecessor_text)
    second = extract_skill_tags(successor_text)
    if not first or not second:
        return False
    return first.isdisjoint(second)


def compute_confidence(indicator_count: int) -> float:
    """Step function from indicator count to gap confidence."""
    if indicator_count < 2:
        return 0.0
    if indicator_count == 2:
        return 0.6
    if indicator_count == 3:
        return 0.75
    return min(1.0, 0.75 + 0.25 * (indicator_count - 3))
