"""Unit tests for gap signal heuristics."""

from datetime import datetime, timedelta, timezone

import pytest

from taskbridge.gaps.signals import (
    UNKNOWN_STAGE,
    compute_confidence,
    extract_skill_tags,
    infer_workflow_stage,
    is_action_type_jump,
    is_skill_jump,
    is_time_gap,
)


@pytest.mark.parametrize(
    "text,stage",
    [
        ("Interview five pilot customers", "research"),
        ("Sketch wireframe for onboarding", "design"),
        ("Groom the backlog", "plan"),
        ("Implement payment webhook", "build"),
        ("Run regression tests", "test"),
        ("Publish release notes", "deploy"),
        ("Announce on social channels", "launch"),
        ("Gather the quarterly receipts", UNKNOWN_STAGE),
    ],
)
def test_infer_workflow_stage(text, stage):
    """Test keyword classification of workflow stages."""
    assert infer_workflow_stage(text) == stage


def test_workflow_stage_matches_substrings():
    """Test keywords match inside longer words and earlier stages win."""
    # "ui" in "suite" is a design keyword, checked before the test stage
    assert infer_workflow_stage("Run regression suite") == "design"


def test_extract_skill_tags():
    """Test all matching skills are collected."""
    assert extract_skill_tags("Write SQL for the analytics dashboard") == {"data"}
    assert extract_skill_tags("Gather the quarterly receipts") == set()


def test_time_gap_threshold():
    """Test the gap must exceed the threshold."""
    start = datetime(2025, 3, 1, tzinfo=timezone.utc)

    assert is_time_gap(start, start + timedelta(days=8))
    assert not is_time_gap(start, start + timedelta(days=7))
    assert not is_time_gap(start + timedelta(days=30), start)


def test_time_gap_missing_timestamp():
    """Test missing timestamps never count as a gap."""
    assert not is_time_gap(None, datetime.now(timezone.utc))
    assert not is_time_gap(datetime.now(timezone.utc), None)


def test_time_gap_naive_timestamps_are_utc():
    """Test naive and aware timestamps compare as UTC."""
    naive = datetime(2025, 3, 1)
    aware = datetime(2025, 3, 20, tzinfo=timezone.utc)

    assert is_time_gap(naive, aware)


def test_action_type_jump():
    """Test stages two or more apart count as a jump."""
    assert is_action_type_jump("Interview five pilot customers", "Implement payment webhook")
    assert not is_action_type_jump("Groom the backlog", "Implement payment webhook")
    assert not is_action_type_jump("Gather the quarterly receipts", "Publish release notes")


def test_skill_jump():
    """Test disjoint non-empty skill sets count as a jump."""
    assert is_skill_jump("Write SQL for the analytics dashboard", "Run a growth campaign")
    assert not is_skill_jump("Write SQL queries", "Build analytics dashboard")
    assert not is_skill_jump("Gather the quarterly receipts", "Run a growth campaign")


@pytest.mark.parametrize(
    "count,confidence",
    [(0, 0.0), (1, 0.0), (2, 0.6), (3, 0.75), (4, 1.0)],
)
def test_compute_confidence(count, confidence):
    """Test the confidence step function."""
    assert compute_confidence(count) == confidence


def test_confidence_monotonic():
    """Test confidence never drops as indicators increase."""
    values = [compute_confidence(count) for count in range(0, 6)]

    assert values == sorted(values)
    assert max(values) <= 1.0
