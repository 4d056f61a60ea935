"""Unit tests for plan integration."""

from taskbridge.graph.models import DependencyEdge, DetectionMethod, InsertedBridge
from taskbridge.insertion.plan import (
    ExecutionWave,
    PrioritizedPlan,
    TaskAnnotation,
    integrate_into_plan,
)


def _bridge(task_id="x", predecessor_id="a", successor_id="b", **fields):
    return InsertedBridge(
        task_id=task_id,
        text="Prepare the shared ledger summary",
        predecessor_id=predecessor_id,
        successor_id=successor_id,
        estimated_hours=16,
        confidence=0.7,
        reasoning="Needed between the two steps",
        **fields,
    )


def _plan():
    return PrioritizedPlan(
        ordered_task_ids=["a", "b", "c"],
        dependencies=[DependencyEdge(source_task_id="b", target_task_id="c")],
        confidence_scores={"a": 0.9},
        execution_waves=[
            ExecutionWave(wave_number=1, task_ids=["a"]),
            ExecutionWave(wave_number=2, task_ids=["b", "c"], parallel_execution=True),
        ],
    )


def test_empty_batch_returns_plan_unchanged():
    plan = _plan()

    assert integrate_into_plan(plan, []) is plan


def test_task_inserted_before_successor():
    plan = _plan()

    updated = integrate_into_plan(plan, [_bridge()])

    assert updated.ordered_task_ids == ["a", "x", "b", "c"]
    assert plan.ordered_task_ids == ["a", "b", "c"]


def test_fallback_positions():
    """Test placement after the predecessor, then at the end."""
    updated = integrate_into_plan(
        _plan(),
        [
            _bridge(task_id="x", predecessor_id="a", successor_id="elsewhere"),
            _bridge(task_id="y", predecessor_id="nowhere", successor_id="elsewhere"),
        ],
    )

    assert updated.ordered_task_ids == ["a", "x", "b", "c", "y"]


def test_order_deduplicated():
    plan = PrioritizedPlan(ordered_task_ids=["a", "x", "b"])

    updated = integrate_into_plan(plan, [_bridge()])

    assert updated.ordered_task_ids == ["a", "x", "b"]


def test_dependencies_added_once():
    plan = _plan()
    plan.dependencies.append(DependencyEdge(source_task_id="a", target_task_id="x"))

    updated = integrate_into_plan(plan, [_bridge()])

    keys = [dependency.key for dependency in updated.dependencies]
    assert keys == [("b", "c"), ("a", "x"), ("x", "b")]
    added = updated.dependencies[-1]
    assert added.confidence == 0.7
    assert added.detection_method == DetectionMethod.STORED_RELATIONSHIP
    assert len(plan.dependencies) == 2


def test_confidence_recorded():
    updated = integrate_into_plan(_plan(), [_bridge()])

    assert updated.confidence_scores == {"a": 0.9, "x": 0.7}


def test_wave_placement():
    """Test the task joins its successor's wave, ahead of it."""
    updated = integrate_into_plan(_plan(), [_bridge()])

    assert updated.execution_waves[1].task_ids == ["x", "b", "c"]
    assert updated.execution_waves[0].task_ids == ["a"]


def test_wave_fallback_to_last_wave():
    updated = integrate_into_plan(_plan(), [_bridge(successor_id="unplanned")])

    assert updated.execution_waves[-1].task_ids == ["b", "c", "x"]


def test_wave_created_when_plan_has_none():
    updated = integrate_into_plan(PrioritizedPlan(), [_bridge()])

    assert len(updated.execution_waves) == 1
    assert updated.execution_waves[0].wave_number == 1
    assert updated.execution_waves[0].task_ids == ["x"]


def test_annotation_added_once():
    plan = _plan()
    plan.task_annotations.append(TaskAnnotation(task_id="y", state="manual_override"))

    updated = integrate_into_plan(plan, [_bridge(), _bridge(task_id="y")])

    annotations = {annotation.task_id: annotation for annotation in updated.task_annotations}
    assert annotations["x"].manual_override is True
    assert annotations["x"].dependency_notes == "Estimated effort: 16 hours"
    assert annotations["x"].reasoning == "Needed between the two steps"
    assert len(updated.task_annotations) == 2
