"""Fold committed bridging tasks into a prioritized plan."""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from ..graph.models import DependencyEdge, DetectionMethod, InsertedBridge, RelationshipType

logger = logging.getLogger(__name__)


class ExecutionWave(BaseModel):
    """Group of tasks scheduled together."""

    wave_number: int
    task_ids: list[str] = Field(default_factory=list)
    parallel_execution: bool = Field(default=False)
    estimated_duration_hours: Optional[float] = Field(default=None)


class TaskAnnotation(BaseModel):
    """Per-task note attached to a plan."""

    task_id: str
    state: str
    reasoning: str = Field(default="")
    dependency_notes: Optional[str] = Field(default=None)
    manual_override: bool = Field(default=False)


class PrioritizedPlan(BaseModel):
    """Ordered task plan with dependencies and execution waves."""

    ordered_task_ids: list[str] = Field(default_factory=list)
    dependencies: list[DependencyEdge] = Field(default_factory=list)
    confidence_scores: dict[str, float] = Field(default_factory=dict)
    execution_waves: list[ExecutionWave] = Field(default_factory=list)
    task_annotations: list[TaskAnnotation] = Field(default_factory=list)


def _dedupe(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for task_id in ids:
        if task_id not in seen:
            seen.add(task_id)
            ordered.append(task_id)
    return ordered


def integrate_into_plan(plan: PrioritizedPlan, accepted: list[InsertedBridge]) -> PrioritizedPlan:
    """Return a copy of plan that includes the committed bridging tasks.

    Each task goes right before its successor in ``ordered_task_ids`` (right
    after its predecessor when the successor is not planned, at the end when
    neither is). The two prerequisite dependencies are added unless already
    present, and each task joins its successor's wave ahead of the successor,
    or the last wave otherwise.

    Args:
        plan: Plan to extend (left unmodified)
        accepted: Bridging tasks from ``InsertionResult.bridges``

    Returns:
        New plan
    """
    if not accepted:
        return plan

    updated = plan.model_copy(deep=True)

    order = updated.ordered_task_ids
    for bridge in accepted:
        if bridge.successor_id in order:
            index = order.index(bridge.successor_id)
        elif bridge.predecessor_id in order:
            index = order.index(bridge.predecessor_id) + 1
        else:
            index = len(order)
        order.insert(index, bridge.task_id)
    updated.ordered_task_ids = _dedupe(order)

    existing = {dependency.key for dependency in updated.dependencies}
    for bridge in accepted:
        for source, target in (
            (bridge.predecessor_id, bridge.task_id),
            (bridge.task_id, bridge.successor_id),
        ):
            if (source, target) in existing:
                continue
            updated.dependencies.append(
                DependencyEdge(
                    source_task_id=source,
                    target_task_id=target,
                    relationship_type=RelationshipType.PREREQUISITE,
                    confidence=bridge.confidence,
                    detection_method=DetectionMethod.STORED_RELATIONSHIP,
                )
            )
            existing.add((source, target))

    for bridge in accepted:
        updated.confidence_scores[bridge.task_id] = bridge.confidence

    if not updated.execution_waves:
        updated.execution_waves.append(ExecutionWave(wave_number=1))

    for bridge in accepted:
        wave = next(
            (w for w in updated.execution_waves if bridge.successor_id in w.task_ids),
            None,
        )
        if wave is not None:
            wave.task_ids.insert(wave.task_ids.index(bridge.successor_id), bridge.task_id)
            continue
        last_wave = updated.execution_waves[-1]
        if bridge.task_id not in last_wave.task_ids:
            last_wave.task_ids.append(bridge.task_id)

    annotated = {annotation.task_id for annotation in updated.task_annotations}
    for bridge in accepted:
        if bridge.task_id in annotated:
            continue
        updated.task_annotations.append(
            TaskAnnotation(
                task_id=bridge.task_id,
                state="manual_override",
                reasoning=bridge.reasoning,
                dependency_notes=f"Estimated effort: {bridge.estimated_hours} hours",
                manual_override=True,
            )
        )
        annotated.add(bridge.task_id)

    logger.info(f"Integrated {len(accepted)} bridging task(s) into plan")
    return updated
