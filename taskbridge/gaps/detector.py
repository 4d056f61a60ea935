"""Gap detection between adjacent tasks of an ordered plan."""

import logging
import time
from typing import Optional

from ..config.models import GapDetectionConfig
from ..graph.cycles import build_adjacency, has_path
from ..graph.models import (
    Gap,
    GapDetectionMetadata,
    GapDetectionResult,
    GapIndicators,
    TaskNode,
    truncate_text,
)
from ..store.base import GraphStore
from .signals import compute_confidence, is_action_type_jump, is_skill_jump, is_time_gap

logger = logging.getLogger(__name__)


class MissingTaskError(Exception):
    """Requested tasks could not be resolved, even after recovery."""

    def __init__(self, message: str, missing_ids: Optional[list[str]] = None):
        super().__init__(message)
        self.missing_ids = missing_ids or []


def compute_indicators(
    predecessor: TaskNode,
    successor: TaskNode,
    structural_pairs: set[tuple[str, str]],
    time_gap_days: int = 7,
) -> GapIndicators:
    """Evaluate the four gap indicators for one adjacent pair."""
    return GapIndicators(
        time_gap=is_time_gap(predecessor.created_at, successor.created_at, time_gap_days),
        action_type_jump=is_action_type_jump(predecessor.text, successor.text),
        no_dependency=(predecessor.task_id, successor.task_id) not in structural_pairs,
        skill_jump=is_skill_jump(predecessor.text, successor.text),
    )


class GapDetector:
    """Scan an ordered task list for adjacent pairs that need a bridging task."""

    def __init__(self, store: GraphStore, config: Optional[GapDetectionConfig] = None):
        """Initialize detector.

        Args:
            store: Graph store handle
            config: Detection thresholds
        """
        self.store = store
        self.config = config or GapDetectionConfig()

    async def detect(self, task_ids: list[str]) -> GapDetectionResult:
        """Detect gaps between consecutive tasks.

        Args:
            task_ids: Task ids in plan order (at least two)

        Returns:
            Up to ``max_gaps`` gaps sorted by confidence, then indicator count

        Raises:
            ValueError: If fewer than two ids are given
            MissingTaskError: If any id cannot be resolved
        """
        if len(task_ids) < 2:
            raise ValueError("At least two task IDs are required to detect gaps")

        started = time.monotonic()

        lookup = await self.store.get_nodes(task_ids, recover_missing=True)
        if not lookup.nodes:
            raise MissingTaskError("No tasks found for provided task IDs", list(task_ids))
        if lookup.missing_ids:
            raise MissingTaskError(
                f"Missing tasks for IDs: {', '.join(lookup.missing_ids)}",
                lookup.missing_ids,
            )
        if lookup.recovered_ids:
            logger.warning(
                f"Recovered {len(lookup.recovered_ids)} tasks from processed documents"
            )

        nodes = lookup.by_id()
        ordered = [nodes[task_id] for task_id in task_ids]

        edges = await self.store.get_edges(task_ids)
        adjacency = build_adjacency(edges)
        structural_pairs = {edge.key for edge in edges if edge.is_structural}

        gaps: list[Gap] = []
        skipped_for_cycle = 0
        pairs_analyzed = len(ordered) - 1

        for predecessor, successor in zip(ordered, ordered[1:]):
            indicators = compute_indicators(
                predecessor, successor, structural_pairs, self.config.time_gap_days
            )
            count = indicators.count
            pair = f'"{truncate_text(predecessor.text)}" -> "{truncate_text(successor.text)}"'

            if count < self.config.min_indicators:
                logger.debug(
                    f"No gap for {pair}: {count}/{self.config.min_indicators} indicators"
                )
                continue

            # Bridging would close a loop with the existing successor -> predecessor path
            if has_path(adjacency, successor.task_id, predecessor.task_id):
                skipped_for_cycle += 1
                logger.info(f"Gap skipped for {pair}: reverse dependency path exists")
                continue

            confidence = compute_confidence(count)
            logger.info(f"Gap detected for {pair} ({count} indicators, confidence {confidence})")
            gaps.append(
                Gap(
                    predecessor_task_id=predecessor.task_id,
                    successor_task_id=successor.task_id,
                    indicators=indicators,
                    confidence=confidence,
                )
            )

        gaps.sort(key=lambda gap: (-gap.confidence, -gap.indicators.count))
        top_gaps = gaps[: self.config.max_gaps]

        duration_ms = max(0, int((time.monotonic() - started) * 1000))
        logger.info(
            f"Gap analysis complete: {len(top_gaps)} gaps in {pairs_analyzed} pairs ({duration_ms}ms)"
        )

        return GapDetectionResult(
            gaps=top_gaps,
            metadata=GapDetectionMetadata(
                total_pairs_analyzed=pairs_analyzed,
                gaps_detected=len(top_gaps),
                analysis_duration_ms=duration_ms,
                recovered_task_ids=lookup.recovered_ids,
                skipped_for_cycle=skipped_for_cycle,
            ),
        )


async def detect_gaps(
    store: GraphStore,
    task_ids: list[str],
    config: Optional[GapDetectionConfig] = None,
) -> GapDetectionResult:
    """Detect gaps with a one-off detector."""
    return await GapDetector(store, config).detect(task_ids)
