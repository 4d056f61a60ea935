"""Automatic removal of pre-existing edges that block a bridging insertion."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from .cycles import Adjacency, find_path_edges, has_path, remove_edge
from .models import RemovedEdge, truncate_text

logger = logging.getLogger(__name__)

EdgeDeleter = Callable[[str, str], Awaitable[None]]


@dataclass
class BridgePlacement:
    """Where a new task attaches: predecessor -> new task -> successor."""

    predecessor_id: str
    successor_id: str
    new_task_id: Optional[str] = None


class ConflictResolver:
    """Break successor -> predecessor paths before a bridge is inserted.

    Adding ``predecessor -> new -> successor`` can only close a cycle when the
    successor already reaches the predecessor. Per placement, the direct
    back-edge is removed when present; otherwise the first edge of the shortest
    successor -> predecessor path is removed. The adjacency snapshot is updated
    in place so later placements in the same batch see the change.
    """

    def __init__(
        self,
        adjacency: Adjacency,
        task_texts: dict[str, str],
        delete_edge: Optional[EdgeDeleter] = None,
        protected: Optional[set[tuple[str, str]]] = None,
    ):
        """Initialize resolver.

        Args:
            adjacency: Structural adjacency snapshot, mutated by resolution
            task_texts: Task id -> text, used for audit reasons
            delete_edge: Async callback persisting a removal (None = snapshot only)
            protected: Edges that must never be removed (pending insertions)
        """
        self.adjacency = adjacency
        self.task_texts = task_texts
        self.delete_edge = delete_edge
        self.protected = protected or set()
        self.removed: list[RemovedEdge] = []

    def _label(self, task_id: str) -> str:
        text = self.task_texts.get(task_id)
        return truncate_text(text) if text else task_id[:8]

    def find_conflict_edge(self, placement: BridgePlacement) -> Optional[tuple[str, str]]:
        """Pick the edge to remove for a placement, if any.

        Returns:
            (source, target) of the edge to drop, or None when no conflict exists
        """
        successor = placement.successor_id
        predecessor = placement.predecessor_id

        if not has_path(self.adjacency, successor, predecessor):
            return None

        if predecessor in self.adjacency.get(successor, ()):
            if (successor, predecessor) in self.protected:
                logger.warning(
                    f"Back-edge {successor[:8]} -> {predecessor[:8]} is a pending edge, leaving it"
                )
                return None
            return (successor, predecessor)

        path = find_path_edges(self.adjacency, successor, predecessor)
        if not path:
            return None
        if path[0] in self.protected:
            logger.warning(
                f"Path {successor[:8]} -> {predecessor[:8]} starts with a pending edge, leaving it"
            )
            return None
        return path[0]

    async def resolve(self, placement: BridgePlacement) -> Optional[RemovedEdge]:
        """Remove the conflicting edge for one placement.

        Args:
            placement: Placement to make safe

        Returns:
            Audit record of the removed edge, or None if nothing was removed
        """
        edge = self.find_conflict_edge(placement)
        if edge is None:
            return None

        source, target = edge
        predecessor_text = self._label(placement.predecessor_id)
        successor_text = self._label(placement.successor_id)

        if edge == (placement.successor_id, placement.predecessor_id):
            reason = (
                f'Removed to allow bridging task between "{predecessor_text}" '
                f'and "{successor_text}"'
            )
            logger.info(
                f"Removing direct back-edge {source[:8]} -> {target[:8]}",
                extra={"task_id": placement.new_task_id},
            )
        else:
            reason = (
                f'Removed to break indirect path between "{successor_text}" '
                f'and "{predecessor_text}"'
            )
            logger.info(
                f"Removing edge {source[:8]} -> {target[:8]} on indirect path",
                extra={"task_id": placement.new_task_id},
            )

        if self.delete_edge is not None:
            await self.delete_edge(source, target)
        remove_edge(self.adjacency, source, target)

        record = RemovedEdge(source_task_id=source, target_task_id=target, reason=reason)
        self.removed.append(record)
        return record

    async def resolve_all(self, placements: list[BridgePlacement]) -> list[RemovedEdge]:
        """Resolve placements sequentially, in list order."""
        for placement in placements:
            await self.resolve(placement)
        return list(self.removed)
