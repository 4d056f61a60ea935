"""Bridging task insertion with DAG integrity guarantees.

A batch of accepted bridging tasks moves through
VALIDATING -> CONTEXT_LOADED -> DEDUPLICATED -> CONFLICTS_RESOLVED -> COMMITTED,
or ends in ABORTED with a typed ``TaskInsertionError``. Tasks are handled in
list order because conflict resolution mutates the shared adjacency snapshot.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TypeVar, Union

from pydantic import ValidationError

from ..config.models import InsertionConfig
from ..graph.cycles import build_adjacency, find_cycle_path, has_cycle
from ..graph.models import (
    AcceptedBridgingTask,
    DependencyEdge,
    DetectionMethod,
    InsertedBridge,
    InsertionResult,
    RelationshipType,
    RemovedEdge,
    TaskNode,
    generate_task_id,
    truncate_text,
)
from ..graph.resolver import BridgePlacement, ConflictResolver
from ..store.base import EmbeddingError, EmbeddingProvider, GraphStore, SimilarityIndex, StoreError
from .machine import InsertionMachine, InsertionState

logger = logging.getLogger(__name__)

T = TypeVar("T")

CYCLE_GUIDANCE = [
    "This means there is already a dependency path from the successor back to the predecessor.",
    "The system attempted to auto-fix by removing conflicting edges, but the cycle could not be resolved.",
    "Try selecting a different gap, or manually review and remove conflicting relationships in your task graph.",
]


class InsertionErrorCode(str, Enum):
    """Typed failure kinds of a bridging insertion."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    DUPLICATE_TASK = "DUPLICATE_TASK"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    INSERTION_FAILED = "INSERTION_FAILED"


class TaskInsertionError(Exception):
    """Bridging insertion failure with a code and diagnostic payload."""

    def __init__(
        self,
        message: str,
        code: InsertionErrorCode,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "code": self.code.value, "details": self.details}


@dataclass
class PendingBridge:
    """Normalized bridging task carried through the transaction."""

    accepted: AcceptedBridgingTask
    text: str
    hours: int
    predecessor_id: str
    successor_id: str
    document_id: Optional[str] = None
    task_id: str = ""
    embedding: list[float] = field(default_factory=list)

    @property
    def source_id(self) -> str:
        """Identifier assigned by the task generator."""
        return self.accepted.task.id


def render_cycle(cycle: list[str], texts: dict[str, str]) -> str:
    """Render a cycle path with truncated task texts."""
    parts = []
    for task_id in cycle:
        text = texts.get(task_id)
        parts.append(f'"{truncate_text(text)}"' if text else f"Task {task_id[:8]}")
    return " -> ".join(parts)


class BridgingInsertionTransaction:
    """Validate, deduplicate, de-conflict and commit one batch of bridging tasks."""

    def __init__(
        self,
        store: GraphStore,
        similarity_index: SimilarityIndex,
        embedder: EmbeddingProvider,
        config: Optional[InsertionConfig] = None,
    ):
        """Initialize transaction.

        Args:
            store: Graph store handle
            similarity_index: Index used for duplicate detection
            embedder: Embedding provider for new task texts
            config: Limits and timeouts
        """
        self.store = store
        self.similarity_index = similarity_index
        self.embedder = embedder
        self.config = config or InsertionConfig()
        self.machine = InsertionMachine()
        self.removed_edges: list[RemovedEdge] = []
        self._texts: dict[str, str] = {}
        self._stored_edges: list[DependencyEdge] = []
        self._recovered: list[TaskNode] = []

    @property
    def state(self) -> InsertionState:
        return self.machine.current_state

    async def _guarded(self, awaitable: Awaitable[T], timeout_sec: float, operation: str) -> T:
        """Await an external call with a timeout, mapping failures to INSERTION_FAILED."""
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout_sec)
        except asyncio.TimeoutError:
            raise TaskInsertionError(
                f"{operation} timed out after {timeout_sec}s",
                InsertionErrorCode.INSERTION_FAILED,
                {"operation": operation, "timed_out": True},
            )
        except (StoreError, EmbeddingError) as e:
            raise TaskInsertionError(
                f"{operation} failed: {e}",
                InsertionErrorCode.INSERTION_FAILED,
                {"operation": operation, "timed_out": False},
            ) from e

    def _store_call(self, awaitable: Awaitable[T], operation: str) -> Awaitable[T]:
        return self._guarded(awaitable, self.config.store_timeout_sec, operation)

    async def run(
        self, batch: Iterable[Union[AcceptedBridgingTask, dict[str, Any]]]
    ) -> InsertionResult:
        """Insert a batch of accepted bridging tasks.

        Args:
            batch: Accepted tasks with their predecessor/successor ids

        Returns:
            InsertionResult describing inserted tasks, edges and resolved conflicts

        Raises:
            TaskInsertionError: On any failure; the machine ends in ABORTED
        """
        if self.machine.current_state != InsertionState.VALIDATING:
            raise TaskInsertionError(
                "Transaction has already run", InsertionErrorCode.VALIDATION_ERROR
            )

        started = time.monotonic()
        try:
            pending = self._validate(list(batch))
            await self._load_context(pending)
            self.machine.transition(InsertionState.CONTEXT_LOADED)

            await self._deduplicate(pending)
            self.machine.transition(InsertionState.DEDUPLICATED)

            staged = await self._resolve_conflicts(pending)
            self.machine.transition(InsertionState.CONFLICTS_RESOLVED)

            await self._verify_acyclic(pending)
            task_ids = await self._commit(pending, staged)
            self.machine.transition(InsertionState.COMMITTED)
        except TaskInsertionError as e:
            self.machine.abort(str(e), {"code": e.code.value})
            logger.error(f"Bridging insertion aborted [{e.code.value}]: {e}")
            raise
        except Exception as e:
            self.machine.abort(str(e))
            logger.error(f"Bridging insertion aborted unexpectedly: {e}")
            raise

        duration_ms = max(0, int((time.monotonic() - started) * 1000))
        logger.info(
            f"Accepted {len(task_ids)} bridging tasks, {len(pending) * 2} relationships, "
            f"{len(self.removed_edges)} conflicts resolved ({duration_ms}ms)"
        )
        return InsertionResult(
            inserted_count=len(task_ids),
            task_ids=task_ids,
            relationships_created=len(pending) * 2,
            cycles_resolved=len(self.removed_edges),
            removed_edges=list(self.removed_edges),
            bridges=[
                InsertedBridge(
                    task_id=bridge.task_id,
                    text=bridge.text,
                    predecessor_id=bridge.predecessor_id,
                    successor_id=bridge.successor_id,
                    estimated_hours=bridge.hours,
                    confidence=min(max(bridge.accepted.task.confidence, 0.0), 1.0),
                    reasoning=bridge.accepted.task.reasoning,
                )
                for bridge in pending
            ],
            duration_ms=duration_ms,
        )

    def _validate(self, batch: list) -> list[PendingBridge]:
        """Normalize the batch, rejecting it on the first violation."""
        cfg = self.config
        if not batch:
            raise TaskInsertionError(
                "No tasks provided for insertion", InsertionErrorCode.VALIDATION_ERROR
            )
        if len(batch) > cfg.max_batch_size:
            raise TaskInsertionError(
                f"Too many tasks in batch ({len(batch)} > {cfg.max_batch_size})",
                InsertionErrorCode.VALIDATION_ERROR,
            )

        pending: list[PendingBridge] = []
        for index, item in enumerate(batch):
            try:
                accepted = AcceptedBridgingTask.model_validate(item)
            except ValidationError as e:
                raise TaskInsertionError(
                    f"Task #{index + 1} is malformed",
                    InsertionErrorCode.VALIDATION_ERROR,
                    {"validation_errors": [err["msg"] for err in e.errors()]},
                )

            label = accepted.task.id
            predecessor_id = (accepted.predecessor_id or "").strip()
            successor_id = (accepted.successor_id or "").strip()
            if not predecessor_id or not successor_id:
                raise TaskInsertionError(
                    "Predecessor and successor IDs are required",
                    InsertionErrorCode.VALIDATION_ERROR,
                    {"validation_errors": [f"Task {label} is missing a predecessor or successor"]},
                )
            if predecessor_id == successor_id:
                raise TaskInsertionError(
                    "Predecessor and successor must be different tasks",
                    InsertionErrorCode.VALIDATION_ERROR,
                    {"validation_errors": [f"Task {label} bridges {predecessor_id} to itself"]},
                )

            text = accepted.task.final_text
            if not cfg.min_text_length <= len(text) <= cfg.max_text_length:
                raise TaskInsertionError(
                    f"Task {label} has invalid description length",
                    InsertionErrorCode.VALIDATION_ERROR,
                    {
                        "validation_errors": [
                            f"Task {label} description must be between "
                            f"{cfg.min_text_length} and {cfg.max_text_length} characters"
                        ]
                    },
                )

            hours = accepted.task.final_hours
            if (
                not float(hours).is_integer()
                or not cfg.min_hours <= hours <= cfg.max_hours
            ):
                raise TaskInsertionError(
                    f"Task {label} has invalid estimated hours",
                    InsertionErrorCode.VALIDATION_ERROR,
                    {
                        "validation_errors": [
                            f"Task {label} estimated hours must be an integer between "
                            f"{cfg.min_hours} and {cfg.max_hours}"
                        ]
                    },
                )

            pending.append(
                PendingBridge(
                    accepted=accepted,
                    text=text,
                    hours=int(hours),
                    predecessor_id=predecessor_id,
                    successor_id=successor_id,
                )
            )

        return pending

    async def _load_context(self, pending: list[PendingBridge]) -> None:
        """Resolve neighbours, document ids and content-hash task ids.

        A neighbour may be a task created earlier in the same batch, referenced
        by its generator id or its content-hash id.
        """
        referenced = list(
            dict.fromkeys(
                task_id
                for bridge in pending
                for task_id in (bridge.predecessor_id, bridge.successor_id)
            )
        )
        lookup = await self._store_call(
            self.store.get_nodes(referenced, recover_missing=True), "task lookup"
        )
        stored = lookup.by_id()
        for node in stored.values():
            self._texts[node.task_id] = node.text

        aliases: dict[str, str] = {}
        batch_documents: dict[str, Optional[str]] = {}
        missing: list[str] = []
        unresolved: set[str] = set()

        for bridge in pending:
            bridge.predecessor_id = aliases.get(bridge.predecessor_id, bridge.predecessor_id)
            bridge.successor_id = aliases.get(bridge.successor_id, bridge.successor_id)

            neighbours = []
            for task_id in (bridge.predecessor_id, bridge.successor_id):
                if task_id in stored:
                    neighbours.append(stored[task_id].document_id)
                elif task_id in batch_documents:
                    neighbours.append(batch_documents[task_id])
                elif task_id not in unresolved:
                    missing.append(task_id)
            if len(neighbours) < 2:
                # References to this task only repeat the failure above
                unresolved.add(bridge.source_id)
                continue

            # Predecessor's document wins
            bridge.document_id = neighbours[0] or neighbours[1]
            bridge.task_id = generate_task_id(bridge.text, bridge.document_id)

            if bridge.task_id in batch_documents:
                raise TaskInsertionError(
                    "Duplicate task detected",
                    InsertionErrorCode.DUPLICATE_TASK,
                    {
                        "duplicate": {
                            "task_id": bridge.task_id,
                            "text": bridge.text,
                            "similarity": 1.0,
                        },
                        "validation_errors": [
                            f"Task '{bridge.text}' appears more than once in the batch"
                        ],
                    },
                )

            batch_documents[bridge.task_id] = bridge.document_id
            aliases[bridge.source_id] = bridge.task_id
            self._texts[bridge.task_id] = bridge.text

        if missing:
            missing_ids = list(dict.fromkeys(missing))
            raise TaskInsertionError(
                f"Referenced tasks not found: {', '.join(missing_ids)}",
                InsertionErrorCode.TASK_NOT_FOUND,
                {"missing_ids": missing_ids},
            )

        if lookup.recovered_ids:
            logger.warning(
                f"Recovered {len(lookup.recovered_ids)} neighbour tasks from processed documents"
            )
            # Written at commit time together with the new tasks
            recovered = set(lookup.recovered_ids)
            self._recovered = [node for node in lookup.nodes if node.task_id in recovered]

    async def _deduplicate(self, pending: list[PendingBridge]) -> None:
        """Reject tasks whose id already exists or whose text is near an existing task."""
        cfg = self.config
        new_ids = [bridge.task_id for bridge in pending]
        existing = await self._store_call(
            self.store.get_nodes(new_ids, recover_missing=False), "task id check"
        )
        if existing.nodes:
            clash = existing.nodes[0]
            raise TaskInsertionError(
                "Duplicate task detected",
                InsertionErrorCode.DUPLICATE_TASK,
                {
                    "duplicate": {"task_id": clash.task_id, "text": clash.text, "similarity": 1.0},
                    "validation_errors": [
                        f"Task ID {node.task_id} already exists" for node in existing.nodes
                    ],
                },
            )

        # Embeddings share no state, so they are generated concurrently
        embeddings = await asyncio.gather(
            *(
                self._guarded(
                    self.embedder.embed(bridge.text),
                    cfg.embedding_timeout_sec,
                    "embedding generation",
                )
                for bridge in pending
            )
        )
        for bridge, embedding in zip(pending, embeddings):
            bridge.embedding = list(embedding)

        for bridge in pending:
            matches = await self._guarded(
                self.similarity_index.search(
                    bridge.embedding, cfg.duplicate_threshold, cfg.duplicate_search_limit
                ),
                cfg.search_timeout_sec,
                "similarity search",
            )
            candidates = [
                match
                for match in matches
                if match.task_id not in (bridge.task_id, bridge.source_id)
            ]
            if not candidates:
                continue
            best = max(candidates, key=lambda match: match.similarity)
            if best.similarity < cfg.duplicate_threshold:
                continue
            raise TaskInsertionError(
                "Duplicate task detected",
                InsertionErrorCode.DUPLICATE_TASK,
                {
                    "duplicate": {
                        "task_id": best.task_id,
                        "text": best.text,
                        "similarity": round(best.similarity, 4),
                    },
                    "validation_errors": [
                        f"Task '{bridge.text}' duplicates existing task '{best.text}' "
                        f"(similarity: {best.similarity:.2f})"
                    ],
                },
            )

    async def _delete_edge(self, source: str, target: str) -> None:
        await self._store_call(self.store.delete_edge(source, target), "edge deletion")

    def _new_pairs(self, pending: list[PendingBridge]) -> list[tuple[str, str]]:
        pairs = []
        for bridge in pending:
            pairs.append((bridge.predecessor_id, bridge.task_id))
            pairs.append((bridge.task_id, bridge.successor_id))
        return pairs

    async def _resolve_conflicts(self, pending: list[PendingBridge]) -> list[tuple[str, str]]:
        """Remove stored edges that would close a cycle through a new bridge.

        Returns:
            Deletions staged for commit (empty unless staging is enabled)
        """
        edges = await self._store_call(self.store.all_edges(), "relationship load")
        self._stored_edges = edges
        adjacency = build_adjacency(edges, self._new_pairs(pending))

        staged: list[tuple[str, str]] = []
        resolver = ConflictResolver(
            adjacency,
            self._texts,
            delete_edge=None if self.config.stage_conflict_deletions else self._delete_edge,
            protected=set(self._new_pairs(pending)),
        )
        for bridge in pending:
            removed = await resolver.resolve(
                BridgePlacement(
                    predecessor_id=bridge.predecessor_id,
                    successor_id=bridge.successor_id,
                    new_task_id=bridge.task_id,
                )
            )
            if removed is None:
                continue
            self.removed_edges.append(removed)
            if self.config.stage_conflict_deletions:
                staged.append((removed.source_task_id, removed.target_task_id))

        return staged

    async def _verify_acyclic(self, pending: list[PendingBridge]) -> None:
        """Final acyclicity check over stored edges minus removals plus new edges."""
        removed = {(edge.source_task_id, edge.target_task_id) for edge in self.removed_edges}
        remaining = [edge for edge in self._stored_edges if edge.key not in removed]
        adjacency = build_adjacency(remaining, self._new_pairs(pending))
        if not has_cycle(adjacency):
            return

        cycle = find_cycle_path(adjacency)
        unknown = [task_id for task_id in dict.fromkeys(cycle) if task_id not in self._texts]
        if unknown:
            try:
                lookup = await self._store_call(
                    self.store.get_nodes(unknown, recover_missing=False), "cycle text lookup"
                )
                for node in lookup.nodes:
                    self._texts[node.task_id] = node.text
            except TaskInsertionError as e:
                logger.warning(f"Could not load task texts for cycle display: {e}")

        cycle_path = render_cycle(cycle, self._texts)
        raise TaskInsertionError(
            "Cannot insert bridging task - would create circular dependency",
            InsertionErrorCode.CYCLE_DETECTED,
            {
                "cycle": cycle,
                "cycle_path": cycle_path,
                "guidance": [f"Detected cycle: {cycle_path}", *CYCLE_GUIDANCE],
            },
        )

    async def _commit(self, pending: list[PendingBridge], staged: list[tuple[str, str]]) -> list[str]:
        """Insert recovered neighbours and new nodes, then edges.

        Every node inserted here is deleted again if the edges fail.
        """
        for source, target in staged:
            await self._store_call(self.store.delete_edge(source, target), "edge deletion")

        created_at = datetime.now(timezone.utc)
        nodes = [
            TaskNode(
                task_id=bridge.task_id,
                text=bridge.text,
                document_id=bridge.document_id,
                embedding=bridge.embedding or None,
                created_at=created_at,
                estimated_hours=bridge.hours,
            )
            for bridge in pending
        ]
        inserted = await self._store_call(
            self.store.insert_nodes(self._recovered + nodes), "task insertion"
        )

        edges: list[DependencyEdge] = []
        for bridge in pending:
            task = bridge.accepted.task
            base = {
                "relationship_type": RelationshipType.PREREQUISITE,
                "detection_method": DetectionMethod.AI,
                "confidence": min(max(task.confidence, 0.0), 1.0),
                "reasoning": task.reasoning or None,
            }
            edges.append(
                DependencyEdge(source_task_id=bridge.predecessor_id, target_task_id=bridge.task_id, **base)
            )
            edges.append(
                DependencyEdge(source_task_id=bridge.task_id, target_task_id=bridge.successor_id, **base)
            )

        try:
            await self._store_call(self.store.insert_edges(edges), "relationship insertion")
        except TaskInsertionError as e:
            logger.warning(f"Relationship insertion failed, removing {len(inserted)} inserted tasks")
            try:
                await self._store_call(self.store.delete_nodes(inserted), "rollback")
            except TaskInsertionError as rollback_error:
                logger.error(f"Rollback of inserted tasks failed: {rollback_error}")
                e.details["rollback_failed"] = True
            raise

        return [node.task_id for node in nodes]


async def insert_bridging_tasks(
    store: GraphStore,
    similarity_index: SimilarityIndex,
    embedder: EmbeddingProvider,
    batch: Iterable[Union[AcceptedBridgingTask, dict[str, Any]]],
    config: Optional[InsertionConfig] = None,
) -> InsertionResult:
    """Run one bridging insertion transaction."""
    transaction = BridgingInsertionTransaction(store, similarity_index, embedder, config)
    return await transaction.run(batch)
