"""In-memory graph store and similarity index."""

import logging
from collections.abc import Iterable
from typing import Optional

from ..graph.models import DependencyEdge, DetectionMethod, TaskNode
from .base import GraphStore, NodeLookup, SimilarityIndex, SimilarMatch, StoreError
from .embedding import cosine_similarity
from .recovery import DEFAULT_PAGE_SIZE, ProcessedDocument, recover_tasks_from_documents

logger = logging.getLogger(__name__)

EdgeKey = tuple[str, str, str]


def _edge_key(edge: DependencyEdge) -> EdgeKey:
    return (edge.source_task_id, edge.target_task_id, edge.relationship_type.value)


class InMemoryGraphStore(GraphStore):
    """Graph store holding nodes, edges and processed documents in dicts.

    Each instance is an isolated graph; nothing is shared between instances.
    """

    def __init__(
        self,
        nodes: Optional[Iterable[TaskNode]] = None,
        edges: Optional[Iterable[DependencyEdge]] = None,
        documents: Optional[Iterable[ProcessedDocument]] = None,
        recovery_page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """Initialize store.

        Args:
            nodes: Initial task nodes
            edges: Initial stored edges
            documents: Processed documents used for missing-task recovery
            recovery_page_size: Documents scanned per recovery page
        """
        self.nodes: dict[str, TaskNode] = {}
        self.edges: dict[EdgeKey, DependencyEdge] = {}
        self.overrides: dict[EdgeKey, DependencyEdge] = {}
        self.documents: list[ProcessedDocument] = list(documents or [])
        self.recovery_page_size = recovery_page_size

        for node in nodes or []:
            self.nodes[node.task_id] = node
        for edge in edges or []:
            self.edges[_edge_key(edge)] = edge

    def add_override_edges(self, edges: Iterable[DependencyEdge]) -> int:
        """Register user dependency overrides.

        Overrides are returned alongside stored edges and are tagged as manual.

        Returns:
            Number of overrides added
        """
        added = 0
        for edge in edges:
            edge = edge.model_copy(update={"detection_method": DetectionMethod.MANUAL})
            key = _edge_key(edge)
            if key in self.overrides:
                continue
            self.overrides[key] = edge
            added += 1
        return added

    def _merged_edges(self) -> list[DependencyEdge]:
        merged: dict[EdgeKey, DependencyEdge] = dict(self.edges)
        for key, edge in self.overrides.items():
            merged.setdefault(key, edge)
        return list(merged.values())

    async def _fetch_documents(self, offset: int, limit: int) -> list[ProcessedDocument]:
        return self.documents[offset : offset + limit]

    async def get_nodes(self, task_ids: Iterable[str], recover_missing: bool = True) -> NodeLookup:
        requested = list(dict.fromkeys(task_ids))
        found = {task_id: self.nodes[task_id] for task_id in requested if task_id in self.nodes}

        recovered_ids: list[str] = []
        missing = [task_id for task_id in requested if task_id not in found]
        if missing and recover_missing and self.documents:
            for node in await recover_tasks_from_documents(
                self._fetch_documents, missing, self.recovery_page_size
            ):
                found[node.task_id] = node
                recovered_ids.append(node.task_id)
            missing = [task_id for task_id in requested if task_id not in found]

        return NodeLookup(
            nodes=[found[task_id] for task_id in requested if task_id in found],
            missing_ids=missing,
            recovered_ids=recovered_ids,
        )

    async def get_edges(self, task_ids: Iterable[str]) -> list[DependencyEdge]:
        scope = set(task_ids)
        return [
            edge
            for edge in self._merged_edges()
            if edge.source_task_id in scope and edge.target_task_id in scope
        ]

    async def all_edges(self) -> list[DependencyEdge]:
        return self._merged_edges()

    async def insert_nodes(self, nodes: list[TaskNode]) -> list[str]:
        ids = [node.task_id for node in nodes]
        clashes = [task_id for task_id in ids if task_id in self.nodes]
        if clashes or len(set(ids)) != len(ids):
            raise StoreError(f"Duplicate task_id on insert: {', '.join(clashes) or 'within batch'}")
        for node in nodes:
            self.nodes[node.task_id] = node
        logger.debug(f"Inserted {len(nodes)} nodes")
        return ids

    async def insert_edges(self, edges: list[DependencyEdge]) -> None:
        unknown = sorted(
            {
                task_id
                for edge in edges
                for task_id in (edge.source_task_id, edge.target_task_id)
                if task_id not in self.nodes
            }
        )
        if unknown:
            raise StoreError(f"Edges reference unknown tasks: {', '.join(unknown)}")
        for edge in edges:
            self.edges[_edge_key(edge)] = edge
        logger.debug(f"Inserted {len(edges)} edges")

    async def delete_edge(self, source_task_id: str, target_task_id: str) -> None:
        for table in (self.edges, self.overrides):
            for key in [k for k in table if k[0] == source_task_id and k[1] == target_task_id]:
                del table[key]

    async def delete_nodes(self, task_ids: list[str]) -> None:
        doomed = set(task_ids)
        for task_id in doomed:
            self.nodes.pop(task_id, None)
        for table in (self.edges, self.overrides):
            for key in [k for k in table if k[0] in doomed or k[1] in doomed]:
                del table[key]


class InMemorySimilarityIndex(SimilarityIndex):
    """Brute-force cosine search over the embeddings held by a store."""

    def __init__(self, store: InMemoryGraphStore):
        self.store = store

    async def search(self, embedding: list[float], threshold: float, limit: int) -> list[SimilarMatch]:
        matches = []
        for node in self.store.nodes.values():
            if node.embedding is None:
                continue
            similarity = cosine_similarity(embedding, node.embedding)
            if similarity >= threshold:
                matches.append(SimilarMatch(task_id=node.task_id, similarity=similarity, text=node.text))
        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches[:limit]
