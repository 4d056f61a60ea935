"""Collaborator interfaces for graph storage, similarity search and embeddings."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..graph.models import DependencyEdge, TaskNode


class StoreError(Exception):
    """Storage I/O failure."""

    pass


class EmbeddingError(Exception):
    """Embedding generation failure."""

    pass


@dataclass
class NodeLookup:
    """Result of a bulk node fetch."""

    nodes: list[TaskNode]
    missing_ids: list[str] = field(default_factory=list)
    recovered_ids: list[str] = field(default_factory=list)

    def by_id(self) -> dict[str, TaskNode]:
        return {node.task_id: node for node in self.nodes}


@dataclass
class SimilarMatch:
    """Existing task close to a query embedding."""

    task_id: str
    similarity: float
    text: str


class GraphStore(ABC):
    """Durable storage of task nodes and dependency edges."""

    @abstractmethod
    async def get_nodes(self, task_ids: Iterable[str], recover_missing: bool = True) -> NodeLookup:
        """Fetch nodes by id, preserving request order.

        Args:
            task_ids: Ids to fetch
            recover_missing: Re-derive absent ids from processed documents. The
                recovered nodes are returned, never written

        Returns:
            NodeLookup with found nodes, ids still missing, and ids recovered

        Raises:
            StoreError: On I/O failure
        """
        pass

    @abstractmethod
    async def get_edges(self, task_ids: Iterable[str]) -> list[DependencyEdge]:
        """Fetch edges whose both ends lie in task_ids."""
        pass

    @abstractmethod
    async def all_edges(self) -> list[DependencyEdge]:
        """Fetch every stored edge."""
        pass

    @abstractmethod
    async def insert_nodes(self, nodes: list[TaskNode]) -> list[str]:
        """Insert nodes; fails on an existing task_id.

        Returns:
            Inserted task ids
        """
        pass

    @abstractmethod
    async def insert_edges(self, edges: list[DependencyEdge]) -> None:
        """Insert edges (all or nothing)."""
        pass

    @abstractmethod
    async def delete_edge(self, source_task_id: str, target_task_id: str) -> None:
        """Delete every edge between source and target in that direction."""
        pass

    @abstractmethod
    async def delete_nodes(self, task_ids: list[str]) -> None:
        """Delete nodes and the edges touching them."""
        pass


class SimilarityIndex(ABC):
    """Nearest-neighbour search over stored task embeddings."""

    @abstractmethod
    async def search(self, embedding: list[float], threshold: float, limit: int) -> list[SimilarMatch]:
        """Return up to ``limit`` matches with similarity >= threshold, best first."""
        pass


class EmbeddingProvider(ABC):
    """Text embedding generator."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed text into a 1536-dimension vector."""
        pass
