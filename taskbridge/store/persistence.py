"""Graph snapshot persistence with atomic writes."""

import json
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ..graph.models import DependencyEdge, TaskNode
from .memory import InMemoryGraphStore
from .recovery import ProcessedDocument


class GraphSnapshotError(Exception):
    """Graph snapshot file cannot be read."""

    pass


class GraphSnapshot(BaseModel):
    """Serialized graph: nodes, stored edges, overrides and documents."""

    nodes: list[TaskNode] = Field(default_factory=list)
    edges: list[DependencyEdge] = Field(default_factory=list)
    overrides: list[DependencyEdge] = Field(default_factory=list)
    documents: list[ProcessedDocument] = Field(default_factory=list)
    updated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def load_graph(graph_path: Path, recovery_page_size: int = 100) -> InMemoryGraphStore:
    """Load a graph snapshot into a fresh in-memory store.

    Args:
        graph_path: Path to snapshot JSON file
        recovery_page_size: Documents scanned per recovery page

    Returns:
        Store populated from the file, or an empty store if the file doesn't exist

    Raises:
        GraphSnapshotError: If the file is not a valid snapshot
    """
    if not graph_path.exists():
        return InMemoryGraphStore(recovery_page_size=recovery_page_size)

    try:
        with open(graph_path, "r") as f:
            snapshot = GraphSnapshot(**json.load(f))
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        raise GraphSnapshotError(f"Invalid graph snapshot {graph_path}: {e}")

    store = InMemoryGraphStore(
        nodes=snapshot.nodes,
        edges=snapshot.edges,
        documents=snapshot.documents,
        recovery_page_size=recovery_page_size,
    )
    store.add_override_edges(snapshot.overrides)
    return store


def save_graph(store: InMemoryGraphStore, graph_path: Path) -> None:
    """Save store contents with atomic write.

    Args:
        store: Store to save
        graph_path: Destination path
    """
    snapshot = GraphSnapshot(
        nodes=list(store.nodes.values()),
        edges=list(store.edges.values()),
        overrides=list(store.overrides.values()),
        documents=store.documents,
    )

    graph_path.parent.mkdir(parents=True, exist_ok=True)
    # temp file -> rename
    temp_path = graph_path.with_suffix(".tmp")
    with open(temp_path, "w") as f:
        json.dump(snapshot.model_dump(mode="json"), f, indent=2)
        f.flush()
    temp_path.replace(graph_path)
