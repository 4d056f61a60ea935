"""Task graph data models."""

import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EMBEDDING_DIMENSIONS = 1536


class RelationshipType(str, Enum):
    """Kinds of task relationships."""

    PREREQUISITE = "prerequisite"
    BLOCKS = "blocks"
    RELATED = "related"

    @property
    def is_structural(self) -> bool:
        """Whether the relationship takes part in the acyclicity check."""
        return self in (RelationshipType.PREREQUISITE, RelationshipType.BLOCKS)


class DetectionMethod(str, Enum):
    """Provenance of a relationship."""

    AI = "ai"
    HEURISTIC = "heuristic"
    STORED_RELATIONSHIP = "stored_relationship"
    MANUAL = "manual"


class CognitionLevel(str, Enum):
    """Cognitive load estimate for a bridging task."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def normalize_task_text(text: str) -> str:
    """Trim surrounding whitespace from task text."""
    return (text or "").strip()


def generate_task_id(task_text: str, document_id: Optional[str]) -> str:
    """Derive the stable task identifier from text and owning document.

    Args:
        task_text: Normalized task text
        document_id: Owning document id (empty for synthetic containers)

    Returns:
        SHA-256 hex digest of ``"{text}||{document_id}"``
    """
    content = f"{task_text}||{document_id or ''}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def truncate_text(text: str, limit: int = 50) -> str:
    """Shorten text for log lines and diagnostics."""
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


class TaskNode(BaseModel):
    """A task extracted from a document or inserted as a bridging task."""

    task_id: str
    text: str
    document_id: Optional[str] = Field(default=None)
    embedding: Optional[list[float]] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)
    estimated_hours: Optional[int] = Field(default=None)

    @field_validator("text")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        return normalize_task_text(value)

    @field_validator("embedding")
    @classmethod
    def _check_dimensions(cls, value: Optional[list[float]]) -> Optional[list[float]]:
        if value is not None and len(value) != EMBEDDING_DIMENSIONS:
            raise ValueError(
                f"embedding must have {EMBEDDING_DIMENSIONS} dimensions, got {len(value)}"
            )
        return value

    @classmethod
    def from_text(
        cls,
        text: str,
        document_id: Optional[str],
        created_at: Optional[datetime] = None,
        **kwargs,
    ) -> "TaskNode":
        """Build a node whose id is derived from its text and document."""
        normalized = normalize_task_text(text)
        return cls(
            task_id=generate_task_id(normalized, document_id),
            text=normalized,
            document_id=document_id,
            created_at=created_at,
            **kwargs,
        )


class DependencyEdge(BaseModel):
    """Directed edge: source must happen before target."""

    source_task_id: str
    target_task_id: str
    relationship_type: RelationshipType = Field(default=RelationshipType.PREREQUISITE)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    detection_method: DetectionMethod = Field(default=DetectionMethod.STORED_RELATIONSHIP)
    reasoning: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def _reject_self_edge(self) -> "DependencyEdge":
        if self.source_task_id == self.target_task_id:
            raise ValueError(f"Self-referencing edge on task {self.source_task_id}")
        return self

    @property
    def key(self) -> tuple[str, str]:
        """(source, target) pair."""
        return (self.source_task_id, self.target_task_id)

    @property
    def is_structural(self) -> bool:
        return self.relationship_type.is_structural


class GapIndicators(BaseModel):
    """Independent signals that a task pair is missing intermediate work."""

    time_gap: bool = False
    action_type_jump: bool = False
    no_dependency: bool = False
    skill_jump: bool = False

    @property
    def count(self) -> int:
        return sum(
            (self.time_gap, self.action_type_jump, self.no_dependency, self.skill_jump)
        )


class Gap(BaseModel):
    """Detected discontinuity between two adjacent tasks."""

    gap_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    predecessor_task_id: str
    successor_task_id: str
    indicators: GapIndicators
    confidence: float = Field(ge=0.0, le=1.0)
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GapDetectionMetadata(BaseModel):
    """Summary of a gap detection run."""

    total_pairs_analyzed: int = 0
    gaps_detected: int = 0
    analysis_duration_ms: int = 0
    recovered_task_ids: list[str] = Field(default_factory=list)
    skipped_for_cycle: int = 0


class GapDetectionResult(BaseModel):
    """Gaps reported for an ordered task list."""

    gaps: list[Gap] = Field(default_factory=list)
    metadata: GapDetectionMetadata = Field(default_factory=GapDetectionMetadata)


class BridgingTask(BaseModel):
    """Candidate task proposed to fill a gap, before validation."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_text: str
    estimated_hours: float
    cognition_level: CognitionLevel = Field(default=CognitionLevel.MEDIUM)
    confidence: float = Field(default=0.5)
    reasoning: str = Field(default="")
    source: str = Field(default="ai_generated")
    edited_task_text: Optional[str] = Field(default=None)
    edited_estimated_hours: Optional[float] = Field(default=None)

    @property
    def final_text(self) -> str:
        """Edited text when present, otherwise the generated text, trimmed."""
        text = self.edited_task_text if self.edited_task_text is not None else self.task_text
        return normalize_task_text(text)

    @property
    def final_hours(self) -> float:
        if self.edited_estimated_hours is not None:
            return self.edited_estimated_hours
        return self.estimated_hours


class AcceptedBridgingTask(BaseModel):
    """Bridging task accepted for insertion between two existing tasks."""

    task: BridgingTask
    predecessor_id: str
    successor_id: str


class RemovedEdge(BaseModel):
    """Audit record of an edge removed to restore acyclicity."""

    source_task_id: str
    target_task_id: str
    reason: str


class InsertedBridge(BaseModel):
    """A committed bridging task and the pair it connects."""

    task_id: str
    text: str
    predecessor_id: str
    successor_id: str
    estimated_hours: int
    confidence: float = 0.5
    reasoning: str = ""


class InsertionResult(BaseModel):
    """Outcome of a committed bridging insertion."""

    inserted_count: int
    task_ids: list[str]
    relationships_created: int
    cycles_resolved: int = 0
    removed_edges: list[RemovedEdge] = Field(default_factory=list)
    bridges: list[InsertedBridge] = Field(default_factory=list)
    duration_ms: int = 0
