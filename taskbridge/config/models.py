"""Configuration models for taskbridge."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GapDetectionConfig(BaseModel):
    """Gap detection thresholds."""

    time_gap_days: int = Field(default=7, ge=0, description="Days between tasks that count as a time gap")
    min_indicators: int = Field(default=2, ge=1, le=4, description="Indicators required to report a gap")
    max_gaps: int = Field(default=3, ge=1, description="Max gaps returned per detection")


class InsertionConfig(BaseModel):
    """Bridging task insertion limits and timeouts."""

    min_text_length: int = Field(default=10, description="Min task description length")
    max_text_length: int = Field(default=500, description="Max task description length")
    min_hours: int = Field(default=8, description="Min estimated hours")
    max_hours: int = Field(default=160, description="Max estimated hours")
    max_batch_size: int = Field(default=9, ge=1, description="Max bridging tasks per batch")
    duplicate_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Similarity at or above which a new task is a duplicate",
    )
    duplicate_search_limit: int = Field(default=3, ge=1, description="Similarity results to inspect")
    embedding_timeout_sec: float = Field(default=10.0, gt=0, description="Embedding call timeout")
    search_timeout_sec: float = Field(default=10.0, gt=0, description="Similarity search timeout")
    store_timeout_sec: float = Field(default=30.0, gt=0, description="Graph store call timeout")
    stage_conflict_deletions: bool = Field(
        default=False,
        description="Apply resolver edge deletions only right before commit",
    )

    @model_validator(mode="after")
    def _check_ranges(self) -> "InsertionConfig":
        if self.min_text_length > self.max_text_length:
            raise ValueError("min_text_length must not exceed max_text_length")
        if self.min_hours > self.max_hours:
            raise ValueError("min_hours must not exceed max_hours")
        return self


class StoreConfig(BaseModel):
    """Graph snapshot storage."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    graph_path: Path = Field(default=Path(".taskbridge/graph.json"), description="Graph snapshot file")
    recovery_page_size: int = Field(default=100, ge=1, description="Documents scanned per recovery page")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    level: str = Field(default="INFO", description="Log level")
    log_dir: Path = Field(default=Path(".taskbridge/logs"), description="Log directory")
    rotation_mb: int = Field(default=10, description="Log rotation size (MB)")
    retention_days: int = Field(default=7, description="Log retention days")


class TaskbridgeConfig(BaseModel):
    """Main configuration model."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    gaps: GapDetectionConfig = Field(default_factory=GapDetectionConfig)
    insertion: InsertionConfig = Field(default_factory=InsertionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
