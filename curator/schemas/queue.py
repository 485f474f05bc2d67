from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ScanPriority = Literal["high", "medium", "low", "skip"]
MixCategory = Literal["video", "gif", "image", "text"]


class QueueStatsOut(BaseModel):
    total_approved: int
    total_pending: int
    days_of_content: float
    needs_scanning: bool
    sources: dict[str, int] = Field(default_factory=dict)
    content_types: dict[str, int] = Field(default_factory=dict)
    source_percentages: dict[str, float] = Field(default_factory=dict)
    content_type_percentages: dict[str, float] = Field(default_factory=dict)


class QueueHealthOut(BaseModel):
    healthy: bool
    issues: list[str] = Field(default_factory=list)


class ScanRecommendationOut(BaseModel):
    source: str
    priority: ScanPriority
    reason: str
    content_type: MixCategory


class DuplicateClusterOut(BaseModel):
    original_id: str
    duplicate_ids: list[str]
    cluster_size: int
    mean_confidence: float
    first_seen_at: datetime


class ProcessingStatsOut(BaseModel):
    queue_size: int
    pending_items: int
    processing_items: int
    failed_items: int
    average_processing_seconds: float


class SimilarEntryOut(BaseModel):
    entry_id: str
    similarity: float
    match_type: Literal["exact", "url", "image", "video", "fuzzy"]
