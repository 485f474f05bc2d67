from datetime import date, datetime

from pydantic import BaseModel, Field

from curator.schemas.queue import QueueStatsOut, ScanPriority, ScanRecommendationOut


class ScanResultOut(BaseModel):
    source: str
    success: bool
    priority: ScanPriority = "skip"
    items_found: int = 0
    items_processed: int = 0
    items_approved: int = 0
    items_flagged: int = 0
    items_rejected: int = 0
    items_duplicate: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    skipped: bool = False
    reason: str | None = None


class DailyScanSummaryOut(BaseModel):
    timestamp: datetime
    total_scans: int
    successful_scans: int
    total_items_found: int
    total_items_approved: int
    queue_stats_before: QueueStatsOut
    queue_stats_after: QueueStatsOut
    scan_results: list[ScanResultOut]
    recommendations: list[ScanRecommendationOut]
    skipped_scans: int
    api_calls_saved: int


class ForceScanRequest(BaseModel):
    sources: list[str] = Field(min_length=1)
    reason: str = Field(default="Manual override", min_length=1, max_length=500)


class ForecastDayOut(BaseModel):
    forecast_date: date
    weekday: str
    projected_size: int
    should_scan: bool
    estimated_items: int
    priority_sources: list[str] = Field(default_factory=list)
    reason: str
