from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from opentelemetry import trace

from curator.core.config import Settings
from curator.services.connectors import Connector
from curator.services.content import ProcessingAction
from curator.services.processor import ContentProcessor
from curator.services.queue_manager import ForecastDay, QueueManager, QueueStats, ScanPriority, ScanRecommendation
from curator.services.repository import ContentRepository, RepositoryUnavailableError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SUFFICIENT_CONTENT_REASON = "Sufficient content - over 14 days queued"
SCAN_IN_PROGRESS_REASON = "scan already in progress"


@dataclass(slots=True)
class ScanResult:
    source: str
    success: bool
    priority: ScanPriority = "skip"
    items_found: int = 0
    items_processed: int = 0
    items_approved: int = 0
    items_flagged: int = 0
    items_rejected: int = 0
    items_duplicate: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    skipped: bool = False
    reason: str | None = None


@dataclass(slots=True)
class DailyScanSummary:
    timestamp: datetime
    total_scans: int
    successful_scans: int
    total_items_found: int
    total_items_approved: int
    queue_stats_before: QueueStats
    queue_stats_after: QueueStats
    scan_results: list[ScanResult]
    recommendations: list[ScanRecommendation]
    skipped_scans: int
    api_calls_saved: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanOrchestrator:
    def __init__(
        self,
        queue_manager: QueueManager,
        processor: ContentProcessor,
        connectors: dict[str, Connector],
        queries: dict[str, str],
        settings: Settings,
        *,
        repository: ContentRepository,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.queue_manager = queue_manager
        self.processor = processor
        self.connectors = connectors
        self.queries = queries
        self.settings = settings
        self.repository = repository
        self.sleep = sleep
        self.clock = clock

    async def run_daily_scan(self) -> DailyScanSummary:
        with tracer.start_as_current_span("scan.daily") as span:
            started_at = self.clock()
            stats_before = await self.queue_manager.get_stats()
            recommendations = await self.queue_manager.get_recommendations(stats_before)

            if stats_before.days_of_content > self.settings.high_water_days:
                logger.info(
                    "Skipping all scans: %.1f days of content queued",
                    stats_before.days_of_content,
                )
                skipped = [
                    ScanResult(source=item.source, success=True, skipped=True, reason=SUFFICIENT_CONTENT_REASON)
                    for item in recommendations
                ]
                span.set_attribute("scan.skipped", len(skipped))
                return self._summary(started_at, stats_before, stats_before, skipped, recommendations)

            results: list[ScanResult] = []
            actionable = [item for item in recommendations if item.priority != "skip"]
            for item in recommendations:
                if item.priority == "skip":
                    results.append(ScanResult(source=item.source, success=True, skipped=True, reason=item.reason))

            for index, item in enumerate(actionable):
                if index > 0:
                    await self.sleep(self.settings.scan_delay_seconds)
                results.append(await self._scan_source(item.source, item.priority))

            stats_after = await self.queue_manager.get_stats()
            summary = self._summary(started_at, stats_before, stats_after, results, recommendations)
            span.set_attribute("scan.total", summary.total_scans)
            span.set_attribute("scan.successful", summary.successful_scans)
            logger.info(
                "Daily scan finished scans=%s successful=%s found=%s approved=%s skipped=%s",
                summary.total_scans,
                summary.successful_scans,
                summary.total_items_found,
                summary.total_items_approved,
                summary.skipped_scans,
            )
            return summary

    async def force_scan(self, sources: list[str], reason: str = "Manual override") -> list[ScanResult]:
        logger.info("Forced scan sources=%s reason=%s", ",".join(sources), reason)
        results: list[ScanResult] = []
        for index, source in enumerate(sources):
            if index > 0:
                await self.sleep(self.settings.scan_delay_seconds)
            results.append(await self._scan_source(source, "high"))
        return results

    async def weekly_forecast(self) -> list[ForecastDay]:
        return await self.queue_manager.weekly_forecast(self.clock().date())

    async def _scan_source(self, source: str, priority: ScanPriority) -> ScanResult:
        with tracer.start_as_current_span("scan.source") as span:
            span.set_attribute("scan.source", source)
            span.set_attribute("scan.priority", priority)
            started = time.monotonic()
            result = ScanResult(source=source, success=False, priority=priority)

            connector = self.connectors.get(source)
            if connector is None:
                result.errors.append(f"No connector configured for {source}")
                result.reason = "connector unavailable"
                return result

            async with self.repository.source_lock(source) as acquired:
                if not acquired:
                    result.reason = SCAN_IN_PROGRESS_REASON
                    logger.warning("Skipping %s: %s", source, SCAN_IN_PROGRESS_REASON)
                    return result

                query = self.queries.get(source, self.settings.default_search_query)
                budget = self.settings.scan_size_for(priority)
                try:
                    items = await connector.search(query, budget)
                except RepositoryUnavailableError:
                    raise
                except Exception as exc:
                    logger.warning("Connector search failed source=%s: %s", source, exc)
                    result.errors.append(str(exc))
                    result.duration_seconds = time.monotonic() - started
                    return result

                result.items_found = len(items)
                batch = await self.processor.process_batch(items)
                for outcome in batch.results:
                    result.items_processed += 1
                    if outcome.error:
                        result.errors.append(outcome.error)
                    if outcome.action is ProcessingAction.APPROVED:
                        result.items_approved += 1
                    elif outcome.action is ProcessingAction.FLAGGED:
                        result.items_flagged += 1
                    elif outcome.action is ProcessingAction.DUPLICATE:
                        result.items_duplicate += 1
                    else:
                        result.items_rejected += 1

            result.success = True
            result.reason = f"Scanned with {priority} priority"
            result.duration_seconds = time.monotonic() - started
            span.set_attribute("scan.items_found", result.items_found)
            span.set_attribute("scan.items_approved", result.items_approved)
            return result

    def _summary(
        self,
        started_at: datetime,
        stats_before: QueueStats,
        stats_after: QueueStats,
        results: list[ScanResult],
        recommendations: list[ScanRecommendation],
    ) -> DailyScanSummary:
        scanned = [result for result in results if not result.skipped]
        skipped = len(results) - len(scanned)
        return DailyScanSummary(
            timestamp=started_at,
            total_scans=len(scanned),
            successful_scans=sum(1 for result in scanned if result.success),
            total_items_found=sum(result.items_found for result in scanned),
            total_items_approved=sum(result.items_approved for result in scanned),
            queue_stats_before=stats_before,
            queue_stats_after=stats_after,
            scan_results=results,
            recommendations=recommendations,
            skipped_scans=skipped,
            api_calls_saved=skipped * self.settings.api_calls_per_scan,
        )
