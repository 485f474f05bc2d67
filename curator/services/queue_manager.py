from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Literal

from curator.core.config import Settings
from curator.core.sources import (
    CONTENT_MIX_TARGETS,
    MIX_CATEGORIES,
    SOURCE_PROFILES,
    MixCategory,
    content_type_target_share,
    known_sources,
    primary_content_type,
    source_target_share,
)
from curator.services.repository import ContentRepository, QueueRow

logger = logging.getLogger(__name__)

ScanPriority = Literal["high", "medium", "low", "skip"]

PRIORITY_ORDER: dict[str, int] = {"high": 0, "medium": 1, "low": 2, "skip": 3}

OVER_REPRESENTED_FACTOR = 1.5
UNDER_REPRESENTED_FACTOR = 0.5
MEDIUM_PRIORITY_FACTOR = 0.8
HEALTH_LOW_FACTOR = 0.5
HEALTH_HIGH_FACTOR = 2.0
FORECAST_DAYS = 7
ESTIMATED_ITEMS_PER_SOURCE = 8


@dataclass(slots=True)
class QueueStats:
    total_approved: int
    total_pending: int
    days_of_content: float
    needs_scanning: bool
    sources: dict[str, int] = field(default_factory=dict)
    content_types: dict[str, int] = field(default_factory=dict)
    source_percentages: dict[str, float] = field(default_factory=dict)
    content_type_percentages: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class ScanDecision:
    should: bool
    reason: str
    priority: ScanPriority = "skip"


@dataclass(slots=True)
class ScanRecommendation:
    source: str
    priority: ScanPriority
    reason: str
    content_type: MixCategory


@dataclass(slots=True)
class ForecastDay:
    forecast_date: date
    weekday: str
    projected_size: int
    should_scan: bool
    estimated_items: int
    priority_sources: list[str]
    reason: str


@dataclass(slots=True)
class QueueHealth:
    healthy: bool
    issues: list[str]


def mix_category(source: str, image_url: str | None, video_url: str | None) -> MixCategory:
    if video_url:
        return "video"
    if image_url:
        if ".gif" in image_url.lower() or primary_content_type(source) == "gif":
            return "gif"
        return "image"
    return "text"


def compute_queue_stats(rows: list[QueueRow], *, posts_per_day: int, min_queue_size: int) -> QueueStats:
    approved = [row for row in rows if row.is_approved]
    total_approved = len(approved)

    sources: dict[str, int] = {}
    content_types: dict[str, int] = {category: 0 for category in MIX_CATEGORIES}
    for row in approved:
        if row.source:
            sources[row.source] = sources.get(row.source, 0) + 1
        category = mix_category(row.source, row.image_url, row.video_url)
        content_types[category] += 1

    def share(count: int) -> float:
        return count / total_approved if total_approved else 0.0

    return QueueStats(
        total_approved=total_approved,
        total_pending=len(rows) - total_approved,
        days_of_content=total_approved / posts_per_day if posts_per_day > 0 else 0.0,
        needs_scanning=total_approved < min_queue_size,
        sources=sources,
        content_types=content_types,
        source_percentages={source: share(count) for source, count in sources.items()},
        content_type_percentages={category: share(count) for category, count in content_types.items()},
    )


def evaluate_source(source: str, stats: QueueStats, settings: Settings) -> ScanDecision:
    """Apply the scan rules in order; the first matching rule wins."""
    if stats.total_approved >= settings.max_queue_size:
        return ScanDecision(
            should=False,
            reason=(
                f"Queue full ({stats.total_approved} items, {stats.days_of_content:.1f} days). "
                f"Skipping {source} scan."
            ),
        )

    source_share = stats.source_percentages.get(source, 0.0)
    source_target = source_target_share(source)
    if source_share > source_target * OVER_REPRESENTED_FACTOR:
        return ScanDecision(
            should=False,
            reason=(
                f"{source} over-represented ({source_share * 100:.1f}% vs {source_target * 100:.1f}% target). "
                "Skipping scan."
            ),
        )

    content_type = primary_content_type(source)
    type_share = stats.content_type_percentages.get(content_type, 0.0)
    type_target = content_type_target_share(content_type)
    if type_share > type_target * OVER_REPRESENTED_FACTOR:
        return ScanDecision(
            should=False,
            reason=(
                f"{content_type} content sufficient ({type_share * 100:.1f}% vs {type_target * 100:.1f}% target). "
                f"Skipping {source}."
            ),
        )

    if type_share < type_target * UNDER_REPRESENTED_FACTOR:
        return ScanDecision(
            should=True,
            priority="high",
            reason=(
                f"Need more {content_type} content ({type_share * 100:.1f}% vs {type_target * 100:.1f}% target). "
                f"Prioritizing {source} scan."
            ),
        )

    if stats.total_approved < settings.min_queue_size:
        return ScanDecision(
            should=True,
            priority="high",
            reason=f"Queue below minimum ({stats.total_approved} < {settings.min_queue_size}). Need {source} content.",
        )

    return ScanDecision(
        should=True,
        priority="medium" if type_share < type_target * MEDIUM_PRIORITY_FACTOR else "low",
        reason=f"{source} within acceptable limits. Scanning recommended.",
    )


def assess_health(stats: QueueStats, settings: Settings) -> QueueHealth:
    issues: list[str] = []

    if stats.total_approved < settings.min_queue_size:
        issues.append(
            f"Queue too small: {stats.total_approved} items ({stats.days_of_content:.1f} days) "
            f"< {settings.min_queue_size} minimum"
        )
    if stats.total_approved > settings.max_queue_size:
        issues.append(
            f"Queue too large: {stats.total_approved} items ({stats.days_of_content:.1f} days) "
            f"> {settings.max_queue_size} maximum"
        )

    for category, target in CONTENT_MIX_TARGETS.items():
        share = stats.content_type_percentages.get(category, 0.0)
        if share < target * HEALTH_LOW_FACTOR:
            issues.append(f"Low {category} content: {share * 100:.1f}% (target: {target * 100:.1f}%)")
        elif share > target * HEALTH_HIGH_FACTOR:
            issues.append(f"Too much {category} content: {share * 100:.1f}% (target: {target * 100:.1f}%)")

    for source, share in sorted(stats.source_percentages.items()):
        target = source_target_share(source)
        if share > target * HEALTH_HIGH_FACTOR:
            issues.append(f"{source} over-represented: {share * 100:.1f}% (target: {target * 100:.1f}%)")

    return QueueHealth(healthy=not issues, issues=issues)


def project_forecast(
    stats: QueueStats,
    recommendations: list[ScanRecommendation],
    settings: Settings,
    today: date,
) -> list[ForecastDay]:
    """Project the approved queue forward one day at a time with no new content."""
    priority_sources = [item.source for item in recommendations if item.priority in ("high", "medium")]
    projected = stats.total_approved
    forecast: list[ForecastDay] = []
    for offset in range(FORECAST_DAYS):
        day = today + timedelta(days=offset)
        projected = max(0, projected - settings.posts_per_day)
        should_scan = projected < settings.min_queue_size
        forecast.append(
            ForecastDay(
                forecast_date=day,
                weekday=day.strftime("%A"),
                projected_size=projected,
                should_scan=should_scan,
                estimated_items=len(priority_sources) * ESTIMATED_ITEMS_PER_SOURCE if should_scan else 0,
                priority_sources=list(priority_sources) if should_scan else [],
                reason=f"Queue will be at {projected} items" if should_scan else f"Queue sufficient ({projected} items)",
            )
        )
    return forecast


def rank_recommendations(recommendations: list[ScanRecommendation]) -> list[ScanRecommendation]:
    # sorted() is stable, so equal priorities keep the configured source order.
    return sorted(recommendations, key=lambda item: PRIORITY_ORDER[item.priority])


class QueueManager:
    def __init__(self, repository: ContentRepository, settings: Settings) -> None:
        self.repository = repository
        self.settings = settings

    async def get_stats(self) -> QueueStats:
        rows = await self.repository.list_unposted_entries()
        stats = compute_queue_stats(
            rows,
            posts_per_day=self.settings.posts_per_day,
            min_queue_size=self.settings.min_queue_size,
        )
        logger.info(
            "Queue stats approved=%s pending=%s days=%.1f needs_scanning=%s",
            stats.total_approved,
            stats.total_pending,
            stats.days_of_content,
            stats.needs_scanning,
        )
        return stats

    async def should_scan(self, source: str, stats: QueueStats | None = None) -> ScanDecision:
        stats = stats or await self.get_stats()
        return evaluate_source(source, stats, self.settings)

    async def get_recommendations(self, stats: QueueStats | None = None) -> list[ScanRecommendation]:
        stats = stats or await self.get_stats()
        recommendations: list[ScanRecommendation] = []
        for source in known_sources():
            decision = evaluate_source(source, stats, self.settings)
            recommendations.append(
                ScanRecommendation(
                    source=source,
                    priority=decision.priority if decision.should else "skip",
                    reason=decision.reason,
                    content_type=SOURCE_PROFILES[source].primary_type,
                )
            )
        return rank_recommendations(recommendations)

    async def health_check(self) -> QueueHealth:
        return assess_health(await self.get_stats(), self.settings)

    async def weekly_forecast(self, today: date) -> list[ForecastDay]:
        stats = await self.get_stats()
        return project_forecast(stats, await self.get_recommendations(stats), self.settings, today)
