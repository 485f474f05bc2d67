from __future__ import annotations

from functools import lru_cache

from curator.core.config import get_settings
from curator.core.sources import RepostPolicy, parse_repost_windows
from curator.services.classifier import ClassifierError, HttpClassifier
from curator.services.connectors import build_connectors, build_queries
from curator.services.dedupe import DuplicateDetector
from curator.services.orchestrator import ScanOrchestrator
from curator.services.processor import ContentProcessor, ProcessingConfig, parse_processing_overrides
from curator.services.queue_manager import QueueManager
from curator.services.repository import get_repository


@lru_cache
def get_queue_manager() -> QueueManager:
    return QueueManager(get_repository(), get_settings())


@lru_cache
def get_duplicate_detector() -> DuplicateDetector:
    settings = get_settings()
    return DuplicateDetector(
        get_repository(),
        RepostPolicy(
            default_days=settings.default_repost_window_days,
            overrides=parse_repost_windows(settings.repost_windows_json),
        ),
        boost_per_signal=settings.dedupe_boost_per_signal,
    )


@lru_cache
def get_content_processor() -> ContentProcessor:
    settings = get_settings()
    if not settings.classifier_url:
        raise ClassifierError("CURATOR_CLASSIFIER_URL is required")
    return ContentProcessor(
        get_repository(),
        HttpClassifier(settings.classifier_url, timeout_seconds=settings.classifier_timeout_seconds),
        get_duplicate_detector(),
        config=ProcessingConfig.from_settings(settings),
        source_overrides=parse_processing_overrides(settings.processing_overrides_json),
        batch_size=settings.processing_batch_size,
        concurrency=settings.processing_concurrency,
        max_attempts=settings.processing_max_attempts,
    )


@lru_cache
def get_scan_orchestrator() -> ScanOrchestrator:
    settings = get_settings()
    return ScanOrchestrator(
        get_queue_manager(),
        get_content_processor(),
        build_connectors(settings),
        build_queries(settings),
        settings,
        repository=get_repository(),
    )
