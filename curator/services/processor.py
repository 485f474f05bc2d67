from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any

from opentelemetry import trace

from curator.core.config import Settings
from curator.core.sources import is_known_source, parse_json_object
from curator.core.urls import is_valid_url
from curator.services.classifier import Classifier
from curator.services.content import (
    CandidateItem,
    ContentAnalysis,
    EntryStatus,
    Fingerprints,
    ProcessingAction,
    ProcessingResult,
    QueueEntry,
)
from curator.services.dedupe import DuplicateDetector
from curator.services.hashing import fingerprint
from curator.services.repository import ContentRepository, ProcessingQueueItem, RepositoryUnavailableError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_TEXT_LENGTH = 5000
SHORT_TEXT_LENGTH = 10
MAX_AUTHOR_LENGTH = 255


@dataclass(slots=True)
class ProcessingConfig:
    auto_approval_threshold: float = 0.8
    auto_rejection_threshold: float = 0.3
    require_manual_review: bool = False
    enable_duplicate_detection: bool = True
    enable_spam_filter: bool = True
    enable_inappropriate_filter: bool = True
    enable_unrelated_filter: bool = True
    enable_required_terms_check: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> ProcessingConfig:
        return cls(
            auto_approval_threshold=settings.auto_approval_threshold,
            auto_rejection_threshold=settings.auto_rejection_threshold,
        )

    def with_overrides(self, overrides: dict[str, Any]) -> ProcessingConfig:
        return replace(self, **overrides) if overrides else self


@dataclass(slots=True)
class ContentValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BatchOutcome:
    results: list[ProcessingResult]
    succeeded: int
    failed: int


def parse_processing_overrides(raw: str | None) -> dict[str, dict[str, Any]]:
    """Parse `{"source": {"auto_approval_threshold": 0.9, ...}}`, dropping unknown or mistyped keys."""
    known = {item.name: item for item in fields(ProcessingConfig)}
    parsed: dict[str, dict[str, Any]] = {}
    for source, value in parse_json_object(raw).items():
        if not isinstance(value, dict):
            continue
        overrides: dict[str, Any] = {}
        for key, override in value.items():
            if key not in known:
                continue
            if key.endswith("_threshold"):
                if isinstance(override, (int, float)) and not isinstance(override, bool) and 0.0 <= override <= 1.0:
                    overrides[key] = float(override)
            elif isinstance(override, bool):
                overrides[key] = override
        if overrides:
            parsed[source] = overrides
    return parsed


def validate_candidate(candidate: CandidateItem) -> ContentValidation:
    errors: list[str] = []
    warnings: list[str] = []

    if not candidate.source_url:
        errors.append("Original URL is required")
    elif not is_valid_url(candidate.source_url):
        errors.append("Invalid original URL format")

    if not candidate.text and not candidate.image_url and not candidate.video_url:
        errors.append("At least one content field (text, image, or video) is required")

    if not candidate.source:
        errors.append("Source platform is required")
    elif not is_known_source(candidate.source):
        errors.append(f"Invalid source platform: {candidate.source}")

    if candidate.image_url and not is_valid_url(candidate.image_url):
        errors.append("Invalid image URL format")
    if candidate.video_url and not is_valid_url(candidate.video_url):
        errors.append("Invalid video URL format")

    if candidate.text:
        if len(candidate.text) < SHORT_TEXT_LENGTH:
            warnings.append("Content text is very short")
        if len(candidate.text) > MAX_TEXT_LENGTH:
            warnings.append("Content text is very long")
    if candidate.author and len(candidate.author) > MAX_AUTHOR_LENGTH:
        warnings.append("Author name is very long")

    return ContentValidation(is_valid=not errors, errors=errors, warnings=warnings)


def decide_action(analysis: ContentAnalysis, config: ProcessingConfig) -> ProcessingAction:
    if analysis.is_spam or analysis.is_inappropriate:
        return ProcessingAction.REJECTED
    if analysis.is_unrelated:
        return ProcessingAction.FLAGGED
    if analysis.confidence >= config.auto_approval_threshold and analysis.is_valid:
        return ProcessingAction.APPROVED
    if analysis.confidence <= config.auto_rejection_threshold:
        return ProcessingAction.REJECTED
    # The ambiguous band always goes to review, regardless of require_manual_review.
    return ProcessingAction.FLAGGED


def action_reason(action: ProcessingAction, analysis: ContentAnalysis, config: ProcessingConfig) -> str:
    if action is ProcessingAction.APPROVED:
        return "Content passed all filters and meets quality standards"
    if action is ProcessingAction.REJECTED:
        if analysis.is_spam:
            return "Content detected as spam"
        if analysis.is_inappropriate:
            return "Content contains inappropriate material"
        if analysis.confidence <= config.auto_rejection_threshold:
            return "Content has low confidence score"
        return "Content failed quality checks"
    if action is ProcessingAction.FLAGGED:
        if analysis.is_unrelated:
            return "Content may be unrelated to hotdogs"
        if analysis.confidence < config.auto_approval_threshold:
            return "Content requires manual review due to low confidence"
        return "Content flagged for manual review"
    return "Content identified as duplicate"


class ContentProcessor:
    def __init__(
        self,
        repository: ContentRepository,
        classifier: Classifier,
        detector: DuplicateDetector,
        *,
        config: ProcessingConfig | None = None,
        source_overrides: dict[str, dict[str, Any]] | None = None,
        batch_size: int = 50,
        concurrency: int = 5,
        max_attempts: int = 3,
    ) -> None:
        self.repository = repository
        self.classifier = classifier
        self.detector = detector
        self.config = config or ProcessingConfig()
        self.source_overrides = source_overrides or {}
        self.batch_size = max(1, batch_size)
        self.concurrency = max(1, concurrency)
        self.max_attempts = max(1, max_attempts)

    def config_for(self, source: str) -> ProcessingConfig:
        return self.config.with_overrides(self.source_overrides.get(source, {}))

    async def process(
        self,
        candidate: CandidateItem,
        config: ProcessingConfig | None = None,
        *,
        enqueue_failures: bool = True,
    ) -> ProcessingResult:
        config = config or self.config_for(candidate.source)
        with tracer.start_as_current_span("processor.process") as span:
            span.set_attribute("candidate.source", candidate.source)

            validation = validate_candidate(candidate)
            if not validation.is_valid:
                span.set_attribute("processing.action", ProcessingAction.REJECTED.value)
                return ProcessingResult(
                    action=ProcessingAction.REJECTED,
                    analysis=ContentAnalysis(processing_notes=list(validation.errors)),
                    reason=f"Validation failed: {', '.join(validation.errors)}",
                    source=candidate.source,
                )

            try:
                result = await self._evaluate(candidate, config, validation)
            except RepositoryUnavailableError:
                raise
            except Exception as exc:
                logger.exception("Content processing failed source=%s url=%s", candidate.source, candidate.source_url)
                if enqueue_failures:
                    await self._enqueue_retry(candidate, str(exc))
                result = ProcessingResult(
                    action=ProcessingAction.REJECTED,
                    analysis=ContentAnalysis(),
                    reason=f"Processing failed: {exc}",
                    source=candidate.source,
                    error=str(exc),
                )

            span.set_attribute("processing.action", result.action.value)
            return result

    async def _evaluate(
        self,
        candidate: CandidateItem,
        config: ProcessingConfig,
        validation: ContentValidation,
    ) -> ProcessingResult:
        fingerprints = fingerprint(candidate)

        if config.enable_duplicate_detection:
            check = await self.detector.check(candidate, fingerprints)
            if check.is_duplicate and check.original_entry_id:
                analysis = ContentAnalysis(
                    confidence=check.confidence,
                    duplicate_of=check.original_entry_id,
                    processing_notes=[f"duplicate match_type={check.match_type}"],
                )
                outcome = await self.repository.save_outcome(
                    self._entry(candidate, fingerprints, EntryStatus.DUPLICATE),
                    analysis,
                )
                return ProcessingResult(
                    action=ProcessingAction.DUPLICATE,
                    analysis=analysis,
                    reason=action_reason(ProcessingAction.DUPLICATE, analysis, config),
                    source=candidate.source,
                    entry_id=outcome.entry_id,
                    duplicate_of=check.original_entry_id,
                )

        media_refs = [url for url in (candidate.image_url, candidate.video_url) if url]
        verdict = await self.classifier.classify(fingerprints.normalized_text, media_refs, dict(candidate.metadata))

        analysis = ContentAnalysis(
            is_spam=verdict.is_spam and config.enable_spam_filter,
            is_inappropriate=verdict.is_inappropriate and config.enable_inappropriate_filter,
            is_unrelated=verdict.is_unrelated and config.enable_unrelated_filter,
            is_valid=verdict.is_valid or not config.enable_required_terms_check,
            confidence=verdict.confidence,
            flagged_patterns=list(verdict.flagged_patterns),
            processing_notes=[*verdict.notes, *validation.warnings],
        )
        action = decide_action(analysis, config)
        reason = action_reason(action, analysis, config)
        if action is ProcessingAction.FLAGGED:
            analysis.is_flagged = True
            analysis.flagged_reason = reason

        outcome = await self.repository.save_outcome(self._entry(candidate, fingerprints, action.status), analysis)
        if not outcome.inserted:
            # Same content hash already stored: resolve to the existing entry.
            duplicate_analysis = ContentAnalysis(confidence=1.0, duplicate_of=outcome.entry_id)
            return ProcessingResult(
                action=ProcessingAction.DUPLICATE,
                analysis=duplicate_analysis,
                reason=action_reason(ProcessingAction.DUPLICATE, duplicate_analysis, config),
                source=candidate.source,
                entry_id=outcome.entry_id,
                duplicate_of=outcome.entry_id,
            )

        logger.info(
            "Processed candidate source=%s action=%s confidence=%.2f entry=%s",
            candidate.source,
            action.value,
            analysis.confidence,
            outcome.entry_id,
        )
        return ProcessingResult(
            action=action,
            analysis=analysis,
            reason=reason,
            source=candidate.source,
            entry_id=outcome.entry_id,
        )

    async def process_batch(
        self,
        candidates: list[CandidateItem],
        config: ProcessingConfig | None = None,
    ) -> BatchOutcome:
        results: list[ProcessingResult] = []
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(candidate: CandidateItem) -> ProcessingResult:
            async with semaphore:
                return await self.process(candidate, config)

        for start in range(0, len(candidates), self.batch_size):
            group = candidates[start : start + self.batch_size]
            outcomes = await asyncio.gather(*(run_one(candidate) for candidate in group), return_exceptions=True)

            group_results: list[ProcessingResult] = []
            for candidate, outcome in zip(group, outcomes):
                if isinstance(outcome, RepositoryUnavailableError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    group_results.append(
                        ProcessingResult(
                            action=ProcessingAction.REJECTED,
                            analysis=ContentAnalysis(),
                            reason=f"Batch processing failed: {outcome}",
                            source=candidate.source,
                            error=str(outcome),
                        )
                    )
                else:
                    group_results.append(outcome)

            succeeded = sum(1 for result in group_results if result.success)
            logger.info(
                "Processed batch %s: %s succeeded, %s failed",
                start // self.batch_size + 1,
                succeeded,
                len(group_results) - succeeded,
            )
            results.extend(group_results)

        succeeded = sum(1 for result in results if result.success)
        return BatchOutcome(results=results, succeeded=succeeded, failed=len(results) - succeeded)

    async def process_queue(self, max_items: int = 100) -> list[ProcessingResult]:
        items = await self.repository.claim_processing_items(limit=max_items, max_attempts=self.max_attempts)
        results: list[ProcessingResult] = []
        for item in items:
            results.append(await self._process_queue_item(item))
        if items:
            logger.info("Processed %s queued items", len(items))
        return results

    async def _process_queue_item(self, item: ProcessingQueueItem) -> ProcessingResult:
        candidate = CandidateItem.from_payload(item.candidate)
        result = await self.process(candidate, enqueue_failures=False)
        if result.success:
            await self.repository.complete_processing_item(item.id)
        else:
            status = await self.repository.fail_processing_item(
                item.id,
                error=result.error or result.reason,
                max_attempts=self.max_attempts,
            )
            if status == "failed":
                logger.warning("Queued item %s failed permanently after %s attempts", item.id, item.attempts)
        return result

    async def _enqueue_retry(self, candidate: CandidateItem, error: str) -> None:
        # The failure is already reported on the result; a lost retry is only logged.
        try:
            await self.repository.enqueue_processing(candidate.to_payload(), priority="medium", error=error)
        except Exception:
            logger.exception("Could not enqueue candidate for retry source=%s", candidate.source)

    @staticmethod
    def _entry(candidate: CandidateItem, fingerprints: Fingerprints, status: EntryStatus) -> QueueEntry:
        return QueueEntry(
            id=None,
            source=candidate.source,
            text=candidate.text,
            media=candidate.media,
            source_url=candidate.source_url,
            author=candidate.author,
            fingerprints=fingerprints,
            status=status,
        )
