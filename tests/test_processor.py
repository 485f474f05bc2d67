from __future__ import annotations

import asyncio
from typing import Any

import pytest

from curator.services.classifier import ClassifierError, ClassifierVerdict
from curator.services.content import CandidateItem, ContentAnalysis, EntryStatus, Image, ProcessingAction, QueueEntry
from curator.services.dedupe import DuplicateDetector
from curator.services.processor import (
    ContentProcessor,
    ProcessingConfig,
    decide_action,
    parse_processing_overrides,
    validate_candidate,
)
from curator.services.repository import MatchRow, RepositoryUnavailableError, SaveOutcome
from curator.services.store import InMemoryContentRepository


class FakeClassifier:
    def __init__(self, confidence: float = 0.9, **flags: bool) -> None:
        self.confidence = confidence
        self.flags = flags
        self.calls: list[str] = []
        self.failures_remaining = 0

    async def classify(self, text: str, media_refs: list[str], metadata: dict[str, Any]) -> ClassifierVerdict:
        self.calls.append(text)
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise ClassifierError("classifier timed out")
        return ClassifierVerdict(
            is_valid=self.flags.get("is_valid", True),
            is_spam=self.flags.get("is_spam", False),
            is_inappropriate=self.flags.get("is_inappropriate", False),
            is_unrelated=self.flags.get("is_unrelated", False),
            confidence=self.confidence,
        )


class UnavailableRepository(InMemoryContentRepository):
    async def save_outcome(self, entry: QueueEntry, analysis: ContentAnalysis) -> SaveOutcome:
        raise RepositoryUnavailableError("database unavailable")


def test_high_confidence_valid_content_is_approved() -> None:
    store = InMemoryContentRepository()
    processor = _processor(store, FakeClassifier(confidence=0.85))

    result = asyncio.run(processor.process(_candidate()))

    assert result.action is ProcessingAction.APPROVED
    assert result.reason == "Content passed all filters and meets quality standards"
    assert store.entries[result.entry_id].status is EntryStatus.APPROVED


def test_ambiguous_confidence_is_flagged_even_without_manual_review() -> None:
    store = InMemoryContentRepository()
    processor = _processor(store, FakeClassifier(confidence=0.5))

    result = asyncio.run(processor.process(_candidate(), ProcessingConfig(require_manual_review=False)))

    assert result.action is ProcessingAction.FLAGGED
    assert result.analysis.is_flagged is True
    assert result.analysis.flagged_reason == "Content requires manual review due to low confidence"


def test_spam_is_rejected_unless_filter_disabled() -> None:
    store = InMemoryContentRepository()
    processor = _processor(store, FakeClassifier(confidence=0.95, is_spam=True))

    rejected = asyncio.run(processor.process(_candidate()))
    approved = asyncio.run(
        processor.process(
            _candidate(
                url="https://reddit.com/r/hotdogs/2",
                text="Ballpark frank grilled over charcoal at the stadium",
                image_url="https://i.redd.it/ballpark.jpg",
            ),
            ProcessingConfig(enable_spam_filter=False),
        )
    )

    assert rejected.action is ProcessingAction.REJECTED
    assert rejected.reason == "Content detected as spam"
    assert approved.action is ProcessingAction.APPROVED


def test_validation_failure_rejects_without_persisting() -> None:
    store = InMemoryContentRepository()
    classifier = FakeClassifier()
    processor = _processor(store, classifier)

    result = asyncio.run(processor.process(CandidateItem(source="myspace", text="hot dog", source_url="nope")))

    assert result.action is ProcessingAction.REJECTED
    assert result.reason.startswith("Validation failed:")
    assert "Invalid original URL format" in result.reason
    assert "Invalid source platform: myspace" in result.reason
    assert store.entries == {}
    assert classifier.calls == []


def test_validate_candidate_checks_media_urls() -> None:
    candidate = CandidateItem(source="reddit", text=None, source_url="https://reddit.com/1", media=Image("ftp://x/a.jpg"))
    validation = validate_candidate(candidate)
    assert validation.is_valid is False
    assert validation.errors == ["Invalid image URL format"]


def test_repeat_candidate_is_stored_as_duplicate() -> None:
    store = InMemoryContentRepository()
    processor = _processor(store, FakeClassifier())

    first = asyncio.run(processor.process(_candidate()))
    second = asyncio.run(processor.process(_candidate()))

    assert second.action is ProcessingAction.DUPLICATE
    assert second.duplicate_of == first.entry_id
    assert second.reason == "Content identified as duplicate"
    assert second.analysis.duplicate_of == first.entry_id


def test_hash_conflict_without_detection_resolves_to_duplicate() -> None:
    store = InMemoryContentRepository()
    processor = _processor(store, FakeClassifier())
    config = ProcessingConfig(enable_duplicate_detection=False)

    first = asyncio.run(processor.process(_candidate(), config))
    second = asyncio.run(processor.process(_candidate(), config))

    assert second.action is ProcessingAction.DUPLICATE
    assert second.entry_id == first.entry_id
    assert len(store.entries) == 1


def test_classifier_failure_is_rejected_and_enqueued_for_retry() -> None:
    store = InMemoryContentRepository()
    classifier = FakeClassifier()
    classifier.failures_remaining = 1
    processor = _processor(store, classifier)

    result = asyncio.run(processor.process(_candidate()))

    assert result.action is ProcessingAction.REJECTED
    assert result.error == "classifier timed out"
    assert result.success is False
    [item] = store.processing_items.values()
    assert item.status == "pending"
    assert item.candidate["source_url"] == "https://reddit.com/r/hotdogs/1"

    retried = asyncio.run(processor.process_queue(max_items=10))

    assert [outcome.action for outcome in retried] == [ProcessingAction.APPROVED]
    assert item.status == "completed"


def test_queue_item_fails_permanently_after_max_attempts() -> None:
    store = InMemoryContentRepository()
    classifier = FakeClassifier()
    classifier.failures_remaining = 10
    processor = _processor(store, classifier)

    asyncio.run(processor.process(_candidate()))
    for _ in range(4):
        asyncio.run(processor.process_queue(max_items=10))

    [item] = store.processing_items.values()
    assert item.status == "failed"
    assert item.attempts == 3
    stats = asyncio.run(store.processing_stats())
    assert stats["failed_items"] == 1
    assert stats["queue_size"] == 1


def test_processing_queue_claims_high_priority_first() -> None:
    store = InMemoryContentRepository()
    asyncio.run(store.enqueue_processing({"source": "reddit"}, priority="low", error=None))
    high_id = asyncio.run(store.enqueue_processing({"source": "giphy"}, priority="high", error=None))

    claimed = asyncio.run(store.claim_processing_items(limit=1, max_attempts=3))

    assert [item.id for item in claimed] == [high_id]


def test_batch_limits_concurrency_and_attempts_every_item() -> None:
    class SlowClassifier(FakeClassifier):
        def __init__(self) -> None:
            super().__init__()
            self.active = 0
            self.peak = 0

        async def classify(self, text: str, media_refs: list[str], metadata: dict[str, Any]) -> ClassifierVerdict:
            self.active += 1
            self.peak = max(self.peak, self.active)
            await asyncio.sleep(0)
            self.active -= 1
            return await super().classify(text, media_refs, metadata)

    store = InMemoryContentRepository()
    classifier = SlowClassifier()
    processor = _processor(store, classifier, batch_size=4, concurrency=2)
    candidates = [
        _candidate(
            url=f"https://reddit.com/r/hotdogs/{index}",
            text=f"Hot dog number {index} with mustard relish onions and peppers",
            image_url=f"https://i.redd.it/dog-{index}.jpg",
        )
        for index in range(7)
    ]

    outcome = asyncio.run(processor.process_batch(candidates))

    assert len(outcome.results) == 7
    assert outcome.succeeded == 7
    assert classifier.peak <= 2
    assert len(classifier.calls) == 7


def test_batch_propagates_datastore_unavailability() -> None:
    processor = _processor(UnavailableRepository(), FakeClassifier())

    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(processor.process_batch([_candidate()]))


def test_failed_retry_enqueue_still_returns_rejected_result() -> None:
    class DroppedConnectionRepository(InMemoryContentRepository):
        async def find_fingerprint_matches(self, **kwargs: Any) -> list[MatchRow]:
            raise ConnectionResetError("connection reset by peer")

        async def enqueue_processing(self, candidate: dict[str, Any], *, priority: str, error: str | None) -> str:
            raise ConnectionResetError("connection reset by peer")

    store = DroppedConnectionRepository()
    processor = _processor(store, FakeClassifier())

    result = asyncio.run(processor.process(_candidate()))

    assert result.action is ProcessingAction.REJECTED
    assert result.error == "connection reset by peer"
    assert store.processing_items == {}


def test_decide_action_rules() -> None:
    config = ProcessingConfig()
    assert decide_action(ContentAnalysis(is_inappropriate=True, is_valid=True, confidence=1.0), config) is (
        ProcessingAction.REJECTED
    )
    assert decide_action(ContentAnalysis(is_unrelated=True, is_valid=True, confidence=0.9), config) is (
        ProcessingAction.FLAGGED
    )
    assert decide_action(ContentAnalysis(is_valid=False, confidence=0.9), config) is ProcessingAction.FLAGGED
    assert decide_action(ContentAnalysis(is_valid=True, confidence=0.3), config) is ProcessingAction.REJECTED


def test_source_overrides_change_thresholds() -> None:
    overrides = parse_processing_overrides(
        '{"reddit": {"auto_approval_threshold": 0.95, "enable_spam_filter": false, "bogus": 1},'
        ' "giphy": {"auto_rejection_threshold": 7}, "lemmy": "x"}'
    )
    assert overrides == {"reddit": {"auto_approval_threshold": 0.95, "enable_spam_filter": False}}

    store = InMemoryContentRepository()
    processor = _processor(store, FakeClassifier(confidence=0.9), source_overrides=overrides)

    result = asyncio.run(processor.process(_candidate()))

    assert result.action is ProcessingAction.FLAGGED


def _candidate(
    *,
    url: str = "https://reddit.com/r/hotdogs/1",
    text: str = "Homemade Chicago dog with sport peppers and celery salt",
    image_url: str = "https://i.redd.it/chicago-dog.jpg",
) -> CandidateItem:
    return CandidateItem(
        source="reddit",
        text=text,
        source_url=url,
        media=Image(image_url),
    )


def _processor(
    store: InMemoryContentRepository,
    classifier: FakeClassifier,
    **kwargs: Any,
) -> ContentProcessor:
    return ContentProcessor(store, classifier, DuplicateDetector(store), **kwargs)
