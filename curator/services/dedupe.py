from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from curator.core.sources import RepostPolicy
from curator.services.content import CandidateItem, Fingerprints
from curator.services.repository import ContentRepository, DuplicateCluster, MatchRow

logger = logging.getLogger(__name__)

SignalName = Literal["exact", "url", "image", "video", "fuzzy"]
MatchType = Literal["none", "exact", "url", "image", "video", "fuzzy", "multi"]

URL_SIGNAL_CONFIDENCE = 0.95
IMAGE_SIGNAL_CONFIDENCE = 0.90
VIDEO_SIGNAL_CONFIDENCE = 0.90
FUZZY_SIMILARITY_THRESHOLD = 0.95
SINGLE_SIGNAL_THRESHOLD = 0.98
MIN_FUZZY_TEXT_LENGTH = 20
RECENT_TEXT_LIMIT = 200
SIMILAR_TEXT_THRESHOLD = 0.7


@dataclass(slots=True)
class SignalMatch:
    signal: SignalName
    entry_id: str
    created_at: datetime
    confidence: float


@dataclass(slots=True)
class DuplicateCheckResult:
    is_duplicate: bool
    original_entry_id: str | None
    match_type: MatchType
    confidence: float
    signals: list[SignalMatch] = field(default_factory=list)


@dataclass(slots=True)
class SimilarEntry:
    entry_id: str
    similarity: float
    match_type: SignalName


def jaccard_similarity(left: str, right: str) -> float:
    left_tokens = set(left.split())
    right_tokens = set(right.split())
    if not left_tokens and not right_tokens:
        return 0.0
    union = left_tokens | right_tokens
    return len(left_tokens & right_tokens) / len(union)


def evaluate_signals(signals: list[SignalMatch], *, boost_per_signal: float = 0.05) -> DuplicateCheckResult:
    """Combine weak signals into a duplicate decision.

    Two or more distinct signals are a duplicate with the best confidence
    boosted per extra signal. A single signal only counts above 0.98.
    """
    if not signals:
        return DuplicateCheckResult(is_duplicate=False, original_entry_id=None, match_type="none", confidence=0.0)

    best_by_signal: dict[str, SignalMatch] = {}
    for match in signals:
        current = best_by_signal.get(match.signal)
        if current is None or match.confidence > current.confidence:
            best_by_signal[match.signal] = match

    best = max(best_by_signal.values(), key=lambda match: match.confidence)
    original = min(signals, key=lambda match: (match.created_at, match.entry_id))

    if len(best_by_signal) >= 2:
        confidence = min(1.0, best.confidence + boost_per_signal * (len(best_by_signal) - 1))
        return DuplicateCheckResult(
            is_duplicate=True,
            original_entry_id=original.entry_id,
            match_type="multi",
            confidence=round(confidence, 4),
            signals=signals,
        )

    if best.confidence > SINGLE_SIGNAL_THRESHOLD:
        return DuplicateCheckResult(
            is_duplicate=True,
            original_entry_id=original.entry_id,
            match_type=best.signal,
            confidence=best.confidence,
            signals=signals,
        )

    return DuplicateCheckResult(
        is_duplicate=False,
        original_entry_id=None,
        match_type="none",
        confidence=best.confidence,
        signals=signals,
    )


class DuplicateDetector:
    def __init__(
        self,
        repository: ContentRepository,
        repost_policy: RepostPolicy | None = None,
        *,
        boost_per_signal: float = 0.05,
    ) -> None:
        self.repository = repository
        self.repost_policy = repost_policy or RepostPolicy()
        self.boost_per_signal = boost_per_signal

    async def check(self, candidate: CandidateItem, fingerprints: Fingerprints) -> DuplicateCheckResult:
        window = self.repost_policy.window_for(candidate.source)
        rows = await self.repository.find_fingerprint_matches(
            exact_hash=fingerprints.exact_hash,
            url_hash=fingerprints.url_hash,
            image_hash=fingerprints.image_hash,
            video_hash=fingerprints.video_hash,
            window=window,
        )

        exact_rows = [row for row in rows if row.exact_hash == fingerprints.exact_hash]
        if exact_rows:
            original = min(exact_rows, key=lambda row: (row.created_at, row.entry_id))
            return DuplicateCheckResult(
                is_duplicate=True,
                original_entry_id=original.entry_id,
                match_type="exact",
                confidence=1.0,
                signals=[SignalMatch("exact", original.entry_id, original.created_at, 1.0)],
            )

        signals = _hash_signals(rows, fingerprints)
        if len(fingerprints.normalized_text) >= MIN_FUZZY_TEXT_LENGTH:
            recent = await self.repository.list_recent_texts(
                window=window,
                min_length=MIN_FUZZY_TEXT_LENGTH,
                limit=RECENT_TEXT_LIMIT,
            )
            for row in recent:
                similarity = jaccard_similarity(fingerprints.normalized_text, row.normalized_text)
                if similarity >= FUZZY_SIMILARITY_THRESHOLD:
                    signals.append(SignalMatch("fuzzy", row.entry_id, row.created_at, round(similarity, 4)))

        result = evaluate_signals(signals, boost_per_signal=self.boost_per_signal)
        if result.is_duplicate:
            logger.info(
                "Duplicate detected source=%s match_type=%s original=%s confidence=%.2f",
                candidate.source,
                result.match_type,
                result.original_entry_id,
                result.confidence,
            )
        return result

    async def duplicate_clusters(self, limit: int = 50) -> list[DuplicateCluster]:
        return await self.repository.list_duplicate_clusters(max(1, limit))

    async def similar_entries(self, entry_id: str, limit: int = 10) -> list[SimilarEntry]:
        """Stored entries that resemble `entry_id`, best match first.

        Hash matches use the source repost window; text matches use a looser
        Jaccard threshold than duplicate detection.
        """
        entry = await self.repository.get_entry(entry_id)
        fingerprints = entry.fingerprints
        window = self.repost_policy.window_for(entry.source)

        rows = await self.repository.find_fingerprint_matches(
            exact_hash=fingerprints.exact_hash,
            url_hash=fingerprints.url_hash,
            image_hash=fingerprints.image_hash,
            video_hash=fingerprints.video_hash,
            window=window,
        )
        matches = [
            SimilarEntry(entry_id=row.entry_id, similarity=1.0, match_type="exact")
            for row in rows
            if row.exact_hash == fingerprints.exact_hash
        ]
        matches.extend(
            SimilarEntry(entry_id=signal.entry_id, similarity=signal.confidence, match_type=signal.signal)
            for signal in _hash_signals(rows, fingerprints)
        )

        if len(fingerprints.normalized_text) >= MIN_FUZZY_TEXT_LENGTH:
            recent = await self.repository.list_recent_texts(
                window=window,
                min_length=MIN_FUZZY_TEXT_LENGTH,
                limit=RECENT_TEXT_LIMIT,
            )
            for row in recent:
                similarity = jaccard_similarity(fingerprints.normalized_text, row.normalized_text)
                if similarity >= SIMILAR_TEXT_THRESHOLD:
                    matches.append(
                        SimilarEntry(entry_id=row.entry_id, similarity=round(similarity, 4), match_type="fuzzy")
                    )

        best: dict[str, SimilarEntry] = {}
        for match in matches:
            if match.entry_id == entry_id:
                continue
            current = best.get(match.entry_id)
            if current is None or match.similarity > current.similarity:
                best[match.entry_id] = match
        ranked = sorted(best.values(), key=lambda match: (-match.similarity, match.entry_id))
        return ranked[: max(1, limit)]


def _hash_signals(rows: list[MatchRow], fingerprints: Fingerprints) -> list[SignalMatch]:
    signals: list[SignalMatch] = []
    for row in rows:
        if fingerprints.url_hash and row.url_hash == fingerprints.url_hash:
            signals.append(SignalMatch("url", row.entry_id, row.created_at, URL_SIGNAL_CONFIDENCE))
        if fingerprints.image_hash and row.image_hash == fingerprints.image_hash:
            signals.append(SignalMatch("image", row.entry_id, row.created_at, IMAGE_SIGNAL_CONFIDENCE))
        if fingerprints.video_hash and row.video_hash == fingerprints.video_hash:
            signals.append(SignalMatch("video", row.entry_id, row.created_at, VIDEO_SIGNAL_CONFIDENCE))
    return signals
