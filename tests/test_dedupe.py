from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from curator.core.sources import RepostPolicy
from curator.services.content import CandidateItem, ContentAnalysis, EntryStatus, Image, QueueEntry, TextOnly
from curator.services.dedupe import DuplicateDetector, SignalMatch, evaluate_signals, jaccard_similarity
from curator.services.hashing import fingerprint
from curator.services.repository import RepositoryNotFoundError
from curator.services.store import InMemoryContentRepository

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_jaccard_similarity_over_whitespace_tokens() -> None:
    assert jaccard_similarity("hot dog stand", "hot dog stand") == 1.0
    assert jaccard_similarity("hot dog", "hot dog bun") == 2 / 3
    assert jaccard_similarity("", "") == 0.0


def test_single_weak_signal_below_threshold_is_not_duplicate() -> None:
    result = evaluate_signals([SignalMatch("image", "entry-1", NOW, 0.90)])
    assert result.is_duplicate is False
    assert result.original_entry_id is None


def test_single_signal_above_threshold_is_duplicate() -> None:
    result = evaluate_signals([SignalMatch("fuzzy", "entry-1", NOW, 0.99)])
    assert result.is_duplicate is True
    assert result.match_type == "fuzzy"
    assert result.original_entry_id == "entry-1"


def test_multiple_signals_boost_confidence_and_pick_earliest_original() -> None:
    result = evaluate_signals(
        [
            SignalMatch("url", "entry-late", NOW, 0.95),
            SignalMatch("image", "entry-early", NOW - timedelta(days=2), 0.90),
        ]
    )
    assert result.is_duplicate is True
    assert result.match_type == "multi"
    assert result.confidence == 1.0
    assert result.original_entry_id == "entry-early"


def test_boost_per_signal_is_configurable() -> None:
    signals = [SignalMatch("image", "a", NOW, 0.90), SignalMatch("video", "a", NOW, 0.90)]
    assert evaluate_signals(signals, boost_per_signal=0.02).confidence == 0.92


def test_exact_match_inside_window_is_duplicate() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    candidate = _candidate("bluesky", "Watching the hot dog eating contest live tonight")
    original_id = _seed(store, candidate, created_at=NOW - timedelta(hours=1))

    result = asyncio.run(DuplicateDetector(store).check(candidate, fingerprint(candidate)))

    assert result.is_duplicate is True
    assert result.match_type == "exact"
    assert result.confidence == 1.0
    assert result.original_entry_id == original_id


def test_exact_match_outside_window_falls_through_to_weak_signals() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    candidate = _candidate("bluesky", "Watching the hot dog eating contest live tonight")
    _seed(store, candidate, created_at=NOW - timedelta(days=8))

    result = asyncio.run(DuplicateDetector(store, RepostPolicy()).check(candidate, fingerprint(candidate)))

    assert result.is_duplicate is False
    assert result.match_type == "none"


def test_shared_image_alone_is_not_duplicate() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    existing = CandidateItem(
        source="reddit",
        text="Chicago style with all the toppings",
        source_url="https://reddit.com/r/hotdogs/comments/1",
        media=Image("https://i.redd.it/dog.jpg"),
    )
    _seed(store, existing, created_at=NOW - timedelta(days=1))
    incoming = CandidateItem(
        source="reddit",
        text="Completely different caption here",
        source_url="https://reddit.com/r/food/comments/2",
        media=Image("https://i.redd.it/dog.jpg"),
    )

    result = asyncio.run(DuplicateDetector(store).check(incoming, fingerprint(incoming)))

    assert result.is_duplicate is False
    assert [signal.signal for signal in result.signals] == ["image"]


def test_url_and_fuzzy_text_signals_combine() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    existing = _candidate("lemmy", "Best chili dog in town with mustard and onions!", url="https://lemmy.ml/post/9")
    original_id = _seed(store, existing, created_at=NOW - timedelta(days=1))
    incoming = _candidate(
        "lemmy",
        "best chili dog in town with mustard and onions",
        url="https://lemmy.ml/post/9?utm_source=share",
    )

    result = asyncio.run(DuplicateDetector(store).check(incoming, fingerprint(incoming)))

    assert result.is_duplicate is True
    assert result.match_type == "multi"
    assert result.original_entry_id == original_id
    assert result.confidence >= max(signal.confidence for signal in result.signals)


def test_short_text_is_exempt_from_fuzzy_matching() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    _seed(store, _candidate("lemmy", "hot dog!", url="https://lemmy.ml/post/1"), created_at=NOW - timedelta(hours=2))
    incoming = _candidate("lemmy", "Hot dog", url="https://lemmy.ml/post/2")

    result = asyncio.run(DuplicateDetector(store).check(incoming, fingerprint(incoming)))

    assert result.is_duplicate is False
    assert result.signals == []


def _candidate(source: str, text: str, *, url: str = "https://bsky.app/profile/x/post/1") -> CandidateItem:
    return CandidateItem(source=source, text=text, source_url=url, media=TextOnly())


def _seed(store: InMemoryContentRepository, candidate: CandidateItem, *, created_at: datetime) -> str:
    entry = QueueEntry(
        id=None,
        source=candidate.source,
        text=candidate.text,
        media=candidate.media,
        source_url=candidate.source_url,
        author=None,
        fingerprints=fingerprint(candidate),
        status=EntryStatus.APPROVED,
        created_at=created_at,
    )
    outcome = asyncio.run(store.save_outcome(entry, ContentAnalysis(is_valid=True, confidence=0.9)))
    return outcome.entry_id


def test_duplicate_clusters_require_more_than_one_duplicate() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    for index, original in enumerate(["orig-a", "orig-a", "orig-a", "orig-b"]):
        candidate = _candidate("reddit", f"repost number {index}", url=f"https://reddit.com/r/hotdogs/{index}")
        entry = QueueEntry(
            id=None,
            source="reddit",
            text=candidate.text,
            media=candidate.media,
            source_url=candidate.source_url,
            author=None,
            fingerprints=fingerprint(candidate),
            status=EntryStatus.DUPLICATE,
        )
        asyncio.run(store.save_outcome(entry, ContentAnalysis(duplicate_of=original, confidence=0.9 + index * 0.02)))

    clusters = asyncio.run(DuplicateDetector(store).duplicate_clusters(limit=10))

    assert [cluster.original_id for cluster in clusters] == ["orig-a"]
    assert clusters[0].cluster_size == 3
    assert round(clusters[0].mean_confidence, 2) == 0.92


def test_similar_entries_rank_hash_and_text_matches() -> None:
    store = InMemoryContentRepository(clock=lambda: NOW)
    target_id = _seed(
        store,
        _candidate("lemmy", "Best chili dog in town with mustard and onions and relish", url="https://lemmy.ml/post/1"),
        created_at=NOW - timedelta(hours=3),
    )
    reworded_id = _seed(
        store,
        _candidate("lemmy", "best chili dog in town with mustard and onions", url="https://lemmy.ml/post/2"),
        created_at=NOW - timedelta(hours=2),
    )
    same_link_id = _seed(
        store,
        _candidate("lemmy", "Totally unrelated caption about ballpark franks", url="https://lemmy.ml/post/1?utm_source=x"),
        created_at=NOW - timedelta(hours=1),
    )
    _seed(
        store,
        _candidate("lemmy", "Grilled bratwurst at the county fair this weekend", url="https://lemmy.ml/post/3"),
        created_at=NOW - timedelta(hours=1),
    )

    similar = asyncio.run(DuplicateDetector(store).similar_entries(target_id))

    assert [(item.entry_id, item.match_type) for item in similar] == [(same_link_id, "url"), (reworded_id, "fuzzy")]
    assert similar[0].similarity == 0.95
    assert similar[1].similarity == 0.9

    limited = asyncio.run(DuplicateDetector(store).similar_entries(target_id, limit=1))
    assert [item.entry_id for item in limited] == [same_link_id]


def test_similar_entries_for_unknown_entry_raises_not_found() -> None:
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(DuplicateDetector(InMemoryContentRepository()).similar_entries("missing"))
