from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from curator.services.content import ContentAnalysis, QueueEntry
from curator.services.repository import (
    PROCESSING_PRIORITIES,
    DuplicateCluster,
    MatchRow,
    ProcessingQueueItem,
    QueueRow,
    RepositoryNotFoundError,
    SaveOutcome,
    TextRow,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StoredAnalysis:
    analysis: ContentAnalysis
    created_at: datetime


class InMemoryContentRepository:
    """Process-local repository used by tests and database-less runs."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self.clock = clock
        self.entries: dict[str, QueueEntry] = {}
        self.analyses: dict[str, StoredAnalysis] = {}
        self.processing_items: dict[str, ProcessingQueueItem] = {}
        self._hash_index: dict[str, str] = {}
        self._save_lock = asyncio.Lock()
        self._source_locks: dict[str, asyncio.Lock] = {}

    async def find_fingerprint_matches(
        self,
        *,
        exact_hash: str,
        url_hash: str | None,
        image_hash: str | None,
        video_hash: str | None,
        window: timedelta,
    ) -> list[MatchRow]:
        cutoff = self.clock() - window
        matches: list[MatchRow] = []
        for entry_id, entry in self.entries.items():
            if entry.created_at is None or entry.created_at < cutoff:
                continue
            fingerprints = entry.fingerprints
            if (
                fingerprints.exact_hash == exact_hash
                or (url_hash is not None and fingerprints.url_hash == url_hash)
                or (image_hash is not None and fingerprints.image_hash == image_hash)
                or (video_hash is not None and fingerprints.video_hash == video_hash)
            ):
                matches.append(
                    MatchRow(
                        entry_id=entry_id,
                        created_at=entry.created_at,
                        exact_hash=fingerprints.exact_hash,
                        url_hash=fingerprints.url_hash,
                        image_hash=fingerprints.image_hash,
                        video_hash=fingerprints.video_hash,
                    )
                )
        matches.sort(key=lambda row: (row.created_at, row.entry_id))
        return matches

    async def list_recent_texts(self, *, window: timedelta, min_length: int, limit: int) -> list[TextRow]:
        cutoff = self.clock() - window
        rows = [
            TextRow(entry_id=entry_id, created_at=entry.created_at, normalized_text=entry.fingerprints.normalized_text)
            for entry_id, entry in self.entries.items()
            if entry.created_at is not None
            and entry.created_at >= cutoff
            and len(entry.fingerprints.normalized_text) >= min_length
        ]
        rows.sort(key=lambda row: row.created_at, reverse=True)
        return rows[:limit]

    async def save_outcome(self, entry: QueueEntry, analysis: ContentAnalysis) -> SaveOutcome:
        async with self._save_lock:
            now = self.clock()
            existing_id = self._hash_index.get(entry.content_hash)
            if existing_id is not None:
                self.entries[existing_id].updated_at = now
                return SaveOutcome(entry_id=existing_id, inserted=False)

            entry_id = str(uuid4())
            stored = replace(
                entry,
                id=entry_id,
                created_at=entry.created_at or now,
                updated_at=now,
            )
            self.entries[entry_id] = stored
            self._hash_index[entry.content_hash] = entry_id
            self.analyses[entry_id] = StoredAnalysis(analysis=analysis, created_at=now)
            return SaveOutcome(entry_id=entry_id, inserted=True)

    async def get_entry(self, entry_id: str) -> QueueEntry:
        entry = self.entries.get(entry_id)
        if entry is None:
            raise RepositoryNotFoundError("content entry not found")
        return replace(entry)

    async def list_unposted_entries(self) -> list[QueueRow]:
        return [
            QueueRow(
                source=entry.source,
                status=entry.status.value,
                image_url=entry.image_url,
                video_url=entry.video_url,
            )
            for entry in self.entries.values()
            if not entry.is_posted
        ]

    async def list_duplicate_clusters(self, limit: int) -> list[DuplicateCluster]:
        grouped: dict[str, list[tuple[str, StoredAnalysis]]] = {}
        for entry_id, stored in self.analyses.items():
            if stored.analysis.duplicate_of:
                grouped.setdefault(stored.analysis.duplicate_of, []).append((entry_id, stored))

        clusters: list[DuplicateCluster] = []
        for original_id, members in grouped.items():
            if len(members) <= 1:
                continue
            members.sort(key=lambda member: member[1].created_at)
            clusters.append(
                DuplicateCluster(
                    original_id=original_id,
                    duplicate_ids=[entry_id for entry_id, _ in members],
                    cluster_size=len(members),
                    mean_confidence=sum(stored.analysis.confidence for _, stored in members) / len(members),
                    first_seen_at=members[0][1].created_at,
                )
            )
        clusters.sort(key=lambda cluster: (-cluster.cluster_size, -cluster.first_seen_at.timestamp()))
        return clusters[:limit]

    async def enqueue_processing(self, candidate: dict[str, Any], *, priority: str, error: str | None) -> str:
        now = self.clock()
        item_id = str(uuid4())
        self.processing_items[item_id] = ProcessingQueueItem(
            id=item_id,
            candidate=dict(candidate),
            priority=priority if priority in PROCESSING_PRIORITIES else "medium",
            status="pending",
            attempts=0,
            last_error=error,
            created_at=now,
            updated_at=now,
        )
        return item_id

    async def claim_processing_items(self, *, limit: int, max_attempts: int) -> list[ProcessingQueueItem]:
        pending = [
            item
            for item in self.processing_items.values()
            if item.status == "pending" and item.attempts < max_attempts
        ]
        pending.sort(key=lambda item: (PROCESSING_PRIORITIES.index(item.priority), item.created_at))
        claimed = pending[:limit]
        now = self.clock()
        for item in claimed:
            item.status = "processing"
            item.attempts += 1
            item.updated_at = now
        return [replace(item) for item in claimed]

    async def complete_processing_item(self, item_id: str) -> None:
        item = self.processing_items.get(item_id)
        if item is None:
            raise RepositoryNotFoundError("processing item not found")
        item.status = "completed"
        item.updated_at = self.clock()

    async def fail_processing_item(self, item_id: str, *, error: str, max_attempts: int) -> str:
        item = self.processing_items.get(item_id)
        if item is None:
            raise RepositoryNotFoundError("processing item not found")
        item.status = "failed" if item.attempts >= max_attempts else "pending"
        item.last_error = error
        item.updated_at = self.clock()
        return item.status

    async def processing_stats(self) -> dict[str, Any]:
        cutoff = self.clock() - timedelta(hours=24)
        recent = [item for item in self.processing_items.values() if item.created_at >= cutoff]
        durations = [(item.updated_at - item.created_at).total_seconds() for item in recent]
        return {
            "queue_size": len(recent),
            "pending_items": sum(1 for item in recent if item.status == "pending"),
            "processing_items": sum(1 for item in recent if item.status == "processing"),
            "failed_items": sum(1 for item in recent if item.status == "failed"),
            "average_processing_seconds": sum(durations) / len(durations) if durations else 0.0,
        }

    @asynccontextmanager
    async def source_lock(self, source: str) -> AsyncIterator[bool]:
        lock = self._source_locks.setdefault(source, asyncio.Lock())
        if lock.locked():
            yield False
            return
        async with lock:
            yield True

    async def close(self) -> None:
        return None
