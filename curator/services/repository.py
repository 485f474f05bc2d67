from __future__ import annotations

import asyncio
import functools
import json
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Protocol, TypeVar

import asyncpg  # type: ignore[import-untyped]

from curator.core.config import get_settings
from curator.services.content import (
    ContentAnalysis,
    EntryStatus,
    Fingerprints,
    QueueEntry,
    media_from_urls,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write collides with a concurrent change."""


PROCESSING_PRIORITIES = ("high", "medium", "low")

_Method = TypeVar("_Method", bound=Callable[..., Awaitable[Any]])


def _translate_errors(method: _Method) -> _Method:
    """Re-raise driver and socket failures as repository errors."""

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await method(*args, **kwargs)
        except RepositoryError:
            raise
        except asyncpg.exceptions.SerializationError as exc:
            raise RepositoryConflictError("concurrent write on content_queue") from exc
        except (
            OSError,
            asyncio.TimeoutError,
            asyncpg.exceptions.InterfaceError,
            asyncpg.exceptions.PostgresConnectionError,
        ) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        except asyncpg.exceptions.PostgresError as exc:
            raise RepositoryError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


@dataclass(slots=True)
class MatchRow:
    entry_id: str
    created_at: datetime
    exact_hash: str
    url_hash: str | None
    image_hash: str | None
    video_hash: str | None


@dataclass(slots=True)
class TextRow:
    entry_id: str
    created_at: datetime
    normalized_text: str


@dataclass(slots=True)
class QueueRow:
    source: str
    status: str
    image_url: str | None
    video_url: str | None

    @property
    def is_approved(self) -> bool:
        return self.status == EntryStatus.APPROVED.value


@dataclass(slots=True)
class SaveOutcome:
    entry_id: str
    inserted: bool


@dataclass(slots=True)
class DuplicateCluster:
    original_id: str
    duplicate_ids: list[str]
    cluster_size: int
    mean_confidence: float
    first_seen_at: datetime


@dataclass(slots=True)
class ProcessingQueueItem:
    id: str
    candidate: dict[str, Any]
    priority: str
    status: str
    attempts: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime


class ContentRepository(Protocol):
    async def find_fingerprint_matches(
        self,
        *,
        exact_hash: str,
        url_hash: str | None,
        image_hash: str | None,
        video_hash: str | None,
        window: timedelta,
    ) -> list[MatchRow]: ...

    async def list_recent_texts(self, *, window: timedelta, min_length: int, limit: int) -> list[TextRow]: ...

    async def save_outcome(self, entry: QueueEntry, analysis: ContentAnalysis) -> SaveOutcome: ...

    async def get_entry(self, entry_id: str) -> QueueEntry: ...

    async def list_unposted_entries(self) -> list[QueueRow]: ...

    async def list_duplicate_clusters(self, limit: int) -> list[DuplicateCluster]: ...

    async def enqueue_processing(self, candidate: dict[str, Any], *, priority: str, error: str | None) -> str: ...

    async def claim_processing_items(self, *, limit: int, max_attempts: int) -> list[ProcessingQueueItem]: ...

    async def complete_processing_item(self, item_id: str) -> None: ...

    async def fail_processing_item(self, item_id: str, *, error: str, max_attempts: int) -> str: ...

    async def processing_stats(self) -> dict[str, Any]: ...

    def source_lock(self, source: str) -> Any: ...

    async def close(self) -> None: ...


class PostgresContentRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @_translate_errors
    async def find_fingerprint_matches(
        self,
        *,
        exact_hash: str,
        url_hash: str | None,
        image_hash: str | None,
        video_hash: str | None,
        window: timedelta,
    ) -> list[MatchRow]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as entry_id,
              created_at,
              content_hash,
              url_hash,
              image_hash,
              video_hash
            from content_queue
            where created_at >= now() - $5::interval
              and (
                content_hash = $1
                or ($2::text is not null and url_hash = $2)
                or ($3::text is not null and image_hash = $3)
                or ($4::text is not null and video_hash = $4)
              )
            order by created_at asc, id asc
            limit 100
            """,
            exact_hash,
            url_hash,
            image_hash,
            video_hash,
            window,
        )
        return [
            MatchRow(
                entry_id=row["entry_id"],
                created_at=row["created_at"],
                exact_hash=row["content_hash"],
                url_hash=row["url_hash"],
                image_hash=row["image_hash"],
                video_hash=row["video_hash"],
            )
            for row in rows
        ]

    @_translate_errors
    async def list_recent_texts(self, *, window: timedelta, min_length: int, limit: int) -> list[TextRow]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as entry_id, created_at, normalized_text
            from content_queue
            where created_at >= now() - $1::interval
              and normalized_text is not null
              and length(normalized_text) >= $2
            order by created_at desc
            limit $3
            """,
            window,
            min_length,
            limit,
        )
        return [
            TextRow(entry_id=row["entry_id"], created_at=row["created_at"], normalized_text=row["normalized_text"])
            for row in rows
        ]

    @_translate_errors
    async def save_outcome(self, entry: QueueEntry, analysis: ContentAnalysis) -> SaveOutcome:
        pool = await self._get_pool()
        fingerprints = entry.fingerprints
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    insert into content_queue (
                      source,
                      content_text,
                      content_image_url,
                      content_video_url,
                      content_type,
                      original_url,
                      original_author,
                      content_hash,
                      fuzzy_hash,
                      url_hash,
                      image_hash,
                      video_hash,
                      normalized_text,
                      status,
                      is_approved,
                      is_posted
                    )
                    values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, false)
                    on conflict (content_hash) do update set updated_at = now()
                    returning id::text as id, (xmax = 0) as inserted
                    """,
                    entry.source,
                    entry.text,
                    entry.image_url,
                    entry.video_url,
                    entry.content_type.value,
                    entry.source_url,
                    entry.author,
                    fingerprints.exact_hash,
                    fingerprints.fuzzy_hash,
                    fingerprints.url_hash,
                    fingerprints.image_hash,
                    fingerprints.video_hash,
                    fingerprints.normalized_text,
                    entry.status.value,
                    entry.is_approved,
                )
                entry_id = row["id"]
                inserted = bool(row["inserted"])
                if inserted:
                    await self._write_analysis(conn=conn, entry_id=entry_id, analysis=analysis)
        return SaveOutcome(entry_id=entry_id, inserted=inserted)

    @_translate_errors
    async def get_entry(self, entry_id: str) -> QueueEntry:
        try:
            key = uuid.UUID(entry_id)
        except ValueError as exc:
            raise RepositoryNotFoundError("content entry not found") from exc

        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              id::text as id,
              source,
              content_text,
              content_image_url,
              content_video_url,
              original_url,
              original_author,
              content_hash,
              fuzzy_hash,
              url_hash,
              image_hash,
              video_hash,
              coalesce(normalized_text, '') as normalized_text,
              status,
              is_posted,
              created_at,
              updated_at
            from content_queue
            where id = $1
            """,
            key,
        )
        if row is None:
            raise RepositoryNotFoundError("content entry not found")
        return QueueEntry(
            id=row["id"],
            source=row["source"],
            text=row["content_text"],
            media=media_from_urls(row["content_image_url"], row["content_video_url"]),
            source_url=row["original_url"],
            author=row["original_author"],
            fingerprints=Fingerprints(
                exact_hash=row["content_hash"],
                fuzzy_hash=row["fuzzy_hash"],
                url_hash=row["url_hash"],
                image_hash=row["image_hash"],
                video_hash=row["video_hash"],
                normalized_text=row["normalized_text"],
            ),
            status=EntryStatus(row["status"]),
            is_posted=bool(row["is_posted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _write_analysis(self, *, conn: asyncpg.Connection, entry_id: str, analysis: ContentAnalysis) -> None:
        await conn.execute(
            """
            insert into content_analysis (
              content_queue_id,
              is_spam,
              is_inappropriate,
              is_unrelated,
              is_valid,
              confidence_score,
              flagged_patterns,
              processing_notes,
              duplicate_of,
              is_flagged,
              flagged_reason,
              filter_results
            )
            values ($1::uuid, $2, $3, $4, $5, $6, $7::text[], $8::text[], $9::uuid, $10, $11, $12::jsonb)
            on conflict (content_queue_id) do update set
              is_spam = excluded.is_spam,
              is_inappropriate = excluded.is_inappropriate,
              is_unrelated = excluded.is_unrelated,
              is_valid = excluded.is_valid,
              confidence_score = excluded.confidence_score,
              flagged_patterns = excluded.flagged_patterns,
              processing_notes = excluded.processing_notes,
              duplicate_of = excluded.duplicate_of,
              is_flagged = excluded.is_flagged,
              flagged_reason = excluded.flagged_reason,
              filter_results = excluded.filter_results,
              updated_at = now()
            """,
            entry_id,
            analysis.is_spam,
            analysis.is_inappropriate,
            analysis.is_unrelated,
            analysis.is_valid,
            analysis.confidence,
            analysis.flagged_patterns,
            analysis.processing_notes,
            analysis.duplicate_of,
            analysis.is_flagged,
            analysis.flagged_reason,
            json.dumps(
                {
                    "is_spam": analysis.is_spam,
                    "is_inappropriate": analysis.is_inappropriate,
                    "is_unrelated": analysis.is_unrelated,
                    "is_valid": analysis.is_valid,
                    "confidence": analysis.confidence,
                }
            ),
        )

    @_translate_errors
    async def list_unposted_entries(self) -> list[QueueRow]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select source, status, content_image_url, content_video_url
            from content_queue
            where is_posted = false
            """
        )
        return [
            QueueRow(
                source=row["source"],
                status=row["status"],
                image_url=row["content_image_url"],
                video_url=row["content_video_url"],
            )
            for row in rows
        ]

    @_translate_errors
    async def list_duplicate_clusters(self, limit: int) -> list[DuplicateCluster]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              ca.duplicate_of::text as original_id,
              array_agg(ca.content_queue_id::text order by ca.created_at) as duplicate_ids,
              count(*)::int as cluster_size,
              avg(ca.confidence_score)::float as mean_confidence,
              min(ca.created_at) as first_seen_at
            from content_analysis ca
            where ca.duplicate_of is not null
            group by ca.duplicate_of
            having count(*) > 1
            order by count(*) desc, min(ca.created_at) desc
            limit $1
            """,
            limit,
        )
        return [
            DuplicateCluster(
                original_id=row["original_id"],
                duplicate_ids=list(row["duplicate_ids"] or []),
                cluster_size=int(row["cluster_size"]),
                mean_confidence=float(row["mean_confidence"] or 0.0),
                first_seen_at=row["first_seen_at"],
            )
            for row in rows
        ]

    @_translate_errors
    async def enqueue_processing(self, candidate: dict[str, Any], *, priority: str, error: str | None) -> str:
        if priority not in PROCESSING_PRIORITIES:
            priority = "medium"
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            insert into processing_queue (candidate, priority, status, attempts, last_error)
            values ($1::jsonb, $2, 'pending', 0, $3)
            returning id::text as id
            """,
            json.dumps(candidate),
            priority,
            error,
        )
        return row["id"]

    @_translate_errors
    async def claim_processing_items(self, *, limit: int, max_attempts: int) -> list[ProcessingQueueItem]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    with claimable as (
                      select id
                      from processing_queue
                      where status = 'pending'
                        and attempts < $1
                      order by
                        case priority when 'high' then 1 when 'medium' then 2 else 3 end,
                        created_at asc
                      limit $2
                      for update skip locked
                    )
                    update processing_queue pq
                    set status = 'processing', attempts = pq.attempts + 1, updated_at = now()
                    from claimable
                    where pq.id = claimable.id
                    returning
                      pq.id::text as id,
                      pq.candidate,
                      pq.priority,
                      pq.status,
                      pq.attempts,
                      pq.last_error,
                      pq.created_at,
                      pq.updated_at
                    """,
                    max_attempts,
                    limit,
                )
        items = [self._processing_row_to_item(row) for row in rows]
        items.sort(key=lambda item: (PROCESSING_PRIORITIES.index(item.priority), item.created_at))
        return items

    @_translate_errors
    async def complete_processing_item(self, item_id: str) -> None:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            update processing_queue
            set status = 'completed', updated_at = now()
            where id = $1::uuid
            """,
            item_id,
        )
        if result.endswith(" 0"):
            raise RepositoryNotFoundError("processing item not found")

    @_translate_errors
    async def fail_processing_item(self, item_id: str, *, error: str, max_attempts: int) -> str:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update processing_queue
            set
              status = case when attempts >= $2 then 'failed' else 'pending' end,
              last_error = $3,
              updated_at = now()
            where id = $1::uuid
            returning status
            """,
            item_id,
            max_attempts,
            error,
        )
        if not row:
            raise RepositoryNotFoundError("processing item not found")
        return row["status"]

    @_translate_errors
    async def processing_stats(self) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              count(*)::int as total,
              count(*) filter (where status = 'pending')::int as pending,
              count(*) filter (where status = 'processing')::int as processing,
              count(*) filter (where status = 'failed')::int as failed,
              coalesce(avg(extract(epoch from (updated_at - created_at))), 0)::float as avg_processing_seconds
            from processing_queue
            where created_at >= now() - $1::interval
            """,
            timedelta(hours=24),
        )
        return {
            "queue_size": int(row["total"]),
            "pending_items": int(row["pending"]),
            "processing_items": int(row["processing"]),
            "failed_items": int(row["failed"]),
            "average_processing_seconds": float(row["avg_processing_seconds"]),
        }

    @asynccontextmanager
    async def source_lock(self, source: str) -> AsyncIterator[bool]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            acquired = await self._try_advisory_lock(conn, source)
            try:
                yield acquired
            finally:
                if acquired:
                    await conn.execute("select pg_advisory_unlock(hashtext($1))", f"scan:{source}")

    @_translate_errors
    async def _try_advisory_lock(self, conn: asyncpg.Connection, source: str) -> bool:
        return bool(await conn.fetchval("select pg_try_advisory_lock(hashtext($1))", f"scan:{source}"))

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CURATOR_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _processing_row_to_item(row: asyncpg.Record) -> ProcessingQueueItem:
        candidate = row["candidate"]
        if isinstance(candidate, str):
            try:
                candidate = json.loads(candidate)
            except json.JSONDecodeError:
                candidate = {}
        if not isinstance(candidate, dict):
            candidate = {}
        priority = row["priority"] if row["priority"] in PROCESSING_PRIORITIES else "medium"
        return ProcessingQueueItem(
            id=row["id"],
            candidate=candidate,
            priority=priority,
            status=row["status"],
            attempts=int(row["attempts"]),
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@lru_cache
def get_repository() -> PostgresContentRepository:
    settings = get_settings()
    return PostgresContentRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
