"""Domain records shared by the curation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    MIXED = "mixed"


class EntryStatus(str, Enum):
    DISCOVERED = "discovered"
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"
    DUPLICATE = "duplicate"


class ProcessingAction(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"
    DUPLICATE = "duplicate"

    @property
    def status(self) -> EntryStatus:
        return EntryStatus(self.value)


@dataclass(frozen=True, slots=True)
class TextOnly:
    content_type = ContentType.TEXT


@dataclass(frozen=True, slots=True)
class Image:
    image_url: str
    content_type = ContentType.IMAGE


@dataclass(frozen=True, slots=True)
class Video:
    video_url: str
    content_type = ContentType.VIDEO


@dataclass(frozen=True, slots=True)
class Mixed:
    image_url: str
    video_url: str
    content_type = ContentType.MIXED


Media = TextOnly | Image | Video | Mixed


def media_from_urls(image_url: str | None, video_url: str | None) -> Media:
    image = (image_url or "").strip() or None
    video = (video_url or "").strip() or None
    if image and video:
        return Mixed(image_url=image, video_url=video)
    if video:
        return Video(video_url=video)
    if image:
        return Image(image_url=image)
    return TextOnly()


def media_image_url(media: Media) -> str | None:
    if isinstance(media, (Image, Mixed)):
        return media.image_url
    return None


def media_video_url(media: Media) -> str | None:
    if isinstance(media, (Video, Mixed)):
        return media.video_url
    return None


@dataclass(slots=True)
class CandidateItem:
    source: str
    text: str | None
    source_url: str
    media: Media = field(default_factory=TextOnly)
    author: str | None = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def image_url(self) -> str | None:
        return media_image_url(self.media)

    @property
    def video_url(self) -> str | None:
        return media_video_url(self.media)

    @property
    def content_type(self) -> ContentType:
        return self.media.content_type

    def to_payload(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "text": self.text,
            "source_url": self.source_url,
            "image_url": self.image_url,
            "video_url": self.video_url,
            "author": self.author,
            "captured_at": self.captured_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CandidateItem:
        captured_at = _parse_timestamp(payload.get("captured_at")) or datetime.now(timezone.utc)
        metadata = payload.get("metadata")
        return cls(
            source=str(payload.get("source") or "").strip(),
            text=payload.get("text") if isinstance(payload.get("text"), str) else None,
            source_url=str(payload.get("source_url") or "").strip(),
            media=media_from_urls(payload.get("image_url"), payload.get("video_url")),
            author=payload.get("author") if isinstance(payload.get("author"), str) else None,
            captured_at=captured_at,
            metadata=metadata if isinstance(metadata, dict) else {},
        )


@dataclass(frozen=True, slots=True)
class Fingerprints:
    exact_hash: str
    fuzzy_hash: str
    url_hash: str
    image_hash: str | None
    video_hash: str | None
    normalized_text: str


@dataclass(slots=True)
class QueueEntry:
    id: str | None
    source: str
    text: str | None
    media: Media
    source_url: str
    author: str | None
    fingerprints: Fingerprints
    status: EntryStatus = EntryStatus.DISCOVERED
    is_posted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def content_type(self) -> ContentType:
        return self.media.content_type

    @property
    def content_hash(self) -> str:
        return self.fingerprints.exact_hash

    @property
    def image_url(self) -> str | None:
        return media_image_url(self.media)

    @property
    def video_url(self) -> str | None:
        return media_video_url(self.media)

    @property
    def is_approved(self) -> bool:
        return self.status is EntryStatus.APPROVED


@dataclass(slots=True)
class ContentAnalysis:
    is_spam: bool = False
    is_inappropriate: bool = False
    is_unrelated: bool = False
    is_valid: bool = False
    confidence: float = 0.0
    flagged_patterns: list[str] = field(default_factory=list)
    processing_notes: list[str] = field(default_factory=list)
    duplicate_of: str | None = None
    is_flagged: bool = False
    flagged_reason: str | None = None


@dataclass(slots=True)
class ProcessingResult:
    action: ProcessingAction
    analysis: ContentAnalysis
    reason: str
    source: str
    entry_id: str | None = None
    duplicate_of: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
