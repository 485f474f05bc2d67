from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Literal

MixCategory = Literal["video", "gif", "image", "text"]

MIX_CATEGORIES: tuple[MixCategory, ...] = ("video", "gif", "image", "text")

CONTENT_MIX_TARGETS: dict[str, float] = {
    "video": 0.30,
    "gif": 0.25,
    "image": 0.40,
    "text": 0.05,
}

DEFAULT_TARGET_SHARE = 0.05


@dataclass(frozen=True, slots=True)
class SourceProfile:
    source: str
    primary_type: MixCategory
    target_share: float
    repost_window_days: int


# Order is the tie-break order for recommendations with the same priority.
SOURCE_PROFILES: dict[str, SourceProfile] = {
    profile.source: profile
    for profile in (
        SourceProfile("reddit", "image", 0.20, 14),
        SourceProfile("youtube", "video", 0.15, 30),
        SourceProfile("pixabay", "image", 0.15, 90),
        SourceProfile("giphy", "gif", 0.15, 30),
        SourceProfile("bluesky", "text", 0.10, 7),
        SourceProfile("tumblr", "image", 0.10, 14),
        SourceProfile("imgur", "image", 0.10, 14),
        SourceProfile("lemmy", "text", 0.05, 7),
    )
}


def known_sources() -> list[str]:
    return list(SOURCE_PROFILES)


def is_known_source(source: str | None) -> bool:
    return bool(source) and source in SOURCE_PROFILES


def primary_content_type(source: str) -> MixCategory:
    profile = SOURCE_PROFILES.get(source)
    return profile.primary_type if profile else "text"


def source_target_share(source: str) -> float:
    profile = SOURCE_PROFILES.get(source)
    return profile.target_share if profile else DEFAULT_TARGET_SHARE


def content_type_target_share(content_type: str) -> float:
    return CONTENT_MIX_TARGETS.get(content_type, DEFAULT_TARGET_SHARE)


class RepostPolicy:
    """Per-source minimum interval before the same content may reappear."""

    def __init__(self, *, default_days: int = 7, overrides: dict[str, int] | None = None) -> None:
        self.default_days = max(1, default_days)
        self._days: dict[str, int] = {
            source: profile.repost_window_days for source, profile in SOURCE_PROFILES.items()
        }
        self._days.update(overrides or {})

    def window_for(self, source: str) -> timedelta:
        return timedelta(days=self._days.get(source, self.default_days))


def parse_json_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(decoded, dict):
        return {}
    return {key.strip(): value for key, value in decoded.items() if isinstance(key, str) and key.strip()}


def parse_repost_windows(raw: str | None) -> dict[str, int]:
    parsed: dict[str, int] = {}
    for source, value in parse_json_object(raw).items():
        try:
            days = int(value)
        except (TypeError, ValueError):
            continue
        if days > 0:
            parsed[source] = days
    return parsed


def parse_text_map(raw: str | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for source, value in parse_json_object(raw).items():
        if isinstance(value, str) and value.strip():
            parsed[source] = value.strip()
    return parsed
