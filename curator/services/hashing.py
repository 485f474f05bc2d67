from __future__ import annotations

import re

from curator.core.urls import is_valid_url, normalize_url, sha256_hex
from curator.services.content import CandidateItem, Fingerprints

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")
FIELD_DELIMITER = "|"


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    stripped = _PUNCTUATION_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def exact_hash(
    text: str | None,
    image_url: str | None,
    video_url: str | None,
    source_url: str | None,
) -> str:
    return sha256_hex(FIELD_DELIMITER.join([text or "", image_url or "", video_url or "", source_url or ""]))


def fingerprint(candidate: CandidateItem) -> Fingerprints:
    normalized = normalize_text(candidate.text)
    image_url = candidate.image_url
    video_url = candidate.video_url
    return Fingerprints(
        exact_hash=exact_hash(candidate.text, image_url, video_url, candidate.source_url),
        fuzzy_hash=sha256_hex(FIELD_DELIMITER.join([normalized, image_url or "", video_url or ""])),
        url_hash=sha256_hex(_url_key(candidate.source_url)),
        image_hash=sha256_hex(image_url) if image_url else None,
        video_hash=sha256_hex(video_url) if video_url else None,
        normalized_text=normalized,
    )


def _url_key(source_url: str) -> str:
    if is_valid_url(source_url):
        return normalize_url(source_url)
    return (source_url or "").strip()
