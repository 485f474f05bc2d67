from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx


class ClassifierError(Exception):
    """Raised when the classifier cannot produce a verdict."""


@dataclass(slots=True)
class ClassifierVerdict:
    is_valid: bool
    is_spam: bool
    is_inappropriate: bool
    is_unrelated: bool
    confidence: float
    flagged_patterns: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


class Classifier(Protocol):
    async def classify(
        self,
        text: str,
        media_refs: list[str],
        metadata: dict[str, Any],
    ) -> ClassifierVerdict: ...


class HttpClassifier:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def classify(
        self,
        text: str,
        media_refs: list[str],
        metadata: dict[str, Any],
    ) -> ClassifierVerdict:
        payload = {"text": text, "media_refs": media_refs, "metadata": metadata}
        try:
            if self._client is not None:
                response = await self._client.post(f"{self.base_url}/classify", json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(f"{self.base_url}/classify", json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ClassifierError(f"classifier request failed: {exc}") from exc
        return parse_verdict(body)


def parse_verdict(body: Any) -> ClassifierVerdict:
    if not isinstance(body, dict):
        raise ClassifierError("classifier returned a non-object body")
    try:
        confidence = float(body.get("confidence", 0.0))
    except (TypeError, ValueError) as exc:
        raise ClassifierError("classifier returned an invalid confidence") from exc
    return ClassifierVerdict(
        is_valid=bool(body.get("is_valid", False)),
        is_spam=bool(body.get("is_spam", False)),
        is_inappropriate=bool(body.get("is_inappropriate", False)),
        is_unrelated=bool(body.get("is_unrelated", False)),
        confidence=min(1.0, max(0.0, confidence)),
        flagged_patterns=_string_list(body.get("flagged_patterns")),
        notes=_string_list(body.get("notes")),
    )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item]
