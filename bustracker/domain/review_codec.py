"""
Review Codec - Sentiment Packing for the Remote Review Schema
==============================================================

The remote ``communityReviews`` collection accepts exactly three fields
(username, review, time), so sentiment has to travel inside the review text.

Formats understood on read:
- v2 (versioned):  "@v2:" + JSON {"v": 2, "text", "sentiment", "score"}
- v1 (delimited):  "<text>|||<Sentiment>|||<score>"
- legacy:          plain text, sentiment unknown (caller runs inference)
"""

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import Sentiment, SentimentResult

DELIMITER = "|||"
VERSION_MARKER = "@v2:"
SCHEMA_VERSION = 2


class ReviewFormat(Enum):
    VERSIONED = "versioned"
    DELIMITED = "delimited"
    LEGACY = "legacy"


@dataclass(frozen=True)
class DecodedReview:
    text: str
    result: Optional[SentimentResult]
    format: ReviewFormat

    @property
    def is_legacy(self) -> bool:
        return self.format == ReviewFormat.LEGACY


def encode_delimited(text: str, result: SentimentResult) -> str:
    return f"{text}{DELIMITER}{result.sentiment.value}{DELIMITER}{float(result.score)!r}"


def encode_versioned(text: str, result: SentimentResult) -> str:
    payload = {
        "v": SCHEMA_VERSION,
        "text": text,
        "sentiment": result.sentiment.value,
        "score": float(result.score),
    }
    return VERSION_MARKER + json.dumps(payload, ensure_ascii=False)


def encode(text: str, result: SentimentResult, encoding: str = "delimited") -> str:
    """Encode using the configured format ("delimited" or "json")."""
    if encoding == "json":
        return encode_versioned(text, result)
    return encode_delimited(text, result)


def _parse_score(raw) -> float:
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return 0.5
    return 0.5 if math.isnan(score) else score


def _decode_versioned(raw: str) -> Optional[DecodedReview]:
    try:
        payload = json.loads(raw[len(VERSION_MARKER):])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or "text" not in payload:
        return None
    if payload.get("v") != SCHEMA_VERSION:
        return None
    result = SentimentResult(
        Sentiment.parse(payload.get("sentiment")),
        _parse_score(payload.get("score")),
    )
    return DecodedReview(str(payload["text"]), result, ReviewFormat.VERSIONED)


def decode(raw: Optional[str]) -> DecodedReview:
    """Split a stored review string into text and (if present) sentiment."""
    raw = raw or ""

    if raw.startswith(VERSION_MARKER):
        decoded = _decode_versioned(raw)
        if decoded:
            return decoded

    if DELIMITER in raw:
        parts = raw.split(DELIMITER)
        if len(parts) >= 3:
            score = _parse_score(parts.pop())
            sentiment = Sentiment.parse(parts.pop())
            text = DELIMITER.join(parts)
            return DecodedReview(text, SentimentResult(sentiment, score), ReviewFormat.DELIMITED)

    return DecodedReview(raw, None, ReviewFormat.LEGACY)
