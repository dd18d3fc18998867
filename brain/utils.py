#!/usr/bin/env python3
"""Shared helpers: timestamps, ids, clamping, tokenizing, stop words."""

import re
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Set

SECONDS_PER_DAY = 86400.0
SECONDS_PER_HOUR = 3600.0

WORD_PATTERN = re.compile(r"\b\w[\w.-]*\b")

STOP_WORDS = frozenset({
    'a', 'about', 'above', 'after', 'again', 'all', 'also', 'an', 'and', 'any',
    'are', 'as', 'at', 'be', 'because', 'been', 'before', 'being', 'below',
    'between', 'both', 'but', 'by', 'can', 'could', 'did', 'do', 'does',
    'doing', 'done', 'during', 'each', 'every', 'few', 'for', 'from',
    'further', 'has', 'had', 'have', 'he', 'her', 'here', 'his', 'how', 'i',
    'if', 'in', 'into', 'is', 'it', 'its', 'just', 'like', 'may', 'me',
    'might', 'more', 'most', 'my', 'no', 'not', 'of', 'off', 'on', 'once',
    'one', 'only', 'or', 'other', 'our', 'out', 'over', 'own', 'same', 'shall',
    'she', 'should', 'so', 'some', 'such', 'than', 'that', 'the', 'their',
    'them', 'then', 'there', 'these', 'they', 'this', 'through', 'to', 'too',
    'under', 'up', 'use', 'used', 'using', 'very', 'was', 'we', 'were', 'what',
    'when', 'where', 'which', 'while', 'who', 'whom', 'why', 'will', 'with',
    'would', 'you', 'your',
})


def now_iso() -> str:
    return datetime.now().isoformat()


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp, returning None when absent or malformed.

    Timezone-aware values are converted to naive local time so they compare
    with datetime.now().
    """
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone().replace(tzinfo=None)
    return ts


def days_since(value: Optional[str], now: Optional[datetime] = None) -> float:
    """Fractional days elapsed since value. Unparseable timestamps count as now."""
    ts = parse_ts(value)
    if ts is None:
        return 0.0
    now = now or datetime.now()
    return max(0.0, (now - ts).total_seconds() / SECONDS_PER_DAY)


def generate_id(prefix: str = "mem") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp to [low, high]; NaN collapses to low."""
    if value != value:
        return low
    return max(low, min(high, value))


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens, keeping dotted and dashed identifiers whole."""
    return WORD_PATTERN.findall((text or "").lower())


def remove_stop_words(words: Iterable[str]) -> List[str]:
    """Filter out stop words and words shorter than 2 characters."""
    return [w for w in words if len(w) >= 2 and w not in STOP_WORDS]


def keyword_set(text: str, min_length: int = 3) -> Set[str]:
    """Significant words of text: tokenized, stop words removed, length floor."""
    return {w for w in tokenize(text) if len(w) >= min_length and w not in STOP_WORDS}


def jaccard(a: Set[str], b: Set[str], empty: float = 0.0) -> float:
    """Jaccard overlap of two sets; `empty` is returned when both are empty."""
    if not a and not b:
        return empty
    union = a | b
    return len(a & b) / len(union)
