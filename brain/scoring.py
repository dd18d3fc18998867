#!/usr/bin/env python3
"""Memory lifecycle scoring.

score = (decay + access_boost + freq_bonus - failure_penalty - superseded_penalty) * severity_mult

    decay = exp(-rate[type] * age_days)
    access_boost = 0.3 * exp(-0.05 * days_since_access)
    freq_bonus = min(0.2, 0.05 * log2(access_count + 1))
    failure_penalty = 0.15 per failure correlation
    superseded_penalty = 0.6

Result clamped to [0, 1]. Half-lives: fact ~17d, pain ~28d, win ~46d,
reflection ~35d, decision ~87d, architecture ~173d.
"""

import math
from datetime import datetime
from typing import List, Optional

from .utils import clamp, days_since

DECAY_RATE = {
    "fact": 0.04,
    "pain": 0.025,
    "win": 0.015,
    "decision": 0.008,
    "architecture": 0.004,
    "reflection": 0.02,
}

SEVERITY_MULT = {
    "high": 1.4,
    "medium": 1.0,
    "low": 0.7,
}

MIN_RANK_SCORE = 0.15
HEALTH_CLASSES = ("active", "aging", "stale", "harmful", "superseded")


def score_memory(memory: dict, now: Optional[datetime] = None,
                 failure_correlation: Optional[int] = None) -> float:
    """Current lifecycle score of a memory in [0, 1].

    failure_correlation overrides the memory's stored failure_correlations.
    """
    now = now or datetime.now()
    age_days = days_since(memory.get("created_at"), now)
    decay = math.exp(-DECAY_RATE.get(memory.get("type"), 0.02) * age_days)

    access_boost = 0.0
    if memory.get("last_accessed"):
        access_boost = math.exp(-0.05 * days_since(memory["last_accessed"], now)) * 0.3

    freq_bonus = min(0.2, math.log2(max(0, memory.get("access_count") or 0) + 1) * 0.05)
    if failure_correlation is None:
        failure_correlation = memory.get("failure_correlations") or 0
    fail_penalty = failure_correlation * 0.15
    superseded_penalty = 0.6 if memory.get("superseded_by") else 0.0
    severity = SEVERITY_MULT.get(memory.get("severity") or "medium", 1.0)

    raw = (decay + access_boost + freq_bonus - fail_penalty - superseded_penalty) * severity
    return round(clamp(raw), 4)


def classify_health(memory: dict, score: float) -> str:
    if memory.get("superseded_by"):
        return "superseded"
    if (memory.get("failure_correlations") or 0) >= 2:
        return "harmful"
    if score >= 0.5:
        return "active"
    if score >= 0.25:
        return "aging"
    return "stale"


def rank_memories(memories: List[dict], min_score: float = MIN_RANK_SCORE,
                  now: Optional[datetime] = None) -> List[dict]:
    """Live memories scoring at least min_score, best first, with `relevance_score` attached."""
    now = now or datetime.now()
    ranked = []
    for memory in memories:
        if memory.get("superseded_by"):
            continue
        score = score_memory(memory, now)
        if score >= min_score:
            ranked.append({**memory, "relevance_score": score})
    ranked.sort(key=lambda m: m["relevance_score"], reverse=True)
    return ranked


def get_review_queue(memories: List[dict], now: Optional[datetime] = None) -> List[dict]:
    """Memories that need a human look: harmful, stale or superseded."""
    now = now or datetime.now()
    queue = []
    for memory in memories:
        score = score_memory(memory, now)
        health = classify_health(memory, score)
        if health == "harmful":
            reason = f"correlated with {memory.get('failure_correlations')} failures"
        elif health == "stale":
            reason = f"score {score:.2f} below threshold"
        elif health == "superseded":
            reason = f"superseded by {memory.get('superseded_by')}"
        else:
            continue
        queue.append({**memory, "reason": reason, "relevance_score": score})
    return queue
