#!/usr/bin/env python3
"""Memory pruner: move dead memories out of the active pool into the archive.

Order of checks per memory:
1. superseded -> archived immediately
2. score below min_score and not accessed for max_stale_days -> stale
3. quality_score below min_quality -> low quality

Pools smaller than min_memory_count are never pruned.
"""

from datetime import datetime
from typing import List, Optional

from .config import PRUNE_DEFAULTS
from .logging_config import get_logger
from .scoring import score_memory
from .utils import days_since, now_iso

log = get_logger("brain.pruner")

MEMORY_CAPACITY = PRUNE_DEFAULTS["capacity"]
CAPACITY_WARNING_PCT = PRUNE_DEFAULTS["capacity_warning_pct"]


def check_capacity(memory_count: int, capacity: int = MEMORY_CAPACITY,
                   warning_pct: float = CAPACITY_WARNING_PCT) -> dict:
    """Returns {"total", "capacity", "pct", "level": ok|warning|critical, "should_prune"}."""
    pct = memory_count / capacity if capacity else 1.0
    if pct >= 1.0:
        level = "critical"
    elif pct >= warning_pct:
        level = "warning"
    else:
        level = "ok"
    return {
        "total": memory_count,
        "capacity": capacity,
        "pct": round(pct, 4),
        "level": level,
        "should_prune": pct >= 1.0,
    }


def _archived(memory: dict, category: str, reason: str, score: float, timestamp: str) -> dict:
    return {
        "memory": memory,
        "category": category,
        "reason": reason,
        "archived_at": timestamp,
        "score_at_archive": score,
    }


def prune_memories(memories: List[dict], options: Optional[dict] = None,
                   now: Optional[datetime] = None) -> dict:
    """Split memories into kept and archived.

    Args:
        memories: Active pool
        options: Overrides for PRUNE_DEFAULTS keys (min_score, max_stale_days,
            min_quality, min_memory_count)

    Returns:
        {"kept": [...], "archived": [{"memory", "category", "reason",
         "archived_at", "score_at_archive"}], "stats": {...}}
    """
    opts = {**PRUNE_DEFAULTS, **(options or {})}
    now = now or datetime.now()
    timestamp = now_iso()
    stats = {
        "total_before": len(memories),
        "total_after": len(memories),
        "superseded_count": 0,
        "stale_count": 0,
        "low_quality_count": 0,
    }
    if len(memories) < opts["min_memory_count"]:
        return {"kept": list(memories), "archived": [], "stats": stats}

    kept, archived = [], []
    for memory in memories:
        score = score_memory(memory, now)

        if memory.get("superseded_by"):
            archived.append(_archived(memory, "superseded", f"Superseded by {memory['superseded_by']}",
                                      score, timestamp))
            stats["superseded_count"] += 1
            continue

        if score < opts["min_score"]:
            idle_days = days_since(memory.get("last_accessed") or memory.get("created_at"), now)
            if idle_days > opts["max_stale_days"]:
                archived.append(_archived(
                    memory, "stale", f"Stale: score {score:.2f}, last accessed {int(idle_days)}d ago",
                    score, timestamp))
                stats["stale_count"] += 1
                continue

        quality = memory.get("quality_score")
        if quality is not None and quality < opts["min_quality"]:
            archived.append(_archived(memory, "low_quality", f"Low quality: {quality:.2f}", score, timestamp))
            stats["low_quality_count"] += 1
            continue

        kept.append(memory)

    stats["total_after"] = len(kept)
    if archived:
        log.info(f"Pruned {len(archived)} memories ({stats['superseded_count']} superseded, "
                 f"{stats['stale_count']} stale, {stats['low_quality_count']} low quality)")
    return {"kept": kept, "archived": archived, "stats": stats}


def preview_prune(memories: List[dict], options: Optional[dict] = None) -> dict:
    """Dry run: what would be archived and how many would stay."""
    result = prune_memories(memories, options)
    return {
        "would_archive": [{"memory": a["memory"], "reason": a["reason"]} for a in result["archived"]],
        "would_keep": len(result["kept"]),
    }


def restore_from_archive(entry: dict) -> dict:
    """Return the archived memory live again: supersession cleared, access refreshed."""
    return {**entry["memory"], "superseded_by": None, "last_accessed": now_iso()}


def archive_stats(archived: List[dict]) -> dict:
    by_category: dict = {}
    dates = []
    for entry in archived:
        category = entry.get("category", "unknown")
        by_category[category] = by_category.get(category, 0) + 1
        if entry.get("archived_at"):
            dates.append(entry["archived_at"])
    return {
        "total": len(archived),
        "by_category": by_category,
        "oldest": min(dates) if dates else None,
        "newest": max(dates) if dates else None,
    }


def create_empty_archive_store() -> dict:
    return {"archived": [], "total_archived": 0, "last_pruned": None}
