#!/usr/bin/env python3
"""Cortex learner: grow word -> tag associations from retrieval gaps.

When a prompt word has no cortex entry but still finds memories through
the fuzzy fallback, the tags shared by those memories are a guess at what
the word means. Repeated sightings raise confidence asymptotically:

    confidence = min(0.95, 1 - 1 / (observations + 1))

Learned entries above 0.5 confidence are merged into the retrieval cortex;
entries that reach 0.8 confidence over 5+ observations are promotion
candidates for the default map. Stale entries are pruned unless promoted.
"""

from typing import Dict, List, Optional

from .config import LEARNER_DEFAULTS
from .logging_config import get_logger
from .utils import days_since, now_iso

log = get_logger("brain.cortex_learner")

CONFIDENCE_CAP = LEARNER_DEFAULTS["confidence_cap"]
MAX_TAGS_PER_OBSERVATION = 5
MAX_TAGS_PER_ENTRY = 6


def confidence_for(observations: int) -> float:
    return min(CONFIDENCE_CAP, 1 - 1 / (observations + 1))


def analyze_gaps(gaps: List[str], memories: List[dict]) -> List[dict]:
    """Turn cortex-gap words into observations of the tags they point at.

    Returns:
        [{"word", "matched_memory_ids", "matched_tags", "timestamp"}]
    """
    observations = []
    timestamp = now_iso()
    for word in gaps:
        lower = word.lower()
        matched = [
            m for m in memories
            if lower in (m.get("title") or "").lower()
            or lower in (m.get("rule") or "").lower()
            or (len(lower) > 4 and lower in (m.get("content") or "").lower())
        ]
        if not matched:
            continue

        counts: Dict[str, int] = {}
        for memory in matched:
            for tag in memory.get("tags") or []:
                counts[tag] = counts.get(tag, 0) + 1
        min_count = max(1, len(matched) // 2)
        tags = [tag for tag, n in sorted(counts.items(), key=lambda kv: kv[1], reverse=True) if n >= min_count]
        if tags:
            observations.append({
                "word": lower,
                "matched_memory_ids": [m.get("id") for m in matched],
                "matched_tags": tags[:MAX_TAGS_PER_OBSERVATION],
                "timestamp": timestamp,
            })
    return observations


def learn_from_observations(observations: List[dict], existing: List[dict],
                            min_observations: int = LEARNER_DEFAULTS["cortex_min_observations"]) -> dict:
    """Fold observations into the learned entries.

    A word seen once is held at confidence 0 until it reaches
    min_observations.

    Returns:
        {"entries": all entries, "new_entries": words that just became
         usable, "updated_entries": words seen again}
    """
    entries = {e["word"]: dict(e) for e in existing}
    new_words: List[str] = []
    updated_words: List[str] = []

    for obs in observations:
        entry = entries.get(obs["word"])
        if entry is None:
            entries[obs["word"]] = {
                "word": obs["word"],
                "tags": list(obs["matched_tags"])[:MAX_TAGS_PER_ENTRY],
                "confidence": 0.0,
                "observation_count": 1,
                "first_seen": obs["timestamp"],
                "last_seen": obs["timestamp"],
                "promoted": False,
            }
            continue
        entry["observation_count"] = entry.get("observation_count", 0) + 1
        entry["last_seen"] = obs["timestamp"]
        tags = list(entry.get("tags") or [])
        for tag in obs["matched_tags"]:
            if tag not in tags:
                tags.append(tag)
        entry["tags"] = tags[:MAX_TAGS_PER_ENTRY]
        if obs["word"] not in updated_words:
            updated_words.append(obs["word"])

    for word, entry in entries.items():
        count = entry.get("observation_count", 0)
        if count < min_observations:
            continue
        if entry.get("confidence", 0.0) == 0.0:
            new_words.append(word)
        entry["confidence"] = round(confidence_for(count), 4)

    if new_words:
        log.debug(f"Learned cortex words: {', '.join(new_words)}")
    return {
        "entries": list(entries.values()),
        "new_entries": [entries[w] for w in new_words],
        "updated_entries": [entries[w] for w in updated_words if w not in new_words],
    }


def merge_cortex(base: Dict[str, list], learned: List[dict],
                 threshold: float = LEARNER_DEFAULTS["cortex_merge_threshold"]) -> Dict[str, list]:
    """Base cortex plus confident learned words (promoted words already live in base)."""
    merged = {word: list(tags) for word, tags in base.items()}
    for entry in learned:
        if entry.get("promoted") or entry.get("confidence", 0.0) < threshold:
            continue
        tags = merged.setdefault(entry["word"], [])
        for tag in entry.get("tags") or []:
            if tag not in tags:
                tags.append(tag)
    return merged


def get_promotion_candidates(entries: List[dict],
                             min_confidence: float = LEARNER_DEFAULTS["cortex_promote_confidence"],
                             min_observations: int = LEARNER_DEFAULTS["cortex_promote_observations"]) -> List[dict]:
    candidates = [
        e for e in entries
        if not e.get("promoted")
        and e.get("confidence", 0.0) >= min_confidence
        and e.get("observation_count", 0) >= min_observations
    ]
    candidates.sort(key=lambda e: e.get("observation_count", 0), reverse=True)
    return candidates


def prune_stale_entries(entries: List[dict], max_age_days: int = LEARNER_DEFAULTS["cortex_max_age_days"]) -> dict:
    """Split entries into kept and pruned; promoted entries are permanent.

    Returns:
        {"kept": [...], "pruned": [...]}
    """
    kept, pruned = [], []
    for entry in entries:
        if not entry.get("promoted") and days_since(entry.get("last_seen")) > max_age_days:
            pruned.append(entry)
        else:
            kept.append(entry)
    return {"kept": kept, "pruned": pruned}


def create_empty_cortex_store() -> dict:
    return {"entries": [], "total_gaps_processed": 0, "last_updated": now_iso()}


def learn_from_retrieval(store: dict, gaps: List[str], memories: List[dict],
                         min_observations: Optional[int] = None) -> dict:
    """Run one retrieval's cortex gaps through the learner; returns the new store."""
    if not gaps:
        return store
    observations = analyze_gaps(gaps, memories)
    learned = learn_from_observations(
        observations, store.get("entries") or [],
        LEARNER_DEFAULTS["cortex_min_observations"] if min_observations is None else min_observations,
    )
    return {
        "entries": learned["entries"],
        "total_gaps_processed": store.get("total_gaps_processed", 0) + len(gaps),
        "last_updated": now_iso(),
    }
