#!/usr/bin/env python3
"""Quality gate: the checkpoint every memory passes before it is stored.

Pipeline: fingerprint -> quality score -> dedup -> conflict detection -> decision

Core API:
- compute_fingerprint(title, content) -> 12-char hash
- is_duplicate(candidate, existing, threshold) -> {is_duplicate, existing_id, similarity}
- assess_quality(candidate) -> [0, 1]
- detect_conflict(candidate, existing) -> [{memory, confidence, reason, kind}]
- resolve_conflict(candidate, old, strategy) -> {action, ...}
- quality_gate(candidate, existing, ...) -> {action, reason, quality_score, fingerprint, ...}

Gate decisions are dicts; nothing here raises on malformed candidates.
"""

import hashlib
import re
from typing import List, Optional

from .config import GATE_DEFAULTS
from .logging_config import get_logger
from .models import validate_candidate
from .utils import STOP_WORDS, clamp, jaccard

log = get_logger("brain.quality_gate")

DUPLICATE_THRESHOLD = GATE_DEFAULTS["dup_threshold"]
MIN_QUALITY = GATE_DEFAULTS["min_quality"]
MIN_TAG_OVERLAP = GATE_DEFAULTS["min_tag_overlap"]
CONFLICT_FLOOR = GATE_DEFAULTS["conflict_floor"]

STRATEGIES = ("keep_new", "keep_old", "merge")

SPECIFIC_PATTERN = re.compile(
    r"\b[\w-]+\.(py|ts|js|rs|json|toml|yaml|md)\b|v\d+\.\d+|[A-Z][a-z]+[A-Z]\w+"
)
ACTIONABLE_PATTERN = re.compile(
    r"\b(always|never|must|should|avoid|use|prefer|ensure|check|verify|run|before|after|instead)\b",
    re.IGNORECASE,
)

# Rule directives that cannot both hold on the same topic
OPPOSING_DIRECTIVES = [
    (re.compile(r"\balways\b"), re.compile(r"\bnever\b")),
    (re.compile(r"\buse\b"), re.compile(r"\bavoid\b")),
    (re.compile(r"\bdo\b"), re.compile(r"\bdon'?t\b")),
    (re.compile(r"\bsafe\b"), re.compile(r"\bunsafe\b|\bdangerous\b")),
    (re.compile(r"\brequired\b"), re.compile(r"\bunnecessary\b|\boptional\b")),
]

COMPLEMENTARY_TYPES = {("pain", "win"), ("win", "pain")}


# =============================================================================
# FINGERPRINT & SIMILARITY
# =============================================================================

def extract_keywords(text: str) -> List[str]:
    """Lowercased, de-duplicated, sorted keywords longer than two characters."""
    cleaned = re.sub(r"[^a-z0-9\s_.-]", " ", (text or "").lower())
    words = {w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS}
    return sorted(words)


def _normalize(title: str, content: str) -> str:
    title_kw = extract_keywords(title)
    content_kw = extract_keywords(content)
    # Title keywords count twice so a title change moves the hash
    return "|".join(sorted(title_kw + title_kw + content_kw))


def compute_fingerprint(title: str, content: str = "") -> str:
    """Deterministic 12-char fingerprint of the normalized keywords.

    Independent of word order and of stop words, so rephrasings that keep
    the same significant words collide.
    """
    normalized = _normalize(title, content)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]


def fingerprint_of(memory: dict) -> str:
    """Stored fingerprint, or one computed from the memory's text."""
    return memory.get("fingerprint") or compute_fingerprint(
        memory.get("title", ""), memory.get("content", "")
    )


def content_similarity(a: dict, b: dict) -> float:
    """Weighted overlap: title 0.5, content 0.3, tags 0.2."""
    title_sim = jaccard(set(extract_keywords(a.get("title", ""))),
                        set(extract_keywords(b.get("title", ""))), empty=1.0)
    content_sim = jaccard(set(extract_keywords(a.get("content", ""))),
                          set(extract_keywords(b.get("content", ""))), empty=1.0)
    tag_sim = jaccard(set(a.get("tags") or []), set(b.get("tags") or []), empty=1.0)
    return clamp(title_sim * 0.5 + content_sim * 0.3 + tag_sim * 0.2)


def is_duplicate(candidate: dict, existing: List[dict], threshold: float = DUPLICATE_THRESHOLD) -> dict:
    """Find the closest existing memory and decide whether candidate repeats it.

    An exact fingerprint match is similarity 1.0. Otherwise the best
    content_similarity over non-superseded memories is compared to threshold.

    Returns:
        {"is_duplicate": bool, "existing_id": str | None, "similarity": float}
    """
    fp = compute_fingerprint(candidate.get("title", ""), candidate.get("content", ""))

    for memory in existing:
        if fingerprint_of(memory) == fp:
            return {"is_duplicate": True, "existing_id": memory.get("id"), "similarity": 1.0}

    best_sim = 0.0
    best_id = None
    for memory in existing:
        if memory.get("superseded_by"):
            continue
        sim = content_similarity(candidate, memory)
        # Fingerprints differ, so the texts are not identical
        sim = min(sim, 0.99)
        if sim > best_sim:
            best_sim = sim
            best_id = memory.get("id")

    flagged = best_sim >= threshold
    return {
        "is_duplicate": flagged,
        "existing_id": best_id if flagged else None,
        "similarity": round(best_sim, 4),
    }


# =============================================================================
# QUALITY
# =============================================================================

def assess_quality(candidate: dict) -> float:
    """Score how specific and actionable a candidate is.

    Specificity (title keywords, concrete identifiers), actionability (a rule,
    directive language) and completeness (content, tags, severity for pains
    and decisions). An empty or one-word entry lands below the reject floor.
    """
    title = candidate.get("title") or ""
    content = candidate.get("content") or ""
    rule = (candidate.get("rule") or "").strip()
    tags = candidate.get("tags") or []
    score = 0.0

    title_words = extract_keywords(title)
    if len(title_words) >= 4:
        score += 0.25
    elif len(title_words) >= 2:
        score += 0.15
    elif len(title_words) == 1:
        score += 0.05

    if SPECIFIC_PATTERN.search(title) or SPECIFIC_PATTERN.search(content):
        score += 0.10

    if len(rule) > 10:
        score += 0.25
    elif rule:
        score += 0.10

    if ACTIONABLE_PATTERN.search(content) or ACTIONABLE_PATTERN.search(rule):
        score += 0.10

    content_words = extract_keywords(content)
    if len(content_words) >= 10:
        score += 0.15
    elif len(content_words) >= 4:
        score += 0.10
    elif content_words:
        score += 0.05

    if len(tags) >= 3:
        score += 0.10
    elif tags:
        score += 0.05

    if candidate.get("type") in ("pain", "decision", "architecture"):
        severity = candidate.get("severity")
        if severity == "high":
            score += 0.05
        elif severity == "medium":
            score += 0.03

    return round(clamp(score), 4)


# =============================================================================
# CONFLICTS
# =============================================================================

def _has_contradictory_rule(rule_a: Optional[str], rule_b: Optional[str]) -> bool:
    if not rule_a or not rule_b or len(rule_a) < 5 or len(rule_b) < 5:
        return False
    a, b = rule_a.lower(), rule_b.lower()
    for left, right in OPPOSING_DIRECTIVES:
        if (left.search(a) and right.search(b)) or (right.search(a) and left.search(b)):
            return True
    return False


def detect_conflict(candidate: dict, existing: List[dict], min_tag_overlap: int = MIN_TAG_OVERLAP) -> List[dict]:
    """Find live memories the candidate collides with on a shared topic.

    Returns:
        Conflicts sorted by confidence descending:
        [{"memory": {...}, "confidence": float, "reason": str, "kind": str}]
        kind is "update" (same type, overlapping text), "complementary"
        (pain vs win) or "contradiction" (opposing rule directives).
    """
    cand_tags = set(candidate.get("tags") or [])
    cand_kw = set(extract_keywords(f"{candidate.get('title', '')} {candidate.get('content', '')}"))
    conflicts = []

    for memory in existing:
        if memory.get("superseded_by"):
            continue
        mem_tags = set(memory.get("tags") or [])
        shared = cand_tags & mem_tags
        if len(shared) < min_tag_overlap:
            continue

        tag_ratio = len(shared) / max(len(mem_tags), len(cand_tags))
        mem_kw = set(extract_keywords(f"{memory.get('title', '')} {memory.get('content', '')}"))
        kw_sim = jaccard(cand_kw, mem_kw, empty=1.0)
        same_type = memory.get("type") == candidate.get("type")

        confidence = 0.0
        reason = ""
        kind = ""
        if same_type and kw_sim > 0.4:
            confidence = 0.3 + kw_sim * 0.4 + tag_ratio * 0.3
            reason = (f"same type ({memory.get('type')}), {len(shared)} shared tags, "
                      f"{kw_sim * 100:.0f}% keyword overlap")
            kind = "update"
        elif (candidate.get("type"), memory.get("type")) in COMPLEMENTARY_TYPES:
            confidence = 0.2 + tag_ratio * 0.3
            reason = (f"complementary types ({candidate.get('type')} vs {memory.get('type')}), "
                      f"{len(shared)} shared tags, may resolve")
            kind = "complementary"
        elif _has_contradictory_rule(candidate.get("rule"), memory.get("rule")):
            confidence = 0.7 + tag_ratio * 0.3
            reason = f"contradictory rules with {len(shared)} shared tags"
            kind = "contradiction"

        if confidence > CONFLICT_FLOOR:
            conflicts.append({
                "memory": memory,
                "confidence": round(clamp(confidence), 4),
                "reason": reason,
                "kind": kind,
            })

    conflicts.sort(key=lambda c: c["confidence"], reverse=True)
    return conflicts


def resolve_conflict(candidate: dict, old: dict, strategy: str) -> dict:
    """Apply a resolution strategy to a candidate/old pair.

    Returns:
        keep_new -> {"action": "supersede", "superseded_id": old id}
        keep_old -> {"action": "skip"}
        merge    -> {"action": "merge", "superseded_id", "merged_title",
                     "merged_content", "merged_rule"}
    """
    if strategy == "keep_new":
        return {"action": "supersede", "superseded_id": old.get("id")}
    if strategy == "keep_old":
        return {"action": "skip"}
    if strategy != "merge":
        return {"action": "skip", "reason": f"unknown strategy: {strategy}"}

    new_title = candidate.get("title") or ""
    old_title = old.get("title") or ""
    merged_title = new_title if len(new_title) > len(old_title) else old_title

    old_content = (old.get("content") or "").strip()
    new_content = (candidate.get("content") or "").strip()
    if old_content and new_content and old_content != new_content:
        merged_content = f"{old_content}\n\n[Updated] {new_content}"
    else:
        merged_content = new_content or old_content

    old_rule = (old.get("rule") or "").strip()
    new_rule = (candidate.get("rule") or "").strip()
    if old_rule and new_rule and old_rule != new_rule:
        merged_rule = new_rule if len(new_rule) > len(old_rule) else f"{old_rule} (also: {new_rule})"
    else:
        merged_rule = new_rule or old_rule

    return {
        "action": "merge",
        "superseded_id": old.get("id"),
        "merged_title": merged_title,
        "merged_content": merged_content,
        "merged_rule": merged_rule,
    }


def infer_strategy(candidate: dict, conflict: dict) -> Optional[str]:
    """Pick a strategy for auto-resolution, or None to keep both."""
    old = conflict["memory"]
    if (candidate.get("type"), old.get("type")) in COMPLEMENTARY_TYPES:
        return None
    same_type = candidate.get("type") == old.get("type")
    if same_type and conflict["confidence"] > 0.7:
        return "keep_new"
    if same_type and conflict["confidence"] > 0.5:
        return "merge"
    return None


# =============================================================================
# GATE
# =============================================================================

def quality_gate(
    candidate: dict,
    existing: List[dict],
    min_quality: float = MIN_QUALITY,
    dup_threshold: float = DUPLICATE_THRESHOLD,
    min_tag_overlap: int = MIN_TAG_OVERLAP,
    auto_resolve: bool = False,
) -> dict:
    """Decide whether a candidate memory is accepted, merged or rejected.

    Args:
        candidate: Memory-shaped dict (type, title, content, rule, tags, severity)
        existing: Current memory pool (freshly read)
        min_quality: Reject floor for assess_quality
        dup_threshold: Similarity at which a candidate counts as a duplicate
        min_tag_overlap: Shared tags needed before two memories can conflict
        auto_resolve: Resolve the top same-type conflict instead of only reporting it

    Returns:
        {"action": "accept"|"reject"|"merge", "reason", "quality_score",
         "fingerprint", "conflicts", "supersede_ids"} plus merge fields
        ("merge_target", "merged_title", "merged_content", "merged_rule")
        when action is "merge".
    """
    ok, problem = validate_candidate(candidate)
    if not ok:
        log.debug(f"Gate rejected invalid candidate: {problem}")
        return {"action": "reject", "reason": problem, "quality_score": 0.0,
                "fingerprint": "", "conflicts": [], "supersede_ids": []}

    fingerprint = compute_fingerprint(candidate.get("title", ""), candidate.get("content", ""))
    quality = assess_quality(candidate)
    result = {
        "action": "accept",
        "reason": "",
        "quality_score": quality,
        "fingerprint": fingerprint,
        "conflicts": [],
        "supersede_ids": [],
    }

    if quality < min_quality:
        result.update(action="reject", reason=f"quality below threshold ({quality:.2f} < {min_quality})")
        log.debug(f"Gate rejected '{candidate.get('title')}': {result['reason']}")
        return result

    dup = is_duplicate(candidate, existing, dup_threshold)
    if dup["is_duplicate"]:
        result.update(action="reject",
                      reason=f"duplicate of {dup['existing_id']} (similarity: {dup['similarity']:.2f})")
        log.debug(f"Gate rejected '{candidate.get('title')}': {result['reason']}")
        return result

    conflicts = detect_conflict(candidate, existing, min_tag_overlap)
    result["conflicts"] = conflicts

    if auto_resolve and conflicts:
        top = conflicts[0]
        strategy = infer_strategy(candidate, top)
        if strategy:
            resolution = resolve_conflict(candidate, top["memory"], strategy)
            if resolution["action"] == "merge":
                result.update(
                    action="merge",
                    reason=f"merging with {top['memory'].get('id')}: {top['reason']}",
                    merge_target=top["memory"],
                    merged_title=resolution["merged_title"],
                    merged_content=resolution["merged_content"],
                    merged_rule=resolution["merged_rule"],
                )
                log.debug(f"Gate merged '{candidate.get('title')}' into {top['memory'].get('id')}")
                return result
            if resolution["action"] == "skip":
                result.update(action="reject",
                              reason=f"existing memory {top['memory'].get('id')} is preferred: {top['reason']}")
                return result
        result["supersede_ids"] = [
            c["memory"].get("id") for c in conflicts
            if c["confidence"] > 0.7 and c["memory"].get("type") == candidate.get("type")
        ]

    if conflicts:
        result["reason"] = f"accepted with {len(conflicts)} potential conflict(s)"
    else:
        result["reason"] = "passed all quality checks"
    log.debug(f"Gate accepted '{candidate.get('title')}' (quality {quality:.2f})")
    return result
