#!/usr/bin/env python3
"""Rule learner: generalize clusters of memories into reinforceable rules.

Candidates come from three places:
- pain-pattern: 3+ pains sharing tags -> their most actionable rule
- win-pattern: 3+ wins sharing tags -> their most actionable rule
- contradiction-resolution: a pain and a later win on the same tags -> the win's rule

A candidate matching an existing rule (same kind, 2+ shared tags, rule
keyword overlap > 0.3) reinforces it instead of creating a duplicate.
Confidence grows asymptotically with observations, capped at 0.95; rules
clearing 0.8 over 3+ observations are offered for the instructions file.
"""

import math
import re
from typing import Dict, List, Optional

from .config import LEARNER_DEFAULTS
from .cortex_learner import confidence_for
from .logging_config import get_logger
from .utils import days_since, generate_id, jaccard, now_iso, parse_ts

log = get_logger("brain.rules")

RULE_TYPES = ("pain-pattern", "win-pattern", "contradiction-resolution")
MIN_RULE_CHARS = 10
ACTIONABLE = re.compile(
    r"\b(always|never|must|should|avoid|use|prefer|ensure|check|verify|run|before|after|instead)\b",
    re.IGNORECASE,
)

# First matching tag set decides the documentation section
SECTION_BY_TAGS = [
    ({"git", "deployment"}, "Coding Rules"),
    ({"strategy", "validation"}, "Preferences"),
    ({"memory", "brain", "architecture"}, "Architecture"),
    ({"testing", "debugging"}, "Coding Rules"),
    ({"social", "writing"}, "Direction Capture"),
]
DEFAULT_SECTION = "Coding Rules"


def _rule_words(text: str) -> set:
    return set(re.findall(r"\b[a-z]{3,}\b", (text or "").lower()))


def _usable_rule(memory: dict) -> bool:
    return len((memory.get("rule") or "").strip()) > MIN_RULE_CHARS


def _group_by_tag_overlap(memories: List[dict], min_overlap: int) -> List[List[dict]]:
    """Greedy grouping: each seed (most-tagged first) claims every unused memory it overlaps."""
    used = set()
    groups = []
    ordered = sorted(memories, key=lambda m: len(m.get("tags") or []), reverse=True)
    for seed in ordered:
        if seed["id"] in used:
            continue
        group = [seed]
        used.add(seed["id"])
        seed_tags = set(seed.get("tags") or [])
        for other in ordered:
            if other["id"] in used:
                continue
            if len(seed_tags & set(other.get("tags") or [])) >= min_overlap:
                group.append(other)
                used.add(other["id"])
        groups.append(group)
    return groups


def _common_rule(group: List[dict], rule_type: str) -> Optional[dict]:
    counts: Dict[str, int] = {}
    for memory in group:
        for tag in memory.get("tags") or []:
            counts[tag] = counts.get(tag, 0) + 1
    quorum = math.ceil(len(group) / 2)
    common = [tag for tag, n in counts.items() if n >= quorum]
    if not common:
        return None

    rules = [m["rule"].strip() for m in group if _usable_rule(m)]
    if not rules:
        return None
    best = max(rules, key=lambda r: len(r) * (2 if ACTIONABLE.search(r) else 1))
    return {
        "rule": best,
        "tags": common,
        "source_memory_ids": [m["id"] for m in group],
        "confidence": min(0.9, 0.3 + len(group) * 0.15),
        "type": rule_type,
    }


def _contradiction_candidates(pains: List[dict], wins: List[dict], min_overlap: int) -> List[dict]:
    candidates = []
    used_wins = set()
    for pain in pains:
        pain_tags = set(pain.get("tags") or [])
        pain_ts = parse_ts(pain.get("created_at"))
        matching = []
        for win in wins:
            if win["id"] in used_wins:
                continue
            if len(pain_tags & set(win.get("tags") or [])) < min_overlap:
                continue
            win_ts = parse_ts(win.get("created_at"))
            if pain_ts and win_ts and win_ts < pain_ts:
                continue
            matching.append(win)
        if not matching:
            continue
        used_wins.update(w["id"] for w in matching)

        shared = [t for t in pain.get("tags") or [] if any(t in (w.get("tags") or []) for w in matching)]
        win_rules = sorted((w["rule"].strip() for w in matching), key=len, reverse=True)
        rule = win_rules[0] if win_rules else f"Avoid: {pain['rule'].strip()}"
        candidates.append({
            "rule": rule,
            "tags": shared,
            "source_memory_ids": [pain["id"]] + [w["id"] for w in matching],
            "confidence": min(0.85, 0.4 + (1 + len(matching)) * 0.1),
            "type": "contradiction-resolution",
        })
    return candidates


def extract_rule_candidates(memories: List[dict],
                            min_group: int = LEARNER_DEFAULTS["rule_min_group"],
                            min_tag_overlap: int = LEARNER_DEFAULTS["rule_min_tag_overlap"]) -> List[dict]:
    """Mine rule candidates from live pains and wins that carry a usable rule.

    Returns:
        [{"rule", "tags", "source_memory_ids", "confidence", "type"}] best first
    """
    live = [m for m in memories if not m.get("superseded_by") and _usable_rule(m)]
    pains = [m for m in live if m.get("type") == "pain"]
    wins = [m for m in live if m.get("type") == "win"]

    candidates = []
    for group in _group_by_tag_overlap(pains, min_tag_overlap):
        if len(group) >= min_group:
            candidate = _common_rule(group, "pain-pattern")
            if candidate:
                candidates.append(candidate)
    for group in _group_by_tag_overlap(wins, min_tag_overlap):
        if len(group) >= min_group:
            candidate = _common_rule(group, "win-pattern")
            if candidate:
                candidates.append(candidate)
    candidates.extend(_contradiction_candidates(pains, wins, min_tag_overlap))

    candidates.sort(key=lambda c: c["confidence"], reverse=True)
    return candidates


def _find_matching_rule(candidate: dict, rules: List[dict]) -> Optional[dict]:
    cand_words = _rule_words(candidate["rule"])
    for rule in rules:
        if rule.get("type") != candidate["type"]:
            continue
        if len(set(rule.get("tags") or []) & set(candidate["tags"])) < 2:
            continue
        if jaccard(_rule_words(rule.get("rule")), cand_words) > 0.3:
            return rule
    return None


def learn_rules(candidates: List[dict], existing: List[dict],
                min_confidence: float = LEARNER_DEFAULTS["rule_min_confidence"]) -> dict:
    """Reinforce matching rules or create new ones.

    Returns:
        {"rules": all rules after learning, "new_rules": [...], "reinforced": [...]}
    """
    rules = [dict(r) for r in existing]
    new_rules: List[dict] = []
    reinforced_ids: List[str] = []
    timestamp = now_iso()

    for candidate in candidates:
        match = _find_matching_rule(candidate, rules)
        if match is not None:
            match["observation_count"] = match.get("observation_count", 1) + 1
            match["confidence"] = round(max(match.get("confidence", 0.0),
                                            confidence_for(match["observation_count"])), 4)
            match["last_reinforced"] = timestamp
            sources = list(match.get("source_memory_ids") or [])
            for mem_id in candidate["source_memory_ids"]:
                if mem_id not in sources:
                    sources.append(mem_id)
            match["source_memory_ids"] = sources
            if len(candidate["rule"]) > len(match.get("rule") or ""):
                match["rule"] = candidate["rule"]
            if match["id"] not in reinforced_ids:
                reinforced_ids.append(match["id"])
        elif candidate["confidence"] >= min_confidence:
            rule = {
                "id": generate_id("rule"),
                "rule": candidate["rule"],
                "tags": list(candidate["tags"]),
                "source_memory_ids": list(candidate["source_memory_ids"]),
                "confidence": round(min(LEARNER_DEFAULTS["confidence_cap"], candidate["confidence"]), 4),
                "observation_count": 1,
                "type": candidate["type"],
                "promoted": False,
                "created_at": timestamp,
                "last_reinforced": timestamp,
            }
            rules.append(rule)
            new_rules.append(rule)

    if new_rules or reinforced_ids:
        log.debug(f"Rule learning: {len(new_rules)} new, {len(reinforced_ids)} reinforced")
    return {
        "rules": rules,
        "new_rules": new_rules,
        "reinforced": [r for r in rules if r["id"] in reinforced_ids],
    }


def infer_section(rule: dict) -> str:
    tags = set(rule.get("tags") or [])
    for keys, section in SECTION_BY_TAGS:
        if tags & keys:
            return section
    return DEFAULT_SECTION


def format_rule(rule: dict) -> str:
    label = {"pain-pattern": "pain", "win-pattern": "win"}.get(rule.get("type"), "resolution")
    return (f"- **Learned ({label}):** {rule.get('rule')} "
            f"(confidence: {rule.get('confidence', 0.0) * 100:.0f}%, "
            f"{rule.get('observation_count', 0)} observations)")


def get_documentation_candidates(rules: List[dict],
                                 min_confidence: float = LEARNER_DEFAULTS["rule_promote_confidence"],
                                 min_observations: int = LEARNER_DEFAULTS["rule_promote_observations"]) -> List[dict]:
    """Rules ready for the persistent instructions file.

    Returns:
        [{"rule": {...}, "section": str, "formatted_rule": str}] by confidence
    """
    ready = [
        r for r in rules
        if not r.get("promoted")
        and r.get("confidence", 0.0) >= min_confidence
        and r.get("observation_count", 0) >= min_observations
    ]
    ready.sort(key=lambda r: r.get("confidence", 0.0), reverse=True)
    return [{"rule": r, "section": infer_section(r), "formatted_rule": format_rule(r)} for r in ready]


def prune_stale_rules(rules: List[dict], max_age_days: int = LEARNER_DEFAULTS["rule_max_age_days"]) -> dict:
    """Split rules into kept and pruned by last reinforcement; promoted rules are permanent."""
    kept, pruned = [], []
    for rule in rules:
        if not rule.get("promoted") and days_since(rule.get("last_reinforced")) > max_age_days:
            pruned.append(rule)
        else:
            kept.append(rule)
    return {"kept": kept, "pruned": pruned}


def create_empty_rule_store() -> dict:
    return {"rules": [], "last_updated": now_iso()}
