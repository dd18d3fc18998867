#!/usr/bin/env python3
"""Reflection: predictions, surprises, meta-observations and consolidations.

A reflection is described by a content dict:

    {"kind": "prediction" | "surprise" | "meta-observation" | "consolidation",
     "summary": str, "detail": str, "confidence": float,
     "linked_memory_ids": [...], ...kind-specific fields}

create_reflection() turns that into a memory record of type "reflection".
Everything here is a pure transform; the store persists the results.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .config import REFLECTION_DEFAULTS
from .logging_config import get_logger
from .models import new_memory
from .quality_gate import compute_fingerprint
from .utils import STOP_WORDS, WORD_PATTERN, now_iso, parse_ts

log = get_logger("brain.reflection")

REFLECTION_KINDS = ("prediction", "surprise", "meta-observation", "consolidation")
PATTERN_TYPES = ("recurring-failure", "contradiction", "knowledge-gap", "strength")
OUTCOME_VALUE = {"success": 1.0, "partial": 0.5, "failure": 0.0}

PHASE_MULTIPLIER = {"mid": 1.0, "early": 0.5, "late": 0.3}
HIGH_ACTIVITY_TRACES = 4
MAX_REFLECTION_TAGS = 12


# =============================================================================
# Reflection records
# =============================================================================

def _actionable_text(content: dict) -> str:
    kind = content.get("kind")
    if kind == "surprise":
        return content.get("lesson") or ""
    if kind == "consolidation":
        return content.get("abstracted_rule") or ""
    if kind == "prediction":
        return content.get("basis") or ""
    return content.get("summary") or ""


def compute_quality_score(content: dict) -> float:
    """Quality of a reflection from confidence, evidence, actionability and summary length."""
    score = content.get("confidence", 0.0) * 0.35
    score += min(0.25, len(content.get("linked_memory_ids") or []) * 0.05)

    summary = content.get("summary") or ""
    if content.get("kind") in ("surprise", "consolidation"):
        score += 0.2 if _actionable_text(content) else 0.05
    else:
        score += 0.15 if len(summary) > 20 else 0.05

    if 20 <= len(summary) <= 200:
        score += 0.2
    elif len(summary) >= 10:
        score += 0.1
    return round(max(0.0, min(1.0, score)), 4)


def _reflection_severity(content: dict) -> str:
    kind = content.get("kind")
    if kind == "surprise":
        surprise = content.get("surprise_score", 0.0)
        if surprise >= 0.7:
            return "high"
        return "medium" if surprise >= 0.4 else "low"
    if kind == "meta-observation":
        pattern = content.get("pattern_type")
        if pattern in ("recurring-failure", "contradiction"):
            return "high"
        return "medium" if pattern == "knowledge-gap" else "low"
    return "medium" if content.get("confidence", 0.0) >= 0.8 else "low"


def _reflection_tags(content: dict) -> List[str]:
    tags = ["reflection", content["kind"]]
    extra = []
    if content["kind"] == "meta-observation":
        extra = [content.get("pattern_type")] + list(content.get("affected_tags") or [])
    elif content["kind"] == "consolidation":
        extra = list(content.get("merged_tags") or [])
    words = WORD_PATTERN.findall((content.get("summary") or "").lower())
    extra += [w for w in words if len(w) > 4 and w not in STOP_WORDS]
    for tag in extra:
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:MAX_REFLECTION_TAGS]


def reflection_title(content: dict) -> str:
    return f"[{content['kind']}] {content.get('summary', '')}"


def create_reflection(content: dict, project_id: str = "default") -> dict:
    """Build a reflection memory from a content dict.

    Links come from linked_memory_ids (all "related"); the rule comes from
    the lesson, basis, abstracted rule or summary depending on kind.
    """
    title = reflection_title(content)
    timestamp = now_iso()
    linked = list(content.get("linked_memory_ids") or [])

    outcome = None
    if content["kind"] == "prediction":
        outcome = content.get("predicted_outcome")
    elif content["kind"] == "surprise":
        outcome = content.get("actual_outcome")

    return new_memory(
        type="reflection",
        title=title,
        content=content.get("detail") or "",
        rule=_actionable_text(content),
        tags=_reflection_tags(content),
        severity=_reflection_severity(content),
        project_id=project_id,
        fingerprint=compute_fingerprint(title, content.get("detail") or ""),
        quality_score=compute_quality_score(content),
        links=[{"target_id": t, "relationship": "related", "created_at": timestamp} for t in linked],
        surfaced_memory_ids=linked,
        outcome=outcome,
    )


def is_duplicate_reflection(content: dict, existing: List[dict]) -> bool:
    fingerprint = compute_fingerprint(reflection_title(content), content.get("detail") or "")
    return any(m.get("fingerprint") == fingerprint for m in existing)


# =============================================================================
# Prediction and surprise
# =============================================================================

def generate_prediction(context: dict, scored: List[dict]) -> dict:
    """Predict the outcome of upcoming work from retrieved memories.

    Args:
        context: {"task_title", "task_description", "workflow_phase"}
        scored: retrieval entries, each {"memory", "score", ...}

    Returns:
        Prediction content dict with predicted_outcome and basis
    """
    pains = sorted((s for s in scored if s["memory"].get("type") == "pain"), key=lambda s: s["score"], reverse=True)
    wins = sorted((s for s in scored if s["memory"].get("type") == "win"), key=lambda s: s["score"], reverse=True)
    total = len(scored)
    severity_weight = {"high": 1.0, "medium": 0.6}

    risk = sum(s["score"] * severity_weight.get(s["memory"].get("severity"), 0.3) for s in pains)
    risk = min(1.0, risk / max(1, total)) if total else 0.0
    support = sum(s["score"] * 0.5 for s in wins)
    support = min(1.0, support / max(1, total)) if total else 0.5

    if total == 0:
        outcome, confidence = "partial", 0.2
    elif risk > 0.6 and len(pains) > len(wins) * 2:
        outcome, confidence = "failure", min(0.9, 0.4 + risk * 0.4)
    elif risk > 0.3 or len(pains) >= len(wins):
        outcome, confidence = "partial", 0.3 + abs(risk - support) * 0.3
    else:
        outcome, confidence = "success", min(0.9, 0.4 + support * 0.4)

    basis_parts = [f'Pain: "{s["memory"].get("title")}" (score {s["score"]:.2f})' for s in pains[:2]]
    basis_parts += [f'Win: "{s["memory"].get("title")}" (score {s["score"]:.2f})' for s in wins[:2]]
    if total == 0:
        basis_parts.append("No relevant memories found, prediction based on neutral prior")
    basis = "; ".join(basis_parts)

    task_title = context.get("task_title", "")
    top = sorted(scored, key=lambda s: s["score"], reverse=True)[:6]
    return {
        "kind": "prediction",
        "summary": f"Predicting {outcome} for: {task_title}",
        "detail": "\n".join([
            f"Task: {task_title}",
            f"Phase: {context.get('workflow_phase', '')}",
            f"Relevant memories: {total} ({len(pains)} pain, {len(wins)} win)",
            f"Risk signal: {risk:.2f}, Confidence signal: {support:.2f}",
            basis,
        ]),
        "confidence": round(confidence, 4),
        "linked_memory_ids": [s["memory"]["id"] for s in top],
        "predicted_outcome": outcome,
        "basis": basis,
    }


def detect_surprise(prediction: dict, actual_outcome: str) -> dict:
    """Compare a prediction with what happened.

    surprise = |predicted - actual| * (0.5 + 0.5 * prediction confidence)
    over outcome values success 1.0, partial 0.5, failure 0.0.
    """
    predicted = prediction.get("predicted_outcome", "partial")
    predicted_value = OUTCOME_VALUE.get(predicted, 0.5)
    actual_value = OUTCOME_VALUE.get(actual_outcome, 0.5)
    pred_confidence = prediction.get("confidence", 0.0)
    surprise = min(1.0, abs(predicted_value - actual_value) * (0.5 + pred_confidence * 0.5))

    if actual_value > predicted_value:
        direction = "better"
    elif actual_value < predicted_value:
        direction = "worse"
    else:
        direction = "as expected"

    if surprise < REFLECTION_DEFAULTS["min_surprise"]:
        lesson = f"Outcome matched prediction ({predicted} -> {actual_outcome}). No correction needed."
    elif direction == "better":
        lesson = (f"Outcome was better than predicted ({predicted} -> {actual_outcome}). "
                  f"The identified risks may be less severe than thought.")
    else:
        lesson = (f"Outcome was worse than predicted ({predicted} -> {actual_outcome}). "
                  f"Review pain memories for this domain for missed risks.")

    label = "Expected" if direction == "as expected" else f"Surprise ({direction})"
    return {
        "kind": "surprise",
        "summary": f"{label}: predicted {predicted}, got {actual_outcome}",
        "detail": "\n".join([
            f"Prediction: {predicted} (confidence: {pred_confidence:.2f})",
            f"Actual: {actual_outcome}",
            f"Surprise score: {surprise:.2f}",
            f"Direction: {direction}",
            f"Original basis: {prediction.get('basis', '')}",
        ]),
        "confidence": round(min(0.95, 0.5 + surprise * 0.4), 4),
        "linked_memory_ids": list(prediction.get("linked_memory_ids") or []),
        "prediction_id": prediction.get("id", ""),
        "surprise_score": round(surprise, 4),
        "predicted_outcome": predicted,
        "actual_outcome": actual_outcome,
        "lesson": lesson,
    }


# =============================================================================
# Meta-observations
# =============================================================================

def _meta(summary: str, detail: List[str], confidence: float, linked: List[str],
          pattern: str, tag: str) -> dict:
    return {
        "kind": "meta-observation",
        "summary": summary,
        "detail": "\n".join(detail),
        "confidence": round(confidence, 4),
        "linked_memory_ids": linked,
        "pattern_type": pattern,
        "affected_tags": [tag],
    }


def generate_meta_observations(memories: List[dict],
                               min_memories: int = REFLECTION_DEFAULTS["min_memories_for_meta"],
                               limit: int = REFLECTION_DEFAULTS["max_observations"]) -> List[dict]:
    """Detect recurring failures, contradictions, knowledge gaps and strengths by tag.

    Pains and facts count as negative evidence, wins as positive;
    reflections are ignored. Returns at most `limit` observations, most
    confident first.
    """
    if len(memories) < min_memories:
        return []

    pains_by_tag: Dict[str, List[dict]] = {}
    wins_by_tag: Dict[str, List[dict]] = {}
    for memory in memories:
        kind = memory.get("type")
        if kind in ("pain", "fact"):
            target = pains_by_tag
        elif kind == "win":
            target = wins_by_tag
        else:
            continue
        for tag in memory.get("tags") or []:
            target.setdefault(tag, []).append(memory)

    observations = []
    for tag, pains in pains_by_tag.items():
        wins = wins_by_tag.get(tag, [])
        if len(pains) >= 3:
            observations.append(_meta(
                f'Recurring failure pattern in "{tag}" domain ({len(pains)} pain memories)',
                [f'Tag "{tag}" appears in {len(pains)} pain memories recently.',
                 f"Examples: {'; '.join(m.get('title', '') for m in pains[:3])}",
                 "Look for a root cause that has not been addressed."],
                min(0.9, 0.5 + len(pains) * 0.1),
                [m["id"] for m in pains[:6]], "recurring-failure", tag,
            ))
        if len(pains) >= 2 and len(wins) >= 2:
            observations.append(_meta(
                f'Contradictory signals in "{tag}" domain ({len(pains)} pain, {len(wins)} win)',
                [f'Tag "{tag}" has both pain ({len(pains)}) and win ({len(wins)}) memories.',
                 f"Pain examples: {'; '.join(m.get('title', '') for m in pains[:2])}",
                 f"Win examples: {'; '.join(m.get('title', '') for m in wins[:2])}"],
                0.6,
                [m["id"] for m in pains[:3]] + [m["id"] for m in wins[:3]], "contradiction", tag,
            ))
        if len(pains) >= 2 and not wins:
            observations.append(_meta(
                f'Knowledge gap: "{tag}" has {len(pains)} pains but no wins',
                [f'Tag "{tag}" has {len(pains)} pain memories and no successful resolution yet.'],
                0.7,
                [m["id"] for m in pains[:4]], "knowledge-gap", tag,
            ))

    for tag, wins in wins_by_tag.items():
        if len(wins) >= 3 and tag not in pains_by_tag:
            observations.append(_meta(
                f'Strength identified: "{tag}" domain ({len(wins)} wins, 0 pains)',
                [f'Tag "{tag}" has {len(wins)} win memories with no corresponding pains.'],
                min(0.9, 0.5 + len(wins) * 0.1),
                [m["id"] for m in wins[:4]], "strength", tag,
            ))

    observations.sort(key=lambda o: o["confidence"], reverse=True)
    return observations[:limit]


# =============================================================================
# Trigger
# =============================================================================

def should_reflect(state: dict, interval: int = REFLECTION_DEFAULTS["interval"],
                   min_events: int = REFLECTION_DEFAULTS["min_significant_events"],
                   min_messages: int = REFLECTION_DEFAULTS["min_session_messages"]) -> dict:
    """Decide whether to reflect now.

    Returns:
        {"reflect": bool, "reason": str}
    """
    count = state.get("message_count", 0)
    events = state.get("significant_events_since_checkpoint", 0)
    phase = state.get("context_phase", "early")

    if count < min_messages:
        return {"reflect": False, "reason": f"Too early in session (< {min_messages} messages)"}

    interval_hit = count % interval == 0
    enough_events = events >= min_events
    multiplier = PHASE_MULTIPLIER.get(phase, 0.5)
    active = len(state.get("active_traces") or [])

    if interval_hit and enough_events:
        return {"reflect": True, "reason": f"Interval hit (msg {count}) with {events} significant events"}
    if enough_events and active >= HIGH_ACTIVITY_TRACES and multiplier >= 0.5:
        return {"reflect": True,
                "reason": f"{events} significant events + high activity ({active} traces) in {phase} phase"}
    if events >= min_events * 2:
        return {"reflect": True, "reason": f"High event count ({events}) warrants reflection"}
    if interval_hit and multiplier >= 0.5:
        return {"reflect": True, "reason": f"Interval hit (msg {count}) in {phase} phase"}
    return {"reflect": False, "reason": f"No trigger: msg {count}, events {events}, phase {phase}"}


# =============================================================================
# Consolidation
# =============================================================================

def _abstract_rules(rules: List[str]) -> str:
    """Longest rule, plus up to two others that add at least two new words."""
    ordered = sorted(rules, key=len, reverse=True)
    primary = ordered[0]
    primary_lower = primary.lower()
    supplements = []
    for rule in ordered[1:]:
        if len(rule) < 10:
            continue
        novel = [w for w in rule.lower().split() if len(w) > 4 and w not in primary_lower]
        if len(novel) >= 2:
            supplements.append(rule if len(rule) <= 150 else rule[:147] + "...")
    if not supplements:
        return primary
    return f"{primary} Additionally: " + " Additionally: ".join(supplements[:2])


def _summarize_outcomes(outcomes: List[str]) -> str:
    parts = []
    for outcome in ("success", "partial", "failure"):
        n = outcomes.count(outcome)
        if n:
            parts.append(f"{n} {outcome}")
    return ", ".join(parts)


def generate_consolidation(cluster: List[dict]) -> Optional[dict]:
    """Abstract a cluster of related memories into one consolidation content dict."""
    if len(cluster) < 2:
        return None

    counts: Dict[str, int] = {}
    for memory in cluster:
        for tag in memory.get("tags") or []:
            counts[tag] = counts.get(tag, 0) + 1
    quorum = math.ceil(len(cluster) / 2)
    common = [tag for tag, n in counts.items() if n >= quorum]
    if not common:
        return None

    rules = [m["rule"] for m in cluster if m.get("rule")]
    if rules:
        abstracted = _abstract_rules(rules)
    else:
        abstracted = f"Pattern across {len(cluster)} memories in [{', '.join(common[:3])}] domain"

    outcomes = _summarize_outcomes([m["outcome"] for m in cluster if m.get("outcome")])
    lines = [f"Consolidated from {len(cluster)} memories:"]
    lines += [f"  - {m.get('title', '')}" for m in cluster]
    lines.append(f"Common tags: {', '.join(common)}")
    if outcomes:
        lines.append(f"Outcomes: {outcomes}")
    lines.append(f"Abstracted rule: {abstracted}")

    source_ids = [m["id"] for m in cluster]
    return {
        "kind": "consolidation",
        "summary": f"Consolidated insight: {', '.join(common[:3])} domain ({len(cluster)} sources)",
        "detail": "\n".join(lines),
        "confidence": round(min(0.9, 0.4 + len(cluster) * 0.1), 4),
        "linked_memory_ids": source_ids,
        "source_memory_ids": source_ids,
        "merged_tags": common,
        "abstracted_rule": abstracted,
    }


def cluster_by_tag_overlap(memories: List[dict], min_overlap: int = 2, min_size: int = 3) -> List[List[dict]]:
    """Greedy clustering; a seed's tag set grows with each member it absorbs."""
    clusters = []
    assigned = set()
    ordered = sorted(memories, key=lambda m: len(m.get("tags") or []), reverse=True)
    for seed in ordered:
        if seed["id"] in assigned:
            continue
        cluster = [seed]
        seed_tags = set(seed.get("tags") or [])
        for candidate in ordered:
            if candidate["id"] == seed["id"] or candidate["id"] in assigned:
                continue
            if len(seed_tags & set(candidate.get("tags") or [])) >= min_overlap:
                cluster.append(candidate)
                seed_tags.update(candidate.get("tags") or [])
        if len(cluster) >= min_size:
            assigned.update(m["id"] for m in cluster)
            clusters.append(cluster)
    return clusters


def filter_recent_memories(memories: List[dict], window_days: int = REFLECTION_DEFAULTS["recent_window_days"],
                           now: Optional[datetime] = None) -> List[dict]:
    cutoff = (now or datetime.now()) - timedelta(days=window_days)
    recent = []
    for memory in memories:
        created = parse_ts(memory.get("created_at"))
        if created is not None and created >= cutoff:
            recent.append(memory)
    return recent


def run_reflection(memories: List[dict], state: dict, force: bool = False) -> dict:
    """One reflection cycle over recent memories.

    Returns:
        {"reflect", "reason", "reflections": new reflection memories}
    """
    decision = should_reflect(state)
    if not decision["reflect"] and not force:
        return {**decision, "reflections": []}

    recent = [m for m in filter_recent_memories(memories)
              if m.get("type") != "reflection" and not m.get("superseded_by")]
    existing = [m for m in memories if m.get("type") == "reflection"]

    contents = generate_meta_observations(recent)
    for cluster in cluster_by_tag_overlap(recent):
        consolidation = generate_consolidation(cluster)
        if consolidation:
            contents.append(consolidation)

    reflections = [create_reflection(c) for c in contents if not is_duplicate_reflection(c, existing)]
    log.info(f"Reflection produced {len(reflections)} of {len(contents)} candidates ({decision['reason']})")
    return {"reflect": True, "reason": decision["reason"], "reflections": reflections}
