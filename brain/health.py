#!/usr/bin/env python3
"""Brain health report: memory, cortex, rule and session stats with a letter grade."""

from datetime import datetime
from typing import List, Optional, Tuple

from .config import LEARNER_DEFAULTS
from .scoring import HEALTH_CLASSES, classify_health, score_memory
from .utils import days_since, now_iso

GRADE_THRESHOLDS = [(90, "A"), (75, "B"), (60, "C"), (40, "D")]
GRADE_ORDER = "ABCDF"


def _letter(score: int) -> str:
    for floor, letter in GRADE_THRESHOLDS:
        if score >= floor:
            return letter
    return "F"


def _cap(grade: str, worst_allowed: str) -> str:
    return grade if GRADE_ORDER.index(grade) >= GRADE_ORDER.index(worst_allowed) else worst_allowed


def compute_grade(memories: List[dict], by_health: dict, cortex_count: int,
                  brain_state: Optional[dict]) -> Tuple[str, List[str], List[str]]:
    """Deduct from 100 for each problem found; returns (grade, issues, recommendations)."""
    issues: List[str] = []
    recommendations: List[str] = []
    score = 100
    total = len(memories)

    if total == 0:
        score -= 40
        issues.append("No memories stored")
        recommendations.append("Store pain and win memories as you work")

    stale_ratio = (by_health["stale"] + by_health["superseded"]) / total if total else 0.0
    if stale_ratio > 0.3:
        score -= 20
        issues.append(f"{stale_ratio * 100:.0f}% of memories are stale or superseded")
        recommendations.append("Run memory pruning to archive dead memories")
    elif stale_ratio > 0.15:
        score -= 10
        issues.append(f"{stale_ratio * 100:.0f}% of memories are stale or superseded")

    if by_health["harmful"]:
        score -= 15
        issues.append(f"{by_health['harmful']} harmful memories (correlated with failures)")
        recommendations.append("Review and update harmful memories")

    if total > 20:
        quality_coverage = sum(1 for m in memories if m.get("quality_score") is not None) / total
        if quality_coverage < 0.5:
            score -= 10
            issues.append(f"Only {quality_coverage * 100:.0f}% of memories have quality scores")
            recommendations.append("Quality scores are assigned as new memories pass the gate")
        link_coverage = sum(1 for m in memories if m.get("links")) / total
        if link_coverage < 0.1:
            score -= 5
            recommendations.append("Memory linking will improve as the linker discovers relationships")

    if cortex_count == 0 and total > 50:
        score -= 5
        recommendations.append("Cortex learning is active, gaps will be learned over time")

    if not brain_state:
        score -= 10
        issues.append("No brain state found")

    grade = _letter(score)
    if total == 0 and not brain_state:
        grade = "F"
    elif total == 0 or not brain_state:
        grade = _cap(grade, "D")
    return grade, issues, recommendations


def generate_health_report(memories: List[dict], brain_state: Optional[dict],
                           learned_cortex: List[dict], learned_rules: List[dict],
                           default_cortex_size: int = 0, total_gaps_processed: int = 0,
                           now: Optional[datetime] = None) -> dict:
    """Snapshot of every subsystem plus grade, issues and recommendations."""
    now = now or datetime.now()
    by_type: dict = {}
    by_health = {name: 0 for name in HEALTH_CLASSES}
    qualities = []
    total_age = 0.0

    for memory in memories:
        by_type[memory.get("type")] = by_type.get(memory.get("type"), 0) + 1
        by_health[classify_health(memory, score_memory(memory, now))] += 1
        if memory.get("quality_score") is not None:
            qualities.append(memory["quality_score"])
        total_age += days_since(memory.get("created_at"), now)

    rules_by_type: dict = {}
    doc_candidates = 0
    for rule in learned_rules:
        rules_by_type[rule.get("type")] = rules_by_type.get(rule.get("type"), 0) + 1
        if (not rule.get("promoted")
                and rule.get("confidence", 0.0) >= LEARNER_DEFAULTS["rule_promote_confidence"]
                and rule.get("observation_count", 0) >= LEARNER_DEFAULTS["rule_promote_observations"]):
            doc_candidates += 1

    promotion_candidates = sum(
        1 for e in learned_cortex
        if not e.get("promoted")
        and e.get("confidence", 0.0) >= LEARNER_DEFAULTS["cortex_promote_confidence"]
        and e.get("observation_count", 0) >= LEARNER_DEFAULTS["cortex_promote_observations"]
    )

    grade, issues, recommendations = compute_grade(memories, by_health, len(learned_cortex), brain_state)
    state = brain_state or {}
    return {
        "timestamp": now_iso(),
        "memories": {
            "total": len(memories),
            "by_type": by_type,
            "by_health": by_health,
            "with_links": sum(1 for m in memories if m.get("links")),
            "with_fingerprint": sum(1 for m in memories if m.get("fingerprint")),
            "with_quality_score": len(qualities),
            "average_quality": round(sum(qualities) / len(qualities), 4) if qualities else 0.0,
            "average_age": round(total_age / len(memories), 2) if memories else 0.0,
        },
        "cortex": {
            "default_entries": default_cortex_size,
            "learned_entries": len(learned_cortex),
            "promotion_candidates": promotion_candidates,
            "total_gaps_processed": total_gaps_processed,
        },
        "rules": {
            "total": len(learned_rules),
            "by_type": rules_by_type,
            "documentation_candidates": doc_candidates,
            "average_confidence": round(
                sum(r.get("confidence", 0.0) for r in learned_rules) / len(learned_rules), 4
            ) if learned_rules else 0.0,
        },
        "brain_state": {
            "message_count": state.get("message_count", 0),
            "context_phase": state.get("context_phase", "early"),
            "active_traces": len(state.get("active_traces") or []),
            "significant_events": state.get("significant_events_since_checkpoint", 0),
            "synaptic_activity_tags": len(state.get("synaptic_activity") or {}),
        },
        "grade": grade,
        "issues": issues,
        "recommendations": recommendations,
    }


def format_health_report(report: dict) -> str:
    mem = report["memories"]
    health = mem["by_health"]
    lines = [f"Brain Health: {report['grade']}", ""]
    lines.append(f"Memories: {mem['total']} total")
    lines.append(f"  Types: {', '.join(f'{k}: {v}' for k, v in mem['by_type'].items())}")
    lines.append(f"  Health: active={health['active']}, aging={health['aging']}, "
                 f"stale={health['stale']}, superseded={health['superseded']}")
    if mem["average_quality"] > 0:
        lines.append(f"  Avg quality: {mem['average_quality']:.2f}, avg age: {mem['average_age']:.0f}d")
    lines.append(f"  Linked: {mem['with_links']}, fingerprinted: {mem['with_fingerprint']}")

    cortex = report["cortex"]
    lines += ["", f"Cortex: {cortex['default_entries']} default + {cortex['learned_entries']} learned",
              f"  Gaps processed: {cortex['total_gaps_processed']}, "
              f"promotion candidates: {cortex['promotion_candidates']}"]

    rules = report["rules"]
    lines += ["", f"Rules: {rules['total']} learned"]
    if rules["total"]:
        lines.append(f"  Types: {', '.join(f'{k}: {v}' for k, v in rules['by_type'].items())}")
        lines.append(f"  Avg confidence: {rules['average_confidence']:.2f}, "
                     f"documentation candidates: {rules['documentation_candidates']}")

    state = report["brain_state"]
    lines += ["", f"Session: msg {state['message_count']}, phase {state['context_phase']}",
              f"  Active traces: {state['active_traces']}, significant events: {state['significant_events']}"]

    for heading, key in (("Issues:", "issues"), ("Recommendations:", "recommendations")):
        if report[key]:
            lines += ["", heading] + [f"  - {item}" for item in report[key]]
    return "\n".join(lines)
