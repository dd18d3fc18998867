#!/usr/bin/env python3
"""Prediction-error capture: store surprises, not routine events.

An expectation model counts how often each coarse event signature has been
seen (with time decay). A new event's expectedness in [0, 1] is estimated
from that model; events below an adaptive threshold become memories.

    expectedness = 0.4 * frequency + 0.15 * proportion + 0.3 * recency + 0.15 * fatigue
    frequency    = min(1, log2(decayed_count + 1) / 4)
    proportion   = min(1, 5 * count / total_events)
    recency      = 0.8 (<1h), 0.5 (<4h), 0.2 (<24h), else 0
    fatigue      = min(0.15, 0.005 * session_messages)

A never-seen signature is 0.0 exactly.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional

from .config import PREDICTION_DEFAULTS
from .logging_config import get_logger
from .utils import clamp, days_since, now_iso, parse_ts

log = get_logger("brain.prediction")

BASE_THRESHOLD = PREDICTION_DEFAULTS["base_threshold"]
MIN_THRESHOLD = PREDICTION_DEFAULTS["min_threshold"]
MAX_THRESHOLD = PREDICTION_DEFAULTS["max_threshold"]
DENSITY_WINDOW_HOURS = PREDICTION_DEFAULTS["density_window_hours"]
DENSITY_SOFT_CAP = PREDICTION_DEFAULTS["density_soft_cap"]
DENSITY_FLOOR = PREDICTION_DEFAULTS["density_floor"]
FREQUENCY_DECAY_RATE = PREDICTION_DEFAULTS["decay_per_day"]
MAX_FREQUENCY_ENTRIES = PREDICTION_DEFAULTS["max_entries"]
FORGET_FLOOR = PREDICTION_DEFAULTS["forget_floor"]
HIGH_SURPRISE_CUTOFF = PREDICTION_DEFAULTS["high_surprise_cutoff"]

EVENT_CATEGORIES = ("error", "tool_result", "user_pattern", "system")
OUTCOME_CLASSES = ("success", "failure", "unexpected_success", "partial")


@dataclass
class PredictionEvent:
    category: str                       # one of EVENT_CATEGORIES
    description: str
    subcategory: Optional[str] = None
    details: Optional[str] = None
    title: Optional[str] = None
    lesson: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    severity: Optional[str] = None
    valence: Optional[str] = None       # positive | negative | neutral
    error_class: Optional[str] = None
    tool_name: Optional[str] = None
    outcome_class: Optional[str] = None  # one of OUTCOME_CLASSES
    pattern_type: Optional[str] = None


# =============================================================================
# EXPECTATION MODEL
# =============================================================================

def create_event_signature(event: dict) -> str:
    """Coarse class of an event; free-text detail is deliberately ignored."""
    parts = [event.get("category", "system")]
    if event.get("subcategory"):
        parts.append(event["subcategory"])
    category = event.get("category")
    if category == "error" and event.get("error_class"):
        parts.append(event["error_class"])
    if category == "tool_result" and event.get("tool_name"):
        parts.append(event["tool_name"])
        if event.get("outcome_class"):
            parts.append(event["outcome_class"])
    if category == "user_pattern" and event.get("pattern_type"):
        parts.append(event["pattern_type"])
    return "::".join(parts)


def create_expectation_model() -> dict:
    return {"frequencies": {}, "total_events": 0, "last_updated": now_iso()}


def estimate_expectedness(event: dict, model: dict, session_message_count: int = 0,
                          now: Optional[datetime] = None) -> float:
    """How routine event is under model, in [0, 1]. Unseen signatures are 0.0."""
    entry = (model.get("frequencies") or {}).get(create_event_signature(event))
    if not entry:
        return 0.0

    now = now or datetime.now()
    days = days_since(entry.get("last_seen"), now)
    decayed = entry.get("count", 0) * math.exp(-FREQUENCY_DECAY_RATE * days)
    frequency = min(1.0, math.log2(decayed + 1) / 4)

    total = model.get("total_events", 0)
    proportion = min(1.0, entry.get("count", 0) / total * 5) if total > 0 else 0.0

    hours = days * 24
    if hours < 1:
        recency = 0.8
    elif hours < 4:
        recency = 0.5
    elif hours < 24:
        recency = 0.2
    else:
        recency = 0.0

    fatigue = min(0.15, max(0, session_message_count) * 0.005)

    return clamp(frequency * 0.4 + proportion * 0.15 + recency * 0.3 + fatigue * 0.15)


def compute_adaptive_threshold(recent_memories: List[dict], base: float = BASE_THRESHOLD,
                               now: Optional[datetime] = None) -> float:
    """Raise the capture bar when many memories landed recently, lower it when few did."""
    now = now or datetime.now()
    window_days = DENSITY_WINDOW_HOURS / 24
    recent = sum(1 for m in recent_memories
                 if parse_ts(m.get("created_at")) and days_since(m.get("created_at"), now) < window_days)

    if recent <= DENSITY_FLOOR:
        threshold = base - 0.1
    elif recent >= DENSITY_SOFT_CAP:
        threshold = base + min(0.25, (recent - DENSITY_SOFT_CAP) * 0.05)
    else:
        threshold = base
    return clamp(threshold, MIN_THRESHOLD, MAX_THRESHOLD)


def should_auto_capture(event: dict, expectedness: float, recent_memories: List[dict],
                        base: float = BASE_THRESHOLD) -> dict:
    """Decide whether to materialize event as a memory, and how strongly.

    High-severity events are always captured. Otherwise capture when
    expectedness is below the adaptive threshold; encoding strength grows
    with surprise.

    Returns:
        {"capture": bool, "expectedness", "threshold", "reason", "encoding_strength"}
    """
    threshold = compute_adaptive_threshold(recent_memories, base)
    decision = {"capture": False, "expectedness": expectedness, "threshold": threshold,
                "reason": "", "encoding_strength": 0.0}

    if event.get("severity") == "high":
        decision.update(capture=True, reason="high severity event, always captured", encoding_strength=1.5)
        return decision

    if expectedness >= threshold:
        decision["reason"] = f"expected event ({expectedness:.2f} >= threshold {threshold:.2f})"
        return decision

    if expectedness < HIGH_SURPRISE_CUTOFF:
        strength = 1.3
    elif expectedness < threshold * 0.5:
        strength = 1.1
    else:
        strength = 0.9
    decision.update(capture=True, encoding_strength=strength,
                    reason=f"surprising event ({expectedness:.2f} < threshold {threshold:.2f})")
    return decision


# =============================================================================
# SURPRISE MEMORIES
# =============================================================================

def _classify_valence(event: dict) -> str:
    valence = event.get("valence")
    if valence == "negative":
        return "pain"
    if valence == "positive":
        return "win"
    if event.get("category") == "error":
        return "pain"
    if event.get("category") == "tool_result":
        if event.get("outcome_class") == "failure":
            return "pain"
        if event.get("outcome_class") == "unexpected_success":
            return "win"
    return "fact"


def _classify_severity(event: dict, expectedness: float) -> str:
    if event.get("severity"):
        return event["severity"]
    if expectedness < 0.1:
        return "high"
    if expectedness < 0.3:
        return "medium"
    return "low"


def create_surprise_memory(event: dict, expectedness: float, encoding_strength: float,
                           active_task_id: Optional[str] = None,
                           active_task_title: Optional[str] = None) -> dict:
    """Memory-shaped candidate (no id yet) describing a surprising event."""
    mem_type = _classify_valence(event)
    prediction_error = round(1 - expectedness, 4)
    description = event.get("description") or ""

    if event.get("title"):
        title = event["title"]
    else:
        prefix = {"pain": "Unexpected failure", "win": "Unexpected success"}.get(mem_type, "Unexpected observation")
        title = f"{prefix}: {description[:80]}"

    content = [description]
    if active_task_title:
        content.append(f"During task: {active_task_title}")
    if event.get("details"):
        content.append(event["details"])
    content.append(f"Prediction error: {prediction_error:.2f} (expectedness: {expectedness:.2f})")

    if event.get("lesson") and mem_type in ("pain", "win"):
        rule = event["lesson"]
    elif mem_type == "pain":
        rule = f"Watch for: {description[:120]}"
    elif mem_type == "win":
        rule = f"Pattern that worked: {description[:120]}"
    else:
        rule = ""

    tags = list(event.get("tags") or [])
    tags.append("auto-surprise")
    if event.get("category") == "error":
        tags.append("error-pattern")
    if event.get("category") == "tool_result":
        tags.append(f"tool:{event.get('tool_name') or 'unknown'}")

    return {
        "type": mem_type,
        "title": title,
        "content": "\n".join(content),
        "rule": rule,
        "tags": list(dict.fromkeys(tags)),
        "severity": _classify_severity(event, expectedness),
        "synaptic_strength": encoding_strength,
        "access_count": 0,
        "quality_score": round(min(0.9, 0.3 + prediction_error * 0.5), 4),
        "prediction_error": prediction_error,
        "related_task_id": active_task_id,
    }


# =============================================================================
# MODEL MAINTENANCE
# =============================================================================

def update_expectations(event: dict, model: dict) -> dict:
    """Count event's signature; prunes when the model grows past capacity."""
    signature = create_event_signature(event)
    timestamp = now_iso()
    frequencies = dict(model.get("frequencies") or {})
    existing = frequencies.get(signature, {})
    frequencies[signature] = {
        "count": existing.get("count", 0) + 1,
        "last_seen": timestamp,
        "first_seen": existing.get("first_seen", timestamp),
    }
    result = {
        "frequencies": frequencies,
        "total_events": model.get("total_events", 0) + 1,
        "last_updated": timestamp,
    }
    if len(frequencies) > MAX_FREQUENCY_ENTRIES:
        result = prune_expectation_model(result)
    return result


def prune_expectation_model(model: dict) -> dict:
    """Keep the top 80% of signatures by 0.6 * recency + 0.4 * log2 frequency."""
    scored = []
    for signature, entry in (model.get("frequencies") or {}).items():
        recency = math.exp(-0.05 * days_since(entry.get("last_seen")))
        frequency = math.log2(entry.get("count", 0) + 1)
        scored.append((recency * 0.6 + frequency * 0.4, signature, entry))
    scored.sort(key=lambda s: s[0], reverse=True)
    keep = int(len(scored) * 0.8)
    log.debug(f"Pruned expectation model from {len(scored)} to {keep} signatures")
    return {
        "frequencies": {sig: entry for _, sig, entry in scored[:keep]},
        "total_events": model.get("total_events", 0),
        "last_updated": model.get("last_updated", now_iso()),
    }


def decay_expectation_model(model: dict, now: Optional[datetime] = None) -> dict:
    """Session-boundary decay; signatures decayed below the forget floor are dropped."""
    now = now or datetime.now()
    frequencies = {}
    for signature, entry in (model.get("frequencies") or {}).items():
        decayed = entry.get("count", 0) * math.exp(-FREQUENCY_DECAY_RATE * days_since(entry.get("last_seen"), now))
        if decayed < FORGET_FLOOR:
            continue
        frequencies[signature] = {**entry, "count": round(decayed, 2)}
    return {
        "frequencies": frequencies,
        "total_events": model.get("total_events", 0),
        "last_updated": now.isoformat(),
    }


def process_prediction_event(event: dict, model: dict, recent_memories: List[dict],
                             context: Optional[dict] = None) -> dict:
    """Full pipeline for one event: estimate, decide, learn, maybe build a memory.

    Expectedness is estimated against the model *before* this event is
    counted, so the first occurrence of anything is maximally surprising.

    Args:
        event: A PredictionEvent dict
        model: Expectation model as stored
        recent_memories: Memories used to measure the current capture rate
        context: Session context with optional keys session_message_count,
            active_task_id and active_task_title

    Returns:
        {"updated_model", "capture", "expectedness", "threshold", "reason", "memory"}
    """
    context = context or {}
    expectedness = estimate_expectedness(event, model, context.get("session_message_count", 0))
    decision = should_auto_capture(event, expectedness, recent_memories)
    memory = None
    if decision["capture"]:
        memory = create_surprise_memory(event, expectedness, decision["encoding_strength"],
                                        context.get("active_task_id"), context.get("active_task_title"))
        log.debug(f"Captured surprise [{create_event_signature(event)}]: {decision['reason']}")
    return {
        "updated_model": update_expectations(event, model),
        "capture": decision["capture"],
        "expectedness": expectedness,
        "threshold": decision["threshold"],
        "reason": decision["reason"],
        "memory": memory,
    }


# =============================================================================
# EVENT CONSTRUCTORS
# =============================================================================

def tool_result_event(tool_name: str, success: bool, description: str, details: str = None,
                      tags: list = None, lesson: str = None, error_class: str = None) -> dict:
    return asdict(PredictionEvent(
        category="tool_result", description=description, tool_name=tool_name,
        outcome_class="success" if success else "failure", details=details,
        tags=list(tags or []), lesson=lesson, error_class=error_class,
        valence="positive" if success else "negative",
    ))


def error_event(error_class: str, description: str, details: str = None, tags: list = None,
                lesson: str = None, severity: str = None) -> dict:
    return asdict(PredictionEvent(
        category="error", description=description, error_class=error_class, details=details,
        tags=list(tags or []), lesson=lesson, severity=severity, valence="negative",
    ))


def task_outcome_event(outcome: str, task_title: str, description: str, details: str = None,
                       tags: list = None, lesson: str = None) -> dict:
    """A task finished; partial outcomes count as neutral surprises."""
    outcome_class = {"success": "success", "failure": "failure"}.get(outcome, "unexpected_success")
    valence = {"success": "positive", "failure": "negative"}.get(outcome, "neutral")
    return asdict(PredictionEvent(
        category="tool_result", subcategory="task_outcome", tool_name="task_completion",
        outcome_class=outcome_class, description=f"{task_title}: {description}",
        details=details, tags=list(tags or []), lesson=lesson, valence=valence,
    ))


def user_pattern_event(pattern_type: str, description: str, details: str = None,
                       tags: list = None, valence: str = "neutral") -> dict:
    return asdict(PredictionEvent(
        category="user_pattern", description=description, pattern_type=pattern_type,
        details=details, tags=list(tags or []), valence=valence,
    ))


def build_result_event(success: bool, description: str, error_class: str = None,
                       details: str = None, tags: list = None, lesson: str = None) -> dict:
    return asdict(PredictionEvent(
        category="tool_result", subcategory="build", tool_name="build",
        outcome_class="success" if success else "failure", description=description,
        details=details, tags=list(tags or []) + ["build", "compilation"], lesson=lesson,
        error_class=error_class, valence="positive" if success else "negative",
    ))
