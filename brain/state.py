#!/usr/bin/env python3
"""Brain state: session counters, memory traces, plasticity and decay.

Every function takes a state dict and returns a new one; nothing is
mutated in place. The store persists the result at checkpoints and at
session end.

Cross-session fields: synaptic_activity, memory_traces.
Session-local fields: message_count, context_phase, firing_frequency,
active_traces, significant_events_since_checkpoint.
"""

import copy
from typing import List, Optional, Tuple

from .config import CHECKPOINT_INTERVALS, ENGINE_DEFAULTS, STATE_DEFAULTS
from .logging_config import get_logger
from .models import new_brain_state
from .utils import days_since, now_iso

log = get_logger("brain.state")

PLASTICITY_BOOST = STATE_DEFAULTS["plasticity_boost"]
MAX_STRENGTH = STATE_DEFAULTS["max_strength"]
DECAY_FRACTION = STATE_DEFAULTS["decay_fraction"]
BASELINE = 1.0


def get_context_phase(message_count: int, mid: int = ENGINE_DEFAULTS["context_phase_mid"],
                      late: int = ENGINE_DEFAULTS["context_phase_late"]) -> str:
    if message_count >= late:
        return "late"
    if message_count >= mid:
        return "mid"
    return "early"


def _prune_traces(traces: dict) -> dict:
    """Drop traces back at baseline, then keep the strongest up to the cap."""
    epsilon = STATE_DEFAULTS["trace_baseline_epsilon"]
    entries = [(k, v) for k, v in traces.items()
               if abs(v.get("synaptic_strength", BASELINE) - BASELINE) > epsilon]
    if len(entries) > STATE_DEFAULTS["max_traces"]:
        entries.sort(key=lambda kv: kv[1].get("synaptic_strength", BASELINE), reverse=True)
        entries = entries[:STATE_DEFAULTS["max_traces"]]
    return dict(entries)


def _prune_activity(activity: dict) -> dict:
    """Drop single-hit tags not seen for a week, then keep the busiest up to the cap."""
    stale_days = STATE_DEFAULTS["activity_stale_days"]
    entries = [(k, v) for k, v in activity.items()
               if not (v.get("count", 0) <= 1 and days_since(v.get("last_hit")) > stale_days)]
    if len(entries) > STATE_DEFAULTS["max_activity"]:
        entries.sort(key=lambda kv: kv[1].get("count", 0), reverse=True)
        entries = entries[:STATE_DEFAULTS["max_activity"]]
    return dict(entries)


def init_brain_state(existing: Optional[dict] = None) -> dict:
    """Start a session from the persisted state (or from scratch).

    Cross-session fields are decayed toward baseline and pruned;
    session-local counters are reset.
    """
    if existing:
        base = apply_decay(existing)
        activity = {}
        for tag, entry in (base.get("synaptic_activity") or {}).items():
            count = entry.get("count", 0)
            if count > 1:
                count = round(count - (count - 1) * DECAY_FRACTION, 2)
            activity[tag] = {**entry, "count": count}
        base["synaptic_activity"] = activity
    else:
        base = new_brain_state()

    base.update(
        session_start=now_iso(),
        message_count=0,
        context_phase="early",
        firing_frequency={},
        active_traces=[],
        significant_events_since_checkpoint=0,
        memory_traces=_prune_traces(base.get("memory_traces") or {}),
        synaptic_activity=_prune_activity(base.get("synaptic_activity") or {}),
    )
    log.debug(f"Session started with {len(base['memory_traces'])} traces, "
              f"{len(base['synaptic_activity'])} active tags")
    return base


def tick_message_count(state: dict) -> dict:
    count = state.get("message_count", 0) + 1
    return {**state, "message_count": count, "context_phase": get_context_phase(count)}


def record_significant_event(state: dict, n: int = 1) -> dict:
    return {**state, "significant_events_since_checkpoint": state.get("significant_events_since_checkpoint", 0) + n}


def record_synaptic_activity(state: dict, tags: List[str]) -> dict:
    """Count tag activations across sessions and within this session."""
    if not tags:
        return state
    timestamp = now_iso()
    activity = copy.deepcopy(state.get("synaptic_activity") or {})
    firing = dict(state.get("firing_frequency") or {})
    for tag in tags:
        activity[tag] = {"count": activity.get(tag, {}).get("count", 0) + 1, "last_hit": timestamp}
        firing[tag] = firing.get(tag, 0) + 1
    return {**state, "synaptic_activity": activity, "firing_frequency": firing}


def record_memory_traces(state: dict, memory_ids: List[str]) -> dict:
    """Count surfaced memories and mark them active for this session."""
    if not memory_ids:
        return state
    timestamp = now_iso()
    traces = copy.deepcopy(state.get("memory_traces") or {})
    active = list(state.get("active_traces") or [])
    for mem_id in memory_ids:
        trace = traces.get(mem_id, {})
        traces[mem_id] = {
            "count": trace.get("count", 0) + 1,
            "last_accessed": timestamp,
            "synaptic_strength": trace.get("synaptic_strength", BASELINE),
        }
        if mem_id not in active:
            active.append(mem_id)
    return {**state, "memory_traces": traces, "active_traces": active}


def apply_synaptic_plasticity(state: dict, boost: float = PLASTICITY_BOOST,
                              max_strength: float = MAX_STRENGTH) -> Tuple[dict, List[str]]:
    """Strengthen every trace active this session (fire together, wire together).

    Returns:
        (new_state, boosted_ids)
    """
    traces = copy.deepcopy(state.get("memory_traces") or {})
    boosted = []
    for mem_id in state.get("active_traces") or []:
        if mem_id not in traces:
            continue
        current = traces[mem_id].get("synaptic_strength", BASELINE)
        traces[mem_id]["synaptic_strength"] = min(max_strength, round(current + boost, 2))
        boosted.append(mem_id)
    if boosted:
        log.debug(f"Plasticity boosted {len(boosted)} traces")
    return {**state, "memory_traces": traces}, boosted


def apply_decay(state: dict, fraction: float = DECAY_FRACTION) -> dict:
    """Move every trace's strength `fraction` of the way back to 1.0.

    The new value always lies between the old one and the baseline, so
    repeated decay approaches 1.0 from either side without crossing it.
    """
    traces = copy.deepcopy(state.get("memory_traces") or {})
    for trace in traces.values():
        strength = trace.get("synaptic_strength", BASELINE)
        if strength != BASELINE:
            trace["synaptic_strength"] = round(strength + (BASELINE - strength) * fraction, 4)
    return {**state, "memory_traces": traces}


def checkpoint_interval(phase: str) -> int:
    return CHECKPOINT_INTERVALS.get(phase, CHECKPOINT_INTERVALS["early"])


def should_checkpoint(state: dict) -> bool:
    """True when message_count lands on the current phase's interval."""
    count = state.get("message_count", 0)
    interval = checkpoint_interval(state.get("context_phase", "early"))
    return count > 0 and count % interval == 0


def run_checkpoint(state: dict) -> Tuple[dict, List[str]]:
    """Consolidate: plasticity boost, then decay, then reset the event counter."""
    boosted_state, boosted = apply_synaptic_plasticity(state)
    decayed = apply_decay(boosted_state)
    decayed["significant_events_since_checkpoint"] = 0
    log.debug(f"Checkpoint at message {state.get('message_count', 0)}: {len(boosted)} traces boosted")
    return decayed, boosted


def find_decayed_memories(state: dict, threshold_days: int = ENGINE_DEFAULTS["decay_threshold_days"]) -> List[dict]:
    """Traces not accessed for threshold_days, oldest first."""
    result = []
    for mem_id, trace in (state.get("memory_traces") or {}).items():
        if not trace.get("last_accessed"):
            continue
        age = int(days_since(trace["last_accessed"]))
        if age >= threshold_days:
            result.append({"id": mem_id, "days_since": age, "access_count": trace.get("count", 0)})
    result.sort(key=lambda r: r["days_since"], reverse=True)
    return result
