#!/usr/bin/env python3
"""Record shapes for the brain's JSON documents.

Records travel through the core as plain dicts (the JSON form); these
dataclasses exist to build well-formed records with every default filled.
"""

from dataclasses import asdict, dataclass, field
from typing import List, Optional

from .utils import generate_id, now_iso

MEMORY_TYPES = ("pain", "win", "fact", "decision", "architecture", "reflection")
SEVERITIES = ("low", "medium", "high")
RELATIONSHIPS = ("resolves", "supersedes", "extends", "contradicts", "related")
CONTEXT_PHASES = ("early", "mid", "late")

MEMORY_SCHEMA_VERSION = "1.0"


@dataclass
class Link:
    target_id: str
    relationship: str           # one of RELATIONSHIPS
    created_at: str = field(default_factory=now_iso)


@dataclass
class Memory:
    type: str                   # one of MEMORY_TYPES
    title: str
    content: str = ""
    rule: str = ""              # actionable lesson, may be empty
    tags: List[str] = field(default_factory=list)
    severity: str = "low"
    project_id: str = "default"
    id: str = field(default_factory=lambda: generate_id("mem"))
    synaptic_strength: float = 1.0
    access_count: int = 0
    created_at: str = field(default_factory=now_iso)
    last_accessed: Optional[str] = None
    fingerprint: str = ""
    quality_score: Optional[float] = None
    links: List[dict] = field(default_factory=list)
    superseded_by: Optional[str] = None
    related_task_id: Optional[str] = None
    prediction_error: Optional[float] = None
    surfaced_memory_ids: Optional[List[str]] = None
    outcome: Optional[str] = None   # success | partial | failure
    failure_correlations: int = 0   # times this memory was surfaced before a failure

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BrainState:
    session_start: str = field(default_factory=now_iso)
    message_count: int = 0
    context_phase: str = "early"
    synaptic_activity: dict = field(default_factory=dict)   # tag -> {count, last_hit}
    memory_traces: dict = field(default_factory=dict)       # memory id -> {count, last_accessed, synaptic_strength}
    firing_frequency: dict = field(default_factory=dict)    # tag -> count (session)
    active_traces: List[str] = field(default_factory=list)  # memory ids (session)
    significant_events_since_checkpoint: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def new_memory(**fields) -> dict:
    """Build a memory dict with defaults for every unspecified field."""
    return Memory(**fields).to_dict()


def new_brain_state() -> dict:
    return BrainState().to_dict()


def validate_candidate(candidate: dict) -> tuple:
    """Check required fields before a candidate enters the quality gate.

    Returns:
        (is_valid, rejection_reason or "")
    """
    if not isinstance(candidate, dict):
        return False, "candidate must be a mapping"
    for name in ("type", "title"):
        value = candidate.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return False, f"missing required field: {name}"
    for name in ("type", "title", "content", "rule", "severity"):
        value = candidate.get(name)
        if value is not None and not isinstance(value, str):
            return False, f"{name} must be a string"
    if candidate["type"] not in MEMORY_TYPES:
        return False, f"invalid type: {candidate['type']}"
    severity = candidate.get("severity") or "low"
    if severity not in SEVERITIES:
        return False, f"invalid severity: {severity}"
    tags = candidate.get("tags") or []
    if not isinstance(tags, (list, tuple, set)):
        return False, "tags must be a list"
    if not all(isinstance(tag, str) for tag in tags):
        return False, "tags must be strings"
    return True, ""
