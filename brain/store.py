#!/usr/bin/env python3
"""MemoryStore: the brain's JSON documents on disk.

Documents (all under the state directory):
    memories.json          {"memories": [...]}
    brain-state.json       {"state": {...} | null}
    memories-archive.json  archive store (see pruner)
    cortex.json            learned cortex store
    rules.json             learned rule store
    expectations.json      prediction-error expectation model

Every read goes to disk and every write goes through atomic_json_update,
so another process editing a document between calls is never clobbered.
"""

from pathlib import Path
from typing import Dict, List, Optional

from .atomicfile import atomic_json_update, read_json
from .config import CONFIG_FILE_NAME, load_config
from .cortex import DEFAULT_CORTEX, infer_severity, infer_tags
from .cortex_learner import create_empty_cortex_store, learn_from_retrieval, merge_cortex
from .engine import retrieve_memories
from .health import generate_health_report
from .linker import find_links
from .logging_config import get_logger, set_log_dir
from .models import new_memory
from .paths import get_state_dir
from .prediction import create_expectation_model, decay_expectation_model, process_prediction_event
from .pruner import create_empty_archive_store, prune_memories, restore_from_archive
from .quality_gate import assess_quality, compute_fingerprint, quality_gate
from .reflection import run_reflection
from .rules import create_empty_rule_store, extract_rule_candidates, learn_rules
from .state import (
    init_brain_state,
    record_memory_traces,
    record_significant_event,
    record_synaptic_activity,
    run_checkpoint,
    should_checkpoint,
    tick_message_count,
)
from .utils import clamp, now_iso

log = get_logger("brain.store")

MEMORIES_FILE = "memories.json"
BRAIN_STATE_FILE = "brain-state.json"
ARCHIVE_FILE = "memories-archive.json"
CORTEX_FILE = "cortex.json"
RULES_FILE = "rules.json"
EXPECTATIONS_FILE = "expectations.json"

MIN_STRENGTH = 0.3
MAX_STRENGTH = 2.0
MIN_GIVEN_TAGS = 2

# Relationship recorded on the target when a link is added
REVERSE_RELATIONSHIP = {
    "contradicts": "contradicts",
    "related": "related",
}

# Extra fields a caller may set on a stored memory
PASSTHROUGH_FIELDS = (
    "related_task_id", "surfaced_memory_ids", "outcome", "prediction_error",
    "synaptic_strength", "links",
)


class MemoryStore:
    """File-backed memory pool plus the brain's auxiliary stores."""

    def __init__(self, root: Optional[Path] = None, project_id: str = "default",
                 config: Optional[dict] = None):
        self.root = Path(root) if root else get_state_dir()
        self.root.mkdir(parents=True, exist_ok=True)
        set_log_dir(self.root)
        self.project_id = project_id
        self.config = config or load_config(self.root / CONFIG_FILE_NAME)

    def _path(self, name: str) -> Path:
        return self.root / name

    def _update_memories(self, update_fn):
        """Run update_fn(memories_list) under the memories.json lock; returns its result."""
        def _apply(data):
            data.setdefault("memories", [])
            return update_fn(data["memories"])
        return atomic_json_update(self._path(MEMORIES_FILE), _apply, {"memories": []})

    # =========================================================================
    # Write path
    # =========================================================================

    def store_memory(self, memory_type: str, title: str, content: str = "", rule: str = "",
                     tags: Optional[List[str]] = None, severity: Optional[str] = None,
                     skip_gate: bool = False, **extra) -> dict:
        """Gate, store and link a new memory.

        Args:
            memory_type, title, content, rule, tags, severity: Memory fields. Tags are
                topped up from the cortex when fewer than two are given;
                severity is inferred from the text when omitted.
            skip_gate: Store system-generated records without gating
            extra: Any of PASSTHROUGH_FIELDS, or quality_score when skip_gate

        Returns:
            {"status": "stored"|"merged"|"rejected", "memory", "gate",
             "superseded": [ids], "links": [link dicts]}
        """
        tags = list(dict.fromkeys(tags or []))
        if len(tags) < MIN_GIVEN_TAGS:
            cortex = self.get_merged_cortex()
            for tag in infer_tags(f"{title} {content} {rule}", cortex):
                if tag not in tags:
                    tags.append(tag)
        severity = severity or infer_severity(content, rule)
        candidate = {"type": memory_type, "title": title, "content": content or "", "rule": rule or "",
                     "tags": tags, "severity": severity}

        existing = self.get_all_memories()
        if skip_gate:
            gate = {
                "action": "accept",
                "reason": "gate skipped",
                "quality_score": extra.get("quality_score", assess_quality(candidate)),
                "fingerprint": compute_fingerprint(title, content or ""),
                "conflicts": [],
                "supersede_ids": [],
            }
        else:
            gate_cfg = self.config["gate"]
            gate = quality_gate(candidate, existing, gate_cfg["min_quality"], gate_cfg["dup_threshold"],
                                gate_cfg["min_tag_overlap"], auto_resolve=True)

        summary = {k: v for k, v in gate.items() if k not in ("merge_target", "conflicts")}
        summary["conflict_ids"] = [c["memory"].get("id") for c in gate.get("conflicts") or []]

        if gate["action"] == "reject":
            log.info(f"Rejected memory '{title}': {gate['reason']}")
            return {"status": "rejected", "memory": None, "gate": summary, "superseded": [], "links": []}

        if gate["action"] == "merge":
            target_id = gate["merge_target"]["id"]

            def _merge(memories):
                for memory in memories:
                    if memory.get("id") != target_id:
                        continue
                    memory["title"] = gate["merged_title"]
                    memory["content"] = gate["merged_content"]
                    memory["rule"] = gate["merged_rule"]
                    memory["tags"] = list(dict.fromkeys((memory.get("tags") or []) + tags))
                    memory["quality_score"] = gate["quality_score"]
                    memory["fingerprint"] = compute_fingerprint(memory["title"], memory["content"])
                    return dict(memory)
                return None

            merged = self._update_memories(_merge)
            log.info(f"Merged '{title}' into {target_id}")
            return {"status": "merged", "memory": merged, "gate": summary, "superseded": [], "links": []}

        fields = {k: v for k, v in extra.items() if k in PASSTHROUGH_FIELDS and v is not None}
        memory = new_memory(
            **candidate,
            project_id=self.project_id,
            fingerprint=gate["fingerprint"],
            quality_score=gate["quality_score"],
            **fields,
        )
        supersede_ids = [i for i in gate.get("supersede_ids") or [] if i]

        def _insert(memories):
            live = [m for m in memories if not m.get("superseded_by") and m.get("id") not in supersede_ids]
            links = find_links(memory, live)
            timestamp = now_iso()
            seen = {(l.get("target_id"), l.get("relationship")) for l in memory["links"]}
            for link in links:
                if (link["target_id"], link["relationship"]) not in seen:
                    memory["links"].append({"target_id": link["target_id"],
                                            "relationship": link["relationship"], "created_at": timestamp})
            by_id = {m.get("id"): m for m in memories}
            for link in links:
                target = by_id.get(link["target_id"])
                reverse = REVERSE_RELATIONSHIP.get(link["relationship"], "related")
                if target is not None and not any(
                        l.get("target_id") == memory["id"] and l.get("relationship") == reverse
                        for l in target.get("links") or []):
                    target.setdefault("links", []).append(
                        {"target_id": memory["id"], "relationship": reverse, "created_at": timestamp})
            for mem_id in supersede_ids:
                if mem_id in by_id:
                    by_id[mem_id]["superseded_by"] = memory["id"]
            memories.append(memory)
            return links

        links = self._update_memories(_insert)
        log.info(f"Stored {memory['type']} memory {memory['id']} '{title}' "
                 f"({len(links)} links, {len(supersede_ids)} superseded)")
        return {"status": "stored", "memory": memory, "gate": summary,
                "superseded": supersede_ids, "links": links}

    # =========================================================================
    # Reads
    # =========================================================================

    def get_all_memories(self) -> List[dict]:
        return read_json(self._path(MEMORIES_FILE), {"memories": []}).get("memories", [])

    def get_memory(self, memory_id: str) -> Optional[dict]:
        for memory in self.get_all_memories():
            if memory.get("id") == memory_id:
                return memory
        return None

    def get_memories_by_type(self, memory_type: str) -> List[dict]:
        return [m for m in self.get_all_memories() if m.get("type") == memory_type]

    def get_memories_by_tags(self, tags: List[str]) -> List[dict]:
        wanted = set(tags)
        return [m for m in self.get_all_memories() if wanted & set(m.get("tags") or [])]

    # =========================================================================
    # Mutations
    # =========================================================================

    def update_strength(self, memory_id: str, delta: float) -> Optional[float]:
        """Adjust synaptic strength, clamped to [0.3, 2.0]; returns the new value."""
        def _apply(memories):
            for memory in memories:
                if memory.get("id") == memory_id:
                    memory["synaptic_strength"] = round(
                        clamp(memory.get("synaptic_strength", 1.0) + delta, MIN_STRENGTH, MAX_STRENGTH), 4)
                    return memory["synaptic_strength"]
            return None
        return self._update_memories(_apply)

    def increment_access(self, memory_ids: List[str]) -> int:
        wanted = set(memory_ids)
        timestamp = now_iso()

        def _apply(memories):
            touched = 0
            for memory in memories:
                if memory.get("id") in wanted:
                    memory["access_count"] = memory.get("access_count", 0) + 1
                    memory["last_accessed"] = timestamp
                    touched += 1
            return touched
        return self._update_memories(_apply) if wanted else 0

    def mark_superseded(self, memory_id: str, superseded_by: str) -> bool:
        def _apply(memories):
            for memory in memories:
                if memory.get("id") == memory_id:
                    memory["superseded_by"] = superseded_by
                    return True
            return False
        return self._update_memories(_apply)

    def record_failure_correlation(self, memory_ids: List[str]) -> int:
        """Count a failure against every memory that was surfaced before it."""
        wanted = set(memory_ids)

        def _apply(memories):
            touched = 0
            for memory in memories:
                if memory.get("id") in wanted:
                    memory["failure_correlations"] = memory.get("failure_correlations", 0) + 1
                    touched += 1
            return touched
        return self._update_memories(_apply) if wanted else 0

    def add_link(self, memory_id: str, target_id: str, relationship: str) -> str:
        """Link memory_id -> target_id and record the reverse edge on the target.

        Returns:
            "added", "exists", "self_link" or "not_found:<id>"
        """
        if memory_id == target_id:
            return "self_link"
        reverse = REVERSE_RELATIONSHIP.get(relationship, "related")
        timestamp = now_iso()

        def _apply(memories):
            by_id = {m.get("id"): m for m in memories}
            for needed in (memory_id, target_id):
                if needed not in by_id:
                    return f"not_found:{needed}"
            source, target = by_id[memory_id], by_id[target_id]
            if any(l.get("target_id") == target_id and l.get("relationship") == relationship
                   for l in source.get("links") or []):
                return "exists"
            source.setdefault("links", []).append(
                {"target_id": target_id, "relationship": relationship, "created_at": timestamp})
            if not any(l.get("target_id") == memory_id and l.get("relationship") == reverse
                       for l in target.get("links") or []):
                target.setdefault("links", []).append(
                    {"target_id": memory_id, "relationship": reverse, "created_at": timestamp})
            return "added"
        return self._update_memories(_apply)

    def update_memory(self, memory_id: str, **updates) -> Optional[dict]:
        """Overwrite editable fields; the fingerprint follows title/content changes."""
        allowed = {"title", "content", "rule", "tags", "severity", "quality_score"}
        changes = {k: v for k, v in updates.items() if k in allowed}

        def _apply(memories):
            for memory in memories:
                if memory.get("id") != memory_id:
                    continue
                memory.update(changes)
                if "title" in changes or "content" in changes:
                    memory["fingerprint"] = compute_fingerprint(memory.get("title", ""),
                                                                memory.get("content", ""))
                return dict(memory)
            return None
        return self._update_memories(_apply)

    def clean_dangling_links(self, valid_ids: Optional[set] = None) -> int:
        """Drop links whose target is gone; returns how many were removed."""
        def _apply(memories):
            ids = valid_ids if valid_ids is not None else {m.get("id") for m in memories}
            removed = 0
            for memory in memories:
                links = memory.get("links") or []
                kept = [l for l in links if l.get("target_id") in ids]
                removed += len(links) - len(kept)
                memory["links"] = kept
            return removed
        removed = self._update_memories(_apply)
        if removed:
            log.info(f"Removed {removed} dangling links")
        return removed

    # =========================================================================
    # Brain state
    # =========================================================================

    def get_brain_state(self) -> Optional[dict]:
        return read_json(self._path(BRAIN_STATE_FILE), {"state": None}).get("state")

    def save_brain_state(self, state: dict) -> None:
        self._update_brain_state(lambda _: state)

    def _update_brain_state(self, update_fn) -> Optional[dict]:
        """Run update_fn(fresh state or None) under the brain-state lock; stores and returns its result."""
        def _apply(data):
            data["state"] = update_fn(data.get("state"))
            return data["state"]
        return atomic_json_update(self._path(BRAIN_STATE_FILE), _apply, {"state": None})

    def _rewrite(self, name: str, update_fn, default: dict) -> dict:
        """Replace a whole document with update_fn(fresh document) under its lock."""
        def _apply(data):
            updated = update_fn(data)
            if updated is not data:
                data.clear()
                data.update(updated)
            return data
        return atomic_json_update(self._path(name), _apply, default)

    def start_session(self) -> dict:
        """Decay cross-session state and the expectation model; reset session counters."""
        state = self._update_brain_state(init_brain_state)
        self._rewrite(EXPECTATIONS_FILE, decay_expectation_model, create_expectation_model())
        return state

    def retrieve(self, prompt: str) -> dict:
        """One prompt turn: retrieve, update traces and access counts, checkpoint, learn cortex gaps."""
        memories = self.get_all_memories()
        cortex = self.get_merged_cortex()
        turn = {}

        def _turn(state):
            state = tick_message_count(state or init_brain_state())
            result = retrieve_memories(prompt, memories, state, self.config["engine"], cortex)
            surfaced = [e["memory"]["id"] for e in result["pain_memories"] + result["win_memories"]]
            state = record_synaptic_activity(state, result["matched_tags"])
            state = record_memory_traces(state, surfaced)
            if result["attention_filter"]:
                state = record_significant_event(state)
            if should_checkpoint(state):
                state, _ = run_checkpoint(state)
            turn.update(result=result, surfaced=surfaced)
            return state
        self._update_brain_state(_turn)

        result = turn["result"]
        self.increment_access(turn["surfaced"])

        gaps = result["telemetry"].get("cortex_gaps") or []
        if gaps:
            min_obs = self.config["learner"]["cortex_min_observations"]
            self._rewrite(CORTEX_FILE, lambda store: learn_from_retrieval(store, gaps, memories, min_obs),
                          create_empty_cortex_store())
        return result

    # =========================================================================
    # Prediction-error capture
    # =========================================================================

    def capture_event(self, event: dict, active_task_id: Optional[str] = None,
                      active_task_title: Optional[str] = None) -> dict:
        """Run an event through the expectation model and store it if surprising."""
        state = self.get_brain_state() or {}
        recent = self.get_all_memories()
        context = {
            "session_message_count": state.get("message_count", 0),
            "active_task_id": active_task_id,
            "active_task_title": active_task_title,
        }
        outcome = {}

        def _process(model):
            outcome.update(process_prediction_event(event, model, recent, context))
            return outcome["updated_model"]
        self._rewrite(EXPECTATIONS_FILE, _process, create_expectation_model())

        stored = None
        if outcome["capture"] and outcome["memory"]:
            record = outcome["memory"]
            stored = self.store_memory(
                record["type"], record["title"], record["content"], record["rule"], record["tags"],
                record["severity"], skip_gate=True,
                quality_score=record["quality_score"],
                prediction_error=record["prediction_error"],
                synaptic_strength=record["synaptic_strength"],
                related_task_id=record.get("related_task_id"),
            )
            self._update_brain_state(lambda s: record_significant_event(s) if s else s)
        return {**{k: v for k, v in outcome.items() if k != "updated_model"}, "stored": stored}

    # =========================================================================
    # Consolidation
    # =========================================================================

    def reflect(self, force: bool = False) -> dict:
        """Generate reflections when the session warrants it and store them."""
        state = self.get_brain_state() or init_brain_state()
        result = run_reflection(self.get_all_memories(), state, force)
        stored_ids = []
        for record in result["reflections"]:
            stored = self.store_memory(
                record["type"], record["title"], record["content"], record["rule"], record["tags"],
                record["severity"], skip_gate=True,
                quality_score=record["quality_score"],
                surfaced_memory_ids=record["surfaced_memory_ids"],
                outcome=record["outcome"],
                links=record["links"],
            )
            stored_ids.append(stored["memory"]["id"])
        return {"reflect": result["reflect"], "reason": result["reason"], "stored_ids": stored_ids}

    def learn_rules(self) -> dict:
        learner = self.config["learner"]
        candidates = extract_rule_candidates(self.get_all_memories(), learner["rule_min_group"],
                                             learner["rule_min_tag_overlap"])
        result = {}

        def _apply(store):
            learned = learn_rules(candidates, store.get("rules") or [], learner["rule_min_confidence"])
            store["rules"] = learned["rules"]
            store["last_updated"] = now_iso()
            result.update(learned)
        atomic_json_update(self._path(RULES_FILE), _apply, create_empty_rule_store())
        return {"new_rules": result["new_rules"], "reinforced": result["reinforced"],
                "total": len(result["rules"])}

    def archive(self, options: Optional[dict] = None, dry_run: bool = False) -> dict:
        """Run the pruner over the pool and move archived memories to the archive file."""
        opts = {**self.config["prune"], **(options or {})}
        if dry_run:
            return prune_memories(self.get_all_memories(), opts)["stats"]

        outcome = {}

        def _apply(memories):
            result = prune_memories(list(memories), opts)
            memories[:] = result["kept"]
            outcome.update(result)
        self._update_memories(_apply)

        if outcome["archived"]:
            def _append(store):
                store.setdefault("archived", []).extend(outcome["archived"])
                store["total_archived"] = store.get("total_archived", 0) + len(outcome["archived"])
                store["last_pruned"] = now_iso()
            atomic_json_update(self._path(ARCHIVE_FILE), _append, create_empty_archive_store())
            self.clean_dangling_links()
        return outcome["stats"]

    def restore(self, memory_id: str) -> Optional[dict]:
        """Move one archived memory back into the active pool."""
        restored = {}

        def _take(store):
            for i, entry in enumerate(store.get("archived") or []):
                if entry["memory"].get("id") == memory_id:
                    restored["memory"] = restore_from_archive(store["archived"].pop(i))
                    return
        atomic_json_update(self._path(ARCHIVE_FILE), _take, create_empty_archive_store())
        if not restored:
            return None
        self._update_memories(lambda memories: memories.append(restored["memory"]))
        return restored["memory"]

    def health(self) -> dict:
        cortex = self.load_cortex()
        return generate_health_report(
            self.get_all_memories(), self.get_brain_state(), cortex.get("entries") or [],
            self.load_rules().get("rules") or [], len(DEFAULT_CORTEX), cortex.get("total_gaps_processed", 0),
        )

    # =========================================================================
    # Auxiliary stores
    # =========================================================================

    def load_archive(self) -> dict:
        return read_json(self._path(ARCHIVE_FILE), create_empty_archive_store())

    def load_cortex(self) -> dict:
        return read_json(self._path(CORTEX_FILE), create_empty_cortex_store())

    def save_cortex(self, store: dict) -> None:
        self._rewrite(CORTEX_FILE, lambda _: store, create_empty_cortex_store())

    def get_merged_cortex(self) -> Dict[str, list]:
        return merge_cortex(DEFAULT_CORTEX, self.load_cortex().get("entries") or [],
                            self.config["learner"]["cortex_merge_threshold"])

    def load_rules(self) -> dict:
        return read_json(self._path(RULES_FILE), create_empty_rule_store())

    def load_expectations(self) -> dict:
        return read_json(self._path(EXPECTATIONS_FILE), create_expectation_model())

    def save_expectations(self, model: dict) -> None:
        self._rewrite(EXPECTATIONS_FILE, lambda _: model, create_expectation_model())
