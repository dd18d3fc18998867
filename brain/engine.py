#!/usr/bin/env python3
"""Retrieval engine: the per-turn cue from prompt to relevant memories.

Pipeline:
    1. Attention filter   - coarse keyword classes (deploy, security, ...)
    2. Viability gate     - drop memories whose lifecycle score fell below 0.15
    3. Pattern recognition - prompt words -> cortex tags -> tag index hits
    4. Fuzzy fallback     - substring hits on title/rule/content when no tag matched
    5. Associative chaining - neighbours of the direct hits score 0.5
    6. Weighting          - severity amplification x synaptic strength
    7. Link traversal     - one hop along resolves/extends/related links
    8. Rank pains, then pair wins on the same tags ("dopamine pairing")
    9. Hot tags           - tags that keep firing this session

retrieve_memories is read-only: it never mutates the memories or the
brain state it is given. Callers record traces and activity afterwards.
"""

import time
from typing import Dict, List, Optional

from .config import ENGINE_DEFAULTS
from .cortex import ATTENTION_PATTERNS, DEFAULT_CORTEX, HIGH_SEVERITY_WORDS, MEDIUM_SEVERITY_WORDS
from .linker import traverse_links_for_retrieval
from .logging_config import get_logger
from .scoring import score_memory
from .state import get_context_phase
from .utils import tokenize

log = get_logger("brain.engine")

MAX_INJECTION_CHARS = 4000
CHAIN_SEED_LIMIT = 6
PAIRED_WIN_SCORE = 0.5


def _empty_result(phase: str, attention: Optional[dict] = None) -> dict:
    return {
        "pain_memories": [],
        "win_memories": [],
        "matched_tags": [],
        "attention_filter": attention,
        "context_phase": phase,
        "hot_tags": [],
        "injection_text": "",
        "telemetry": {},
    }


def run_attention_filter(prompt: str, patterns: Dict[str, str] = None) -> Optional[dict]:
    """First attention keyword found in the prompt, as {"category", "message"}."""
    patterns = ATTENTION_PATTERNS if patterns is None else patterns
    lowered = prompt.lower()
    for keyword, message in patterns.items():
        if keyword in lowered:
            return {"category": keyword, "message": message}
    return None


def build_tag_index(memories: List[dict]) -> Dict[str, List[str]]:
    index: Dict[str, List[str]] = {}
    for memory in memories:
        for tag in memory.get("tags") or []:
            ids = index.setdefault(tag, [])
            if memory["id"] not in ids:
                ids.append(memory["id"])
    return index


def _pattern_recognition(tokens: set, tag_index: dict, cortex: dict) -> tuple:
    scores: Dict[str, float] = {}
    matched = set()
    for word in tokens:
        mapped = list(cortex.get(word, []))
        if word in tag_index and word not in mapped:
            mapped.append(word)
        for tag in mapped:
            if tag not in tag_index:
                continue
            matched.add(tag)
            for mem_id in tag_index[tag]:
                scores[mem_id] = scores.get(mem_id, 0.0) + 1.0
    return scores, matched


def _fuzzy_match(prompt: str, memories: List[dict]) -> tuple:
    words = [w for w in prompt.lower().split() if len(w) > 3]
    scores: Dict[str, float] = {}
    tags = set()
    for memory in memories:
        title = (memory.get("title") or "").lower()
        rule = (memory.get("rule") or "").lower()
        content = (memory.get("content") or "").lower()
        if any(w in title for w in words):
            scores[memory["id"]] = 1.0
        elif any(w in rule for w in words):
            scores[memory["id"]] = 0.8
        elif any(len(w) > 4 and w in content for w in words):
            scores[memory["id"]] = 0.5
        else:
            continue
        tags.update(memory.get("tags") or [])
    return scores, tags


def _cortex_gaps(tokens: set, memories: List[dict], cortex: dict) -> List[str]:
    """Prompt words that hit memory text but have no cortex mapping."""
    gaps = []
    for word in sorted(tokens):
        if word in cortex or len(word) <= 3:
            continue
        for memory in memories:
            if (word in (memory.get("title") or "").lower()
                    or word in (memory.get("rule") or "").lower()
                    or (len(word) > 4 and word in (memory.get("content") or "").lower())):
                gaps.append(word)
                break
    return gaps


def _associative_chaining(direct: dict, matched: set, tag_index: dict, by_id: dict) -> tuple:
    scores = dict(direct)
    all_tags = set(matched)
    neighbour_tags = set()
    for mem_id in list(direct)[:CHAIN_SEED_LIMIT]:
        neighbour_tags.update(by_id.get(mem_id, {}).get("tags") or [])
    for tag in neighbour_tags:
        if tag in matched or tag not in tag_index:
            continue
        for mem_id in tag_index[tag]:
            if mem_id not in direct:
                scores[mem_id] = scores.get(mem_id, 0.0) + 0.5
                all_tags.add(tag)
    return scores, all_tags


def amygdala_weight(memory: dict) -> float:
    """Severity amplification: alarming memories outrank mild ones."""
    severity = memory.get("severity")
    if severity == "high":
        return 2.0
    if severity == "medium":
        return 1.5
    text = f"{memory.get('title', '')} {memory.get('content', '')} {memory.get('rule', '')}".lower()
    if any(word in text for word in HIGH_SEVERITY_WORDS):
        return 2.0
    if any(word in text for word in MEDIUM_SEVERITY_WORDS):
        return 1.5
    if len(text) > 500:
        return 1.3
    return 1.0


def _scored(memory: dict, score: float, matched: set, source: str) -> dict:
    return {
        "memory": memory,
        "score": round(score, 4),
        "matched_tags": [t for t in memory.get("tags") or [] if t in matched],
        "source": source,
    }


def retrieve_memories(prompt: str, memories: List[dict], brain_state: Optional[dict] = None,
                      config: Optional[dict] = None, cortex: Optional[dict] = None) -> dict:
    """Rank pain and win memories relevant to prompt.

    Args:
        prompt: Free-text user prompt for this turn
        memories: Full memory pool (freshly read)
        brain_state: Current session state, or None
        config: Overrides for ENGINE_DEFAULTS keys
        cortex: Word -> tags mapping (default cortex merged with learned entries)

    Returns:
        {"pain_memories", "win_memories", "matched_tags", "attention_filter",
         "context_phase", "hot_tags", "injection_text", "telemetry"}
        Each scored entry is {"memory", "score", "matched_tags", "source"}.
    """
    started = time.perf_counter()
    cfg = {**ENGINE_DEFAULTS, **(config or {})}
    cortex = DEFAULT_CORTEX if cortex is None else cortex
    state = brain_state or {}
    phase = get_context_phase(state.get("message_count", 0),
                              cfg["context_phase_mid"], cfg["context_phase_late"])

    if len((prompt or "").strip()) < cfg["min_prompt_length"]:
        return _empty_result(phase)

    tokens = set(tokenize(prompt))
    attention = run_attention_filter(prompt)

    viable = [m for m in memories if m.get("id") and score_memory(m) >= cfg["min_viable_score"]]
    by_id = {m["id"]: m for m in viable}
    pains = [m for m in viable if m.get("type") in ("pain", "fact")]
    wins = [m for m in viable if m.get("type") == "win"]

    pain_index = build_tag_index(pains)
    scores, matched = _pattern_recognition(tokens, pain_index, cortex)
    direct_count = len(scores)

    gaps = []
    fuzzy = False
    if not scores:
        fuzzy = True
        scores, fuzzy_tags = _fuzzy_match(prompt, pains)
        matched |= fuzzy_tags
        gaps = _cortex_gaps(tokens, pains, cortex)

    if not scores and not attention:
        return _empty_result(phase)

    direct_ids = set(scores)
    chained, matched = _associative_chaining(scores, matched, pain_index, by_id)

    max_pain = cfg["late_max_pain"] if phase == "late" else cfg["max_pain"]
    max_wins = cfg["late_max_wins"] if phase == "late" else cfg["max_wins"]

    traces = state.get("memory_traces") or {}
    weighted: Dict[str, float] = {}
    for mem_id, score in chained.items():
        memory = by_id.get(mem_id)
        if not memory:
            continue
        synaptic = traces.get(mem_id, {}).get("synaptic_strength", memory.get("synaptic_strength", 1.0))
        weighted[mem_id] = score * amygdala_weight(memory) * synaptic

    linked = traverse_links_for_retrieval(weighted, {m["id"]: m for m in pains})
    for mem_id, score in linked.items():
        weighted[mem_id] = max(weighted.get(mem_id, 0.0), score)
        matched.update(by_id[mem_id].get("tags") or [])

    ranked = sorted(weighted.items(), key=lambda kv: kv[1], reverse=True)[:max_pain]
    pain_results = [
        _scored(by_id[mem_id], score, matched, "direct" if mem_id in direct_ids else "associative")
        for mem_id, score in ranked
    ]

    # Dopamine pairing: wins on the same tags as the pains
    win_index = build_tag_index(wins)
    win_scores: Dict[str, float] = {}
    for tag in matched:
        for mem_id in win_index.get(tag, []):
            win_scores[mem_id] = win_scores.get(mem_id, 0.0) + 1.0
    ranked_wins = sorted(win_scores.items(), key=lambda kv: kv[1], reverse=True)[:max_wins]
    win_results = [_scored(by_id[mem_id], score, matched, "dopamine") for mem_id, score in ranked_wins]
    win_ids = {mem_id for mem_id, _ in ranked_wins}

    # Wins whose links say they resolve one of the returned pains
    resolvers: Dict[str, List[dict]] = {}
    for win in wins:
        for link in win.get("links") or []:
            if link.get("relationship") == "resolves":
                resolvers.setdefault(link.get("target_id"), []).append(win)
    for entry in pain_results:
        for win in resolvers.get(entry["memory"]["id"], []):
            if len(win_results) >= max_wins:
                break
            if win["id"] in win_ids:
                continue
            win_results.append(_scored(win, PAIRED_WIN_SCORE, matched, "dopamine"))
            win_ids.add(win["id"])

    hot_tags = []
    if brain_state:
        firing = state.get("firing_frequency") or {}
        # +1 counts the current prompt's activation
        hot_tags = sorted(t for t in matched if firing.get(t, 0) + 1 >= cfg["session_tag_repeat_threshold"])

    result = {
        "pain_memories": pain_results,
        "win_memories": win_results,
        "matched_tags": sorted(matched),
        "attention_filter": attention,
        "context_phase": phase,
        "hot_tags": hot_tags,
    }
    result["injection_text"] = format_injection(result, cfg["max_rule_chars"])
    result["telemetry"] = {
        "query_length": len(prompt),
        "token_count": len(tokens),
        "candidate_count": len(viable),
        "direct_match_count": direct_count,
        "associative_match_count": len(chained) - len(direct_ids),
        "link_traversal_count": len(linked),
        "fuzzy_fallback": fuzzy,
        "result_count": len(pain_results) + len(win_results),
        "top_score": ranked[0][1] if ranked else 0.0,
        "execution_ms": round((time.perf_counter() - started) * 1000, 3),
        "cortex_gaps": gaps,
    }
    log.debug(f"Retrieved {len(pain_results)} pains, {len(win_results)} wins "
              f"(tags: {', '.join(sorted(matched)) or 'none'})")
    return result


def format_injection(result: dict, max_rule_chars: int = ENGINE_DEFAULTS["max_rule_chars"],
                     max_chars: int = MAX_INJECTION_CHARS) -> str:
    """Render retrieval results as a prompt-ready text block."""
    parts = []
    if result.get("attention_filter"):
        parts.append(f"WARNING: {result['attention_filter']['message']}")

    def _line(entry: dict) -> str:
        memory = entry["memory"]
        line = f"- #{memory['id']}: {memory.get('title', '')}"
        if memory.get("rule"):
            line += f"\n  -> {memory['rule'][:max_rule_chars]}"
        return line

    if result.get("pain_memories"):
        parts.append("PAIN MEMORY RETRIEVED (auto-cue from your prompt):")
        parts.extend(_line(e) for e in result["pain_memories"])

    if result.get("win_memories"):
        parts.append("\nWIN MEMORY (you've handled this domain before):")
        parts.extend(_line(e) for e in result["win_memories"])

    if result.get("hot_tags"):
        tag_list = ", ".join(f"`{t}`" for t in result["hot_tags"])
        parts.append(f"\nPATTERN DETECTED: Tags {tag_list} have fired repeatedly. "
                     f"Consider addressing the root cause.")

    text = "\n".join(parts)
    if len(text) > max_chars:
        text = text[:max_chars - 3].rstrip() + "..."
    return text
