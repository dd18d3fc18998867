#!/usr/bin/env python3
"""Link graph: relationships between memories and cycle-safe traversal.

Relationship types (directed, stored on the source memory's `links`):
- resolves: a win that answers a pain on the same topic
- extends: same type, overlapping topic, not a near-duplicate
- contradicts: opposing rule polarity on shared tags
- supersedes: a later observation of the same subject
- related: anything else above the relevance floor

Adjacency is always rebuilt from the memories' own `links` fields, keyed
by id, so a deleted memory can never leave a dangling object reference.
"""

import re
from collections import deque
from typing import Dict, List, Optional

from .config import GATE_DEFAULTS
from .logging_config import get_logger
from .utils import clamp, jaccard, keyword_set, now_iso, parse_ts

log = get_logger("brain.linker")

LINK_WEIGHTS = {
    "resolves": 0.8,
    "extends": 0.6,
    "related": 0.4,
    "contradicts": 0.7,
    "supersedes": 0.9,
}
DEFAULT_LINK_WEIGHT = 0.4
INCOMING_DISCOUNT = 0.7

RELATED_FLOOR = 0.25
EXTENDS_FLOOR = 0.4
NEAR_DUPLICATE = GATE_DEFAULTS["dup_threshold"]
MAX_LINKS = 10

# Same-domain statements using both halves of a pair disagree
NEGATION_PAIRS = [
    ("always", "never"),
    ("must", "must not"),
    ("do", "do not"),
    ("should", "should not"),
    ("safe", "unsafe"),
    ("safe", "dangerous"),
    ("works", "broken"),
    ("works", "fails"),
    ("correct", "incorrect"),
    ("correct", "wrong"),
    ("enable", "disable"),
    ("allow", "block"),
    ("allow", "deny"),
    ("success", "failure"),
    ("add", "remove"),
    ("include", "exclude"),
]


def _text(memory: dict) -> str:
    return f"{memory.get('title', '')} {memory.get('content', '')} {memory.get('rule', '')}"


def _normalized(memory: dict) -> str:
    return " ".join(f"{memory.get('title', '')} {memory.get('content', '')}".lower().split())


def _shared_tags(a: dict, b: dict) -> set:
    return set(a.get("tags") or []) & set(b.get("tags") or [])


# =============================================================================
# PAIRWISE SCORES
# =============================================================================

def compute_similarity(a: dict, b: dict) -> float:
    """Symmetric similarity in [0, 1].

    Tag overlap dominates (0.5), type match adds 0.1, and keyword overlap
    across title, content and rule adds up to 0.4. Identical normalized
    title and content short-circuit to 1.0.
    """
    if _normalized(a) and _normalized(a) == _normalized(b):
        return 1.0
    tag_sim = jaccard(set(a.get("tags") or []), set(b.get("tags") or []))
    kw_sim = jaccard(keyword_set(_text(a)), keyword_set(_text(b)))
    type_match = 0.1 if a.get("type") == b.get("type") and (tag_sim or kw_sim) else 0.0
    return round(clamp(tag_sim * 0.5 + type_match + kw_sim * 0.4), 4)


def _contains(text: str, phrase: str) -> bool:
    return f" {phrase} " in f" {text} "


def _has_negation_pair(text_a: str, text_b: str) -> bool:
    for positive, negative in NEGATION_PAIRS:
        # "do not" contains "do"; only count the positive when the negative is absent
        a_pos = _contains(text_a, positive) and not _contains(text_a, negative)
        b_pos = _contains(text_b, positive) and not _contains(text_b, negative)
        if (a_pos and _contains(text_b, negative)) or (b_pos and _contains(text_a, negative)):
            return True
    return False


def detect_contradiction(a: dict, b: dict) -> float:
    """Score in [0, 1] for two memories disagreeing on a shared topic.

    Zero unless they share at least two tags. Pain/win pairs on the same
    tags, negation pairs across rule and content text, and same-titled
    memories with different rules each raise the score; the max wins.
    """
    shared = _shared_tags(a, b)
    if len(shared) < 2:
        return 0.0

    score = 0.0
    if {a.get("type"), b.get("type")} == {"pain", "win"}:
        score = max(score, 0.7 if len(shared) >= 3 else 0.4)

    text_a = " ".join(f"{a.get('rule', '')} {a.get('content', '')}".lower().split())
    text_b = " ".join(f"{b.get('rule', '')} {b.get('content', '')}".lower().split())
    if _has_negation_pair(text_a, text_b):
        score = max(score, 0.5 + min(1.0, len(shared) / 4) * 0.3)

    title_a = (a.get("title") or "").lower()
    title_b = (b.get("title") or "").lower()
    rule_a = (a.get("rule") or "").strip()
    rule_b = (b.get("rule") or "").strip()
    if (a.get("type") == b.get("type") and len(title_a) > 10 and len(title_b) > 10
            and title_a[:30] == title_b[:30] and rule_a and rule_b and rule_a != rule_b):
        score = max(score, 0.6)

    return clamp(score)


def _title_key(memory: dict) -> str:
    return re.sub(r"[^a-z0-9\s]", "", (memory.get("title") or "").lower()).strip()


def detect_supersession(newer: dict, older: dict) -> float:
    """Score in [0, 1] for newer being a later observation of older's subject.

    Zero unless both have the same type, newer was created after older,
    the titles match (exactly or on a 40-character prefix) and the tags
    overlap on at least two entries or a Jaccard of 0.6.
    """
    if newer.get("type") != older.get("type"):
        return 0.0
    new_ts = parse_ts(newer.get("created_at"))
    old_ts = parse_ts(older.get("created_at"))
    if new_ts is None or old_ts is None or new_ts <= old_ts:
        return 0.0

    title_new = _title_key(newer)
    title_old = _title_key(older)
    if title_new and title_new == title_old:
        score = 0.6
    elif len(title_new) > 10 and len(title_old) > 10 and title_new[:40] == title_old[:40]:
        score = 0.4
    else:
        return 0.0

    shared = _shared_tags(newer, older)
    tag_sim = jaccard(set(newer.get("tags") or []), set(older.get("tags") or []))
    if len(shared) >= 3 or tag_sim >= 0.6:
        score += 0.3
    elif len(shared) >= 2:
        score += 0.15
    else:
        return 0.0

    old_kw = keyword_set(_text(older))
    if old_kw:
        coverage = len(old_kw & keyword_set(_text(newer))) / len(old_kw)
        if coverage >= 0.5:
            score += 0.1

    return clamp(score)


# =============================================================================
# LINK DISCOVERY
# =============================================================================

def _resolves(win: dict, pain: dict) -> bool:
    """A win on at least two of a pain's tags, recorded no earlier than the pain."""
    if win.get("type") != "win" or pain.get("type") != "pain":
        return False
    if len(_shared_tags(win, pain)) < 2:
        return False
    win_ts = parse_ts(win.get("created_at"))
    pain_ts = parse_ts(pain.get("created_at"))
    return win_ts is None or pain_ts is None or win_ts >= pain_ts


def find_links(memory: dict, candidates: List[dict]) -> List[dict]:
    """Classify memory's relationship to each candidate.

    Returns:
        Up to 10 candidate links sorted by weight:
        [{"target_id", "relationship", "weight", "reason"}]
        Never includes a link to memory itself.
    """
    links = []
    mem_id = memory.get("id")

    for other in candidates:
        other_id = other.get("id")
        if other_id is None or other_id == mem_id:
            continue

        supersede = detect_supersession(memory, other)
        if supersede >= 0.5:
            links.append({
                "target_id": other_id,
                "relationship": "supersedes",
                "weight": LINK_WEIGHTS["supersedes"] * supersede,
                "reason": f"supersedes {other_id} (score: {supersede:.2f})",
            })
            continue

        similarity = compute_similarity(memory, other)
        if similarity >= NEAR_DUPLICATE:
            continue

        if _resolves(memory, other) and similarity >= RELATED_FLOOR:
            links.append({
                "target_id": other_id,
                "relationship": "resolves",
                "weight": LINK_WEIGHTS["resolves"] * similarity,
                "reason": f"win resolving pain {other_id} (similarity: {similarity:.2f})",
            })
            continue

        contradiction = detect_contradiction(memory, other)
        if contradiction >= 0.5:
            links.append({
                "target_id": other_id,
                "relationship": "contradicts",
                "weight": LINK_WEIGHTS["contradicts"] * contradiction,
                "reason": f"contradicts {other_id} (score: {contradiction:.2f})",
            })
            continue

        if similarity >= EXTENDS_FLOOR and memory.get("type") == other.get("type"):
            links.append({
                "target_id": other_id,
                "relationship": "extends",
                "weight": LINK_WEIGHTS["extends"] * similarity,
                "reason": f"extends {other_id} (similarity: {similarity:.2f})",
            })
            continue

        if similarity >= RELATED_FLOOR:
            links.append({
                "target_id": other_id,
                "relationship": "related",
                "weight": LINK_WEIGHTS["related"] * similarity,
                "reason": f"related to {other_id} (similarity: {similarity:.2f})",
            })

    links.sort(key=lambda l: l["weight"], reverse=True)
    return links[:MAX_LINKS]


def apply_links(memory: dict, links: List[dict], timestamp: Optional[str] = None) -> dict:
    """Return a copy of memory with links appended, deduplicated by target+relationship."""
    ts = timestamp or now_iso()
    merged = list(memory.get("links") or [])
    seen = {(l.get("target_id"), l.get("relationship")) for l in merged}
    for link in links:
        key = (link["target_id"], link["relationship"])
        if key in seen or link["target_id"] == memory.get("id"):
            continue
        merged.append({"target_id": link["target_id"], "relationship": link["relationship"], "created_at": ts})
        seen.add(key)
    return {**memory, "links": merged}


# =============================================================================
# GRAPH
# =============================================================================

def build_link_graph(memories: List[dict]) -> Dict[str, dict]:
    """Adjacency per memory id from each memory's own links.

    Every memory gets an entry, even with no edges. Edges to ids outside
    the pool stay in `outgoing` but register no incoming edge.

    Returns:
        {id: {"outgoing": [{"target_id", "relationship", "weight"}],
              "incoming": [{"source_id", "relationship", "weight"}]}}
    """
    graph = {m["id"]: {"outgoing": [], "incoming": []} for m in memories if m.get("id")}

    for memory in memories:
        source = graph.get(memory.get("id"))
        if source is None:
            continue
        for link in memory.get("links") or []:
            target_id = link.get("target_id")
            relationship = link.get("relationship", "related")
            weight = LINK_WEIGHTS.get(relationship, DEFAULT_LINK_WEIGHT)
            source["outgoing"].append({"target_id": target_id, "relationship": relationship, "weight": weight})
            target = graph.get(target_id)
            if target is not None:
                target["incoming"].append({"source_id": memory["id"], "relationship": relationship,
                                           "weight": weight})
    return graph


def traverse_links(start_id: str, memories: List[dict], max_depth: int = 2) -> List[dict]:
    """Breadth-first walk from start_id, visiting each reachable memory once.

    Outgoing edges carry their relationship weight; incoming edges are
    followed at a 0.7 discount. Within one depth level the strongest path
    to a node wins. The start node is never returned, and the visited set
    guarantees termination on cyclic graphs.

    Returns:
        [{"memory", "depth", "path_weight", "via": [{"memory_id", "relationship"}]}]
        sorted by path_weight descending.
    """
    if max_depth < 1:
        return []
    by_id = {m["id"]: m for m in memories if m.get("id")}
    graph = build_link_graph(memories)
    if start_id not in graph:
        return []

    visited = {start_id}
    results = []
    frontier = deque([(start_id, 1.0, [])])

    for depth in range(1, max_depth + 1):
        best: Dict[str, tuple] = {}
        while frontier:
            node_id, weight, path = frontier.popleft()
            entry = graph[node_id]
            steps = [(e["target_id"], e["weight"], e["relationship"]) for e in entry["outgoing"]]
            steps += [(e["source_id"], e["weight"] * INCOMING_DISCOUNT, e["relationship"])
                      for e in entry["incoming"]]
            for next_id, edge_weight, relationship in steps:
                if next_id in visited or next_id not in by_id:
                    continue
                next_weight = weight * edge_weight
                if next_id not in best or next_weight > best[next_id][0]:
                    best[next_id] = (next_weight, path + [{"memory_id": node_id, "relationship": relationship}])

        if not best:
            break
        for node_id, (weight, path) in best.items():
            visited.add(node_id)
            results.append({
                "memory": by_id[node_id],
                "depth": depth,
                "path_weight": round(weight, 4),
                "via": path,
            })
            frontier.append((node_id, weight, path))

    results.sort(key=lambda r: r["path_weight"], reverse=True)
    return results


def traverse_links_for_retrieval(scored: Dict[str, float], viable: Dict[str, dict]) -> Dict[str, float]:
    """One-hop score propagation used by the retrieval engine.

    Follows resolves/extends/related links from every scored memory and
    returns targets whose propagated score beats what they already hold.
    Contradicts and supersedes links are informational and never boost.
    """
    additional: Dict[str, float] = {}
    for mem_id, base in scored.items():
        if base <= 0:
            continue
        memory = viable.get(mem_id)
        if not memory:
            continue
        for link in memory.get("links") or []:
            relationship = link.get("relationship")
            if relationship in ("contradicts", "supersedes"):
                continue
            target_id = link.get("target_id")
            if target_id not in viable or target_id == mem_id:
                continue
            propagated = base * LINK_WEIGHTS.get(relationship, DEFAULT_LINK_WEIGHT)
            current = additional.get(target_id, scored.get(target_id, 0.0))
            if propagated > current:
                additional[target_id] = propagated
    if additional:
        log.debug(f"Link traversal boosted {len(additional)} memories")
    return additional
