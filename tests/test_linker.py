"""Tests for linker.py - similarity, link classification, graph traversal."""

import pytest


def _link(target_id, relationship="related"):
    return {"target_id": target_id, "relationship": relationship, "created_at": "2026-01-01T00:00:00"}


@pytest.fixture
def flaky_pain(make_memory):
    return make_memory(id="mem-flaky", type="pain", title="Flaky integration tests on CI",
                       content="Integration tests time out on CI runners",
                       tags=["testing", "ci", "integration"], days_ago=2)


@pytest.fixture
def retry_win(make_memory):
    return make_memory(id="mem-retry", type="win", title="Retry wrapper fixed flaky integration tests",
                       content="Wrapped integration tests in retry on CI runners",
                       tags=["testing", "ci"])


class TestSimilarity:
    """Tests for compute_similarity."""

    def test_similarity_is_symmetric(self, sample_memories):
        """Argument order never changes the score."""
        from brain.linker import compute_similarity

        a, b = sample_memories[0], sample_memories[1]

        assert compute_similarity(a, b) == compute_similarity(b, a)

    def test_identical_text_is_one(self, make_memory):
        """Same normalized title and content short-circuit to 1.0."""
        from brain.linker import compute_similarity

        a = make_memory(id="a", title="Pin the node version", content="Use  .nvmrc")
        b = make_memory(id="b", title="pin the NODE version", content="use .nvmrc")

        assert compute_similarity(a, b) == 1.0

    def test_disjoint_memories_score_zero(self, make_memory):
        """No shared tags or keywords means no similarity."""
        from brain.linker import compute_similarity

        a = make_memory(type="fact", title="Flexbox gap unsupported in Safari", tags=["css"])
        b = make_memory(type="fact", title="Postgres vacuum schedule", tags=["database"])

        assert compute_similarity(a, b) == 0.0


class TestFindLinks:
    """Tests for link classification."""

    def test_never_links_to_itself(self, sample_memories):
        """A memory in its own candidate list is skipped."""
        from brain.linker import find_links

        memory = sample_memories[0]

        assert find_links(memory, [memory]) == []

    def test_unrelated_memories_produce_no_links(self, make_memory):
        """Nothing above the relevance floor, nothing linked."""
        from brain.linker import find_links

        a = make_memory(id="a", type="fact", title="Flexbox gap unsupported in Safari", tags=["css"])
        b = make_memory(id="b", type="fact", title="Postgres vacuum schedule", tags=["database"])

        assert find_links(a, [b]) == []

    def test_later_win_resolves_pain(self, flaky_pain, retry_win):
        """A win after a pain on shared tags resolves it."""
        from brain.linker import find_links

        links = find_links(retry_win, [flaky_pain])

        assert len(links) == 1
        assert links[0]["target_id"] == "mem-flaky"
        assert links[0]["relationship"] == "resolves"

    def test_pain_only_relates_back_to_win(self, flaky_pain, retry_win):
        """The pain side of the pair is a plain related link."""
        from brain.linker import find_links

        links = find_links(flaky_pain, [retry_win])

        assert [l["relationship"] for l in links] == ["related"]

    def test_earlier_win_does_not_resolve(self, make_memory, flaky_pain):
        """A win recorded before the pain cannot be its resolution."""
        from brain.linker import find_links

        old_win = make_memory(id="mem-old-win", type="win", title="Retry wrapper fixed flaky integration tests",
                              content="Wrapped integration tests in retry on CI runners",
                              tags=["testing", "ci"], days_ago=5)

        links = find_links(old_win, [flaky_pain])

        assert all(l["relationship"] != "resolves" for l in links)

    def test_opposing_rules_contradict(self, make_memory):
        """always vs never on two shared tags is a contradiction."""
        from brain.linker import find_links

        older = make_memory(id="mem-cache-on", type="fact", title="Query cache speeds up dashboard",
                            rule="Always enable the query cache in production",
                            tags=["database", "cache"], days_ago=5)
        newer = make_memory(id="mem-cache-off", type="fact", title="Query cache served stale reports",
                            rule="Never enable the query cache in production",
                            tags=["database", "cache"], days_ago=1)

        links = find_links(newer, [older])

        assert links[0]["relationship"] == "contradicts"
        assert links[0]["target_id"] == "mem-cache-on"

    def test_same_title_later_supersedes(self, make_memory):
        """A newer same-type memory with the same title and tags supersedes."""
        from brain.linker import find_links

        older = make_memory(id="mem-v1", type="fact", title="Staging database lives on port 5433",
                            tags=["database", "staging"], days_ago=10)
        newer = make_memory(id="mem-v2", type="fact", title="Staging database lives on port 5433",
                            content="Moved after the cluster rebuild", tags=["database", "staging"])

        links = find_links(newer, [older])

        assert links[0]["relationship"] == "supersedes"
        assert links[0]["target_id"] == "mem-v1"


class TestSupersession:
    """Tests for detect_supersession."""

    @pytest.mark.parametrize("old_title,new_title,old_tags,new_tags", [
        ("Docker build cache broke CI", "Flaky network in staging cluster",
         ["docker", "ci", "build"], ["docker", "ci", "build"]),
        ("Node version mismatch in builds", "Node version mismatch in builds",
         ["node", "docker"], ["node", "frontend"]),
        ("Node version mismatch in builds", "Node version mismatch in builds",
         ["node"], ["frontend"]),
    ])
    def test_zero_without_matching_subject(self, make_memory, old_title, new_title, old_tags, new_tags):
        """Unrelated titles, or a single shared tag, never supersede."""
        from brain.linker import detect_supersession, find_links

        older = make_memory(id="mem-old", type="pain", title=old_title,
                            content="First report of the problem", tags=old_tags, days_ago=5)
        newer = make_memory(id="mem-new", type="pain", title=new_title,
                            content="Seen again after the upgrade", tags=new_tags)

        assert detect_supersession(newer, older) == 0.0
        assert all(l["relationship"] != "supersedes" for l in find_links(newer, [older]))

    def test_punctuation_ignored_in_titles(self, make_memory):
        """Titles differing only in punctuation and case are the same subject."""
        from brain.linker import detect_supersession

        older = make_memory(type="fact", title="Staging DB: port 5433!", tags=["database", "staging"], days_ago=3)
        newer = make_memory(type="fact", title="staging db port 5433", tags=["database", "staging"])

        assert detect_supersession(newer, older) > 0.5

    def test_older_never_supersedes_newer(self, make_memory):
        """Supersession only points forward in time."""
        from brain.linker import detect_supersession

        older = make_memory(type="fact", title="Staging database lives on port 5433",
                            tags=["database", "staging"], days_ago=3)
        newer = make_memory(type="fact", title="Staging database lives on port 5433",
                            tags=["database", "staging"])

        assert detect_supersession(older, newer) == 0.0


class TestApplyLinks:
    """Tests for apply_links."""

    def test_duplicate_and_self_links_skipped(self, make_memory):
        """Existing target+relationship pairs and self targets are not re-added."""
        from brain.linker import apply_links

        memory = make_memory(id="a", links=[_link("b")])
        result = apply_links(memory, [
            {"target_id": "b", "relationship": "related"},
            {"target_id": "a", "relationship": "related"},
            {"target_id": "c", "relationship": "extends"},
        ])

        assert [(l["target_id"], l["relationship"]) for l in result["links"]] == [("b", "related"), ("c", "extends")]
        assert len(memory["links"]) == 1


class TestGraph:
    """Tests for build_link_graph and traversal."""

    def test_every_memory_gets_an_entry(self, make_memory):
        """Isolated memories still appear; dangling targets register no incoming edge."""
        from brain.linker import build_link_graph

        memories = [
            make_memory(id="a", links=[_link("b"), _link("gone")]),
            make_memory(id="b"),
            make_memory(id="c"),
        ]

        graph = build_link_graph(memories)

        assert set(graph) == {"a", "b", "c"}
        assert len(graph["a"]["outgoing"]) == 2
        assert graph["b"]["incoming"][0]["source_id"] == "a"
        assert graph["c"] == {"outgoing": [], "incoming": []}

    def test_cycle_terminates_and_excludes_start(self, make_memory):
        """A mutual link returns the other node once."""
        from brain.linker import traverse_links

        memories = [
            make_memory(id="a", links=[_link("b")]),
            make_memory(id="b", links=[_link("a")]),
        ]

        results = traverse_links("a", memories, max_depth=3)

        assert [r["memory"]["id"] for r in results] == ["b"]
        assert results[0]["depth"] == 1
        assert results[0]["path_weight"] == pytest.approx(0.4)

    def test_depth_limits_walk(self, make_memory):
        """Weights multiply along the path and max_depth bounds it."""
        from brain.linker import traverse_links

        memories = [
            make_memory(id="a", links=[_link("b", "extends")]),
            make_memory(id="b", links=[_link("c", "resolves")]),
            make_memory(id="c"),
        ]

        two = traverse_links("a", memories, max_depth=2)
        one = traverse_links("a", memories, max_depth=1)

        assert [(r["memory"]["id"], r["depth"]) for r in two] == [("b", 1), ("c", 2)]
        assert two[1]["path_weight"] == pytest.approx(0.48)
        assert [r["memory"]["id"] for r in one] == ["b"]

    def test_incoming_edges_are_discounted(self, make_memory):
        """Walking an edge backwards costs the incoming discount."""
        from brain.linker import traverse_links

        memories = [make_memory(id="a"), make_memory(id="b", links=[_link("a", "extends")])]

        results = traverse_links("a", memories)

        assert results[0]["path_weight"] == pytest.approx(0.42)

    def test_unknown_start_returns_empty(self, make_memory):
        """Starting outside the pool finds nothing."""
        from brain.linker import traverse_links

        assert traverse_links("missing", [make_memory(id="a")]) == []

    def test_retrieval_propagation_skips_contradictions(self, make_memory):
        """Contradicts links inform but never boost."""
        from brain.linker import traverse_links_for_retrieval

        viable = {
            "a": make_memory(id="a", links=[_link("b"), _link("c", "contradicts")]),
            "b": make_memory(id="b"),
            "c": make_memory(id="c"),
        }

        boosted = traverse_links_for_retrieval({"a": 1.0}, viable)

        assert boosted == {"b": pytest.approx(0.4)}
