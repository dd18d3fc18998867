"""Tests for reflection.py - triggers, surprises, meta-observations, consolidation."""

import pytest


def _state(**fields):
    from brain.models import new_brain_state

    return {**new_brain_state(), **fields}


class TestShouldReflect:
    """Tests for the reflection trigger."""

    def test_too_early_even_with_many_events(self):
        """Fewer than four messages never reflects."""
        from brain.reflection import should_reflect

        result = should_reflect(_state(message_count=3, significant_events_since_checkpoint=10))

        assert result["reflect"] is False
        assert result["reason"].startswith("Too early")

    def test_interval_with_events(self):
        """Message 8 with three significant events reflects."""
        from brain.reflection import should_reflect

        result = should_reflect(_state(message_count=8, significant_events_since_checkpoint=3))

        assert result["reflect"] is True
        assert "Interval hit" in result["reason"]

    def test_high_event_count(self):
        """Twice the event minimum reflects off-interval."""
        from brain.reflection import should_reflect

        result = should_reflect(_state(message_count=5, significant_events_since_checkpoint=6))

        assert result["reflect"] is True
        assert result["reason"].startswith("High event count")

    def test_quiet_turn(self):
        """No interval and few events means no reflection."""
        from brain.reflection import should_reflect

        result = should_reflect(_state(message_count=7, significant_events_since_checkpoint=1))

        assert result["reflect"] is False

    def test_late_phase_interval_alone_is_not_enough(self):
        """Late phase damps interval-only triggers."""
        from brain.reflection import should_reflect

        result = should_reflect(_state(message_count=48, context_phase="late"))

        assert result["reflect"] is False


class TestMetaObservations:
    """Tests for generate_meta_observations."""

    def test_small_pool_yields_nothing(self, make_memory):
        """Below the minimum pool size there is nothing to observe."""
        from brain.reflection import generate_meta_observations

        memories = [make_memory(id=f"p{i}", tags=["docker"]) for i in range(4)]

        assert generate_meta_observations(memories) == []

    def test_recurring_failure_and_gap(self, make_memory):
        """Three pains on one tag without wins is recurring and a gap."""
        from brain.reflection import generate_meta_observations

        memories = [make_memory(id=f"p{i}", type="pain", title=f"Docker issue {i}", tags=["docker"])
                    for i in range(3)]
        memories += [make_memory(id=f"w{i}", type="win", title=f"Lint win {i}", tags=["linting"]) for i in range(2)]

        observations = generate_meta_observations(memories)

        assert [o["pattern_type"] for o in observations] == ["recurring-failure", "knowledge-gap"]
        assert observations[0]["affected_tags"] == ["docker"]
        assert observations[0]["confidence"] == pytest.approx(0.8)

    def test_mixed_signals_are_contradiction(self, make_memory):
        """Two pains and two wins on a tag are contradictory signals."""
        from brain.reflection import generate_meta_observations

        memories = [make_memory(id=f"p{i}", type="pain", tags=["cache"]) for i in range(2)]
        memories += [make_memory(id=f"w{i}", type="win", tags=["cache"]) for i in range(2)]
        memories.append(make_memory(id="f1", type="decision", tags=["cache"]))

        observations = generate_meta_observations(memories)

        assert [o["pattern_type"] for o in observations] == ["contradiction"]
        assert observations[0]["linked_memory_ids"] == ["p0", "p1", "w0", "w1"]

    def test_reflections_are_ignored(self, make_memory):
        """Reflections never count as evidence."""
        from brain.reflection import generate_meta_observations

        memories = [make_memory(id=f"r{i}", type="reflection", tags=["docker"]) for i in range(6)]

        assert generate_meta_observations(memories) == []


class TestPredictionAndSurprise:
    """Tests for generate_prediction and detect_surprise."""

    def test_no_memories_neutral_prior(self):
        """Nothing retrieved predicts a low-confidence partial outcome."""
        from brain.reflection import generate_prediction

        prediction = generate_prediction({"task_title": "Upgrade webpack"}, [])

        assert prediction["predicted_outcome"] == "partial"
        assert prediction["confidence"] == 0.2
        assert "neutral prior" in prediction["basis"]

    def test_heavy_pain_predicts_failure(self, make_memory):
        """Several strong high-severity pains predict failure."""
        from brain.reflection import generate_prediction

        scored = [{"memory": make_memory(id=f"p{i}", type="pain", severity="high"), "score": 1.0}
                  for i in range(3)]

        prediction = generate_prediction({"task_title": "Force push cleanup"}, scored)

        assert prediction["predicted_outcome"] == "failure"
        assert prediction["linked_memory_ids"] == ["p0", "p1", "p2"]

    def test_better_than_predicted(self):
        """A confident failure prediction that succeeds is a big surprise."""
        from brain.reflection import detect_surprise

        surprise = detect_surprise({"predicted_outcome": "failure", "confidence": 0.8}, "success")

        assert surprise["surprise_score"] == pytest.approx(0.9)
        assert surprise["summary"] == "Surprise (better): predicted failure, got success"
        assert surprise["lesson"].startswith("Outcome was better than predicted")

    def test_matching_outcome(self):
        """Same outcome is no surprise."""
        from brain.reflection import detect_surprise

        surprise = detect_surprise({"predicted_outcome": "partial", "confidence": 0.5}, "partial")

        assert surprise["surprise_score"] == 0.0
        assert surprise["summary"].startswith("Expected:")
        assert "No correction needed" in surprise["lesson"]


class TestReflectionRecords:
    """Tests for create_reflection and duplicates."""

    def test_surprise_reflection_record(self):
        """Surprises become high-severity reflections linked to their evidence."""
        from brain.reflection import create_reflection, detect_surprise

        content = detect_surprise({"predicted_outcome": "success", "confidence": 0.9,
                                   "linked_memory_ids": ["mem-a", "mem-b"]}, "failure")

        memory = create_reflection(content, project_id="webapp")

        assert memory["type"] == "reflection"
        assert memory["title"].startswith("[surprise] Surprise (worse)")
        assert memory["severity"] == "high"
        assert memory["outcome"] == "failure"
        assert memory["rule"] == content["lesson"]
        assert memory["project_id"] == "webapp"
        assert memory["tags"][:2] == ["reflection", "surprise"]
        assert [(l["target_id"], l["relationship"]) for l in memory["links"]] == [
            ("mem-a", "related"), ("mem-b", "related")]
        assert memory["surfaced_memory_ids"] == ["mem-a", "mem-b"]

    def test_duplicate_reflection_detected(self):
        """The same content twice is a duplicate by fingerprint."""
        from brain.reflection import create_reflection, detect_surprise, is_duplicate_reflection

        content = detect_surprise({"predicted_outcome": "partial", "confidence": 0.5}, "failure")
        existing = [create_reflection(content)]

        assert is_duplicate_reflection(content, existing) is True

    def test_quality_score_bounded(self):
        """Quality stays within [0, 1] even with lots of evidence."""
        from brain.reflection import compute_quality_score

        score = compute_quality_score({"kind": "meta-observation", "summary": "x" * 50, "confidence": 1.0,
                                       "linked_memory_ids": [str(i) for i in range(20)]})

        assert score == pytest.approx(0.95)


class TestConsolidation:
    """Tests for clustering and consolidation."""

    @pytest.fixture
    def cluster(self, make_memory):
        return [
            make_memory(id="c1", tags=["docker", "build", "ci"], title="Cache busted by COPY",
                        rule="Copy lockfiles before the source tree"),
            make_memory(id="c2", tags=["docker", "build"], title="Huge images",
                        rule="Use multi-stage builds to shrink runtime images dramatically", outcome="success"),
            make_memory(id="c3", tags=["docker", "build"], title="Slow layer pulls", outcome="failure"),
        ]

    def test_cluster_by_tag_overlap(self, cluster, make_memory):
        """Memories sharing two tags cluster together; loners are left out."""
        from brain.reflection import cluster_by_tag_overlap

        loner = make_memory(id="x", tags=["css"])

        clusters = cluster_by_tag_overlap(cluster + [loner])

        assert len(clusters) == 1
        assert sorted(m["id"] for m in clusters[0]) == ["c1", "c2", "c3"]

    def test_consolidation_content(self, cluster):
        """The longest rule leads and novel rules are appended."""
        from brain.reflection import generate_consolidation

        content = generate_consolidation(cluster)

        assert content["merged_tags"] == ["docker", "build"]
        assert content["confidence"] == pytest.approx(0.7)
        assert content["abstracted_rule"] == (
            "Use multi-stage builds to shrink runtime images dramatically "
            "Additionally: Copy lockfiles before the source tree")
        assert "Outcomes: 1 success, 1 failure" in content["detail"]

    def test_single_memory_not_consolidated(self, make_memory):
        """A cluster needs at least two members."""
        from brain.reflection import generate_consolidation

        assert generate_consolidation([make_memory(tags=["docker"])]) is None


class TestRunReflection:
    """Tests for the reflection cycle."""

    def test_not_triggered(self, make_memory):
        """Without a trigger nothing is generated."""
        from brain.reflection import run_reflection

        result = run_reflection([make_memory()], _state(message_count=2))

        assert result["reflect"] is False
        assert result["reflections"] == []

    def test_forced_cycle_skips_existing_reflections(self, make_memory):
        """A second forced run does not duplicate reflections already stored."""
        from brain.reflection import run_reflection

        memories = [make_memory(id=f"p{i}", type="pain", title=f"Docker issue {i}", tags=["docker"])
                    for i in range(5)]

        first = run_reflection(memories, _state(), force=True)
        second = run_reflection(memories + first["reflections"], _state(), force=True)

        assert first["reflect"] is True
        assert len(first["reflections"]) >= 2
        assert all(m["type"] == "reflection" for m in first["reflections"])
        assert second["reflections"] == []

    def test_old_memories_are_ignored(self, make_memory):
        """Only memories from the recent window are reflected on."""
        from brain.reflection import run_reflection

        memories = [make_memory(id=f"p{i}", type="pain", tags=["docker"], days_ago=30) for i in range(5)]

        assert run_reflection(memories, _state(), force=True)["reflections"] == []
