"""Tests for scoring.py - lifecycle scores and health classes."""

from datetime import datetime

import pytest

NOW = datetime(2026, 5, 1)


def _fact(make_memory, **fields):
    fields.setdefault("created_at", "2026-04-21T00:00:00")
    return make_memory(type="fact", title="Staging database lives on port 5433", severity="medium", **fields)


class TestScoreMemory:
    """Tests for score_memory."""

    def test_ten_day_old_fact(self, make_memory):
        """An unaccessed medium fact decays at the fact rate."""
        from brain.scoring import score_memory

        assert score_memory(_fact(make_memory), NOW) == pytest.approx(0.6703)

    def test_stored_failures_cost_points(self, make_memory):
        """Each recorded failure correlation subtracts 0.15."""
        from brain.scoring import score_memory

        assert score_memory(_fact(make_memory, failure_correlations=2), NOW) == pytest.approx(0.3703)

    @pytest.mark.parametrize("stored,override,expected", [
        (0, 2, 0.3703),
        (2, 0, 0.6703),
        (1, None, 0.5203),
    ])
    def test_failure_correlation_argument_overrides(self, make_memory, stored, override, expected):
        """An explicit failure_correlation replaces the stored count."""
        from brain.scoring import score_memory

        memory = _fact(make_memory, failure_correlations=stored)

        assert score_memory(memory, NOW, failure_correlation=override) == pytest.approx(expected)

    def test_superseded_scores_low(self, make_memory):
        """Supersession costs 0.6."""
        from brain.scoring import score_memory

        assert score_memory(_fact(make_memory, superseded_by="mem-new"), NOW) == pytest.approx(0.0703)


class TestHealthClasses:
    """Tests for classify_health and rank_memories."""

    @pytest.mark.parametrize("fields,score,expected", [
        ({"superseded_by": "mem-new"}, 0.9, "superseded"),
        ({"failure_correlations": 2}, 0.9, "harmful"),
        ({}, 0.5, "active"),
        ({}, 0.3, "aging"),
        ({}, 0.1, "stale"),
    ])
    def test_classify(self, make_memory, fields, score, expected):
        """Supersession and harm outrank the score bands."""
        from brain.scoring import classify_health

        assert classify_health(make_memory(**fields), score) == expected

    def test_rank_skips_superseded_and_weak(self, make_memory):
        """Only live memories above the floor are ranked, best first."""
        from brain.scoring import rank_memories

        pool = [
            _fact(make_memory, id="mem-old-fact"),
            make_memory(id="mem-arch", type="architecture", title="Services talk over NATS",
                        severity="medium", created_at="2026-04-21T00:00:00"),
            _fact(make_memory, id="mem-gone", superseded_by="mem-arch"),
            _fact(make_memory, id="mem-ancient", created_at="2025-01-01T00:00:00"),
        ]

        ranked = rank_memories(pool, now=NOW)

        assert [m["id"] for m in ranked] == ["mem-arch", "mem-old-fact"]
