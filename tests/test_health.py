"""Tests for health.py - grading and the report."""


class TestGrade:
    """Tests for the letter grade."""

    def test_empty_without_state_is_f(self):
        """Nothing stored and no session state fails."""
        from brain.health import generate_health_report

        report = generate_health_report([], None, [], [])

        assert report["grade"] == "F"
        assert "No memories stored" in report["issues"]
        assert "No brain state found" in report["issues"]

    def test_missing_state_caps_at_d(self, sample_memories):
        """A healthy pool without brain state grades no better than D."""
        from brain.health import generate_health_report

        report = generate_health_report(sample_memories, None, [], [])

        assert report["grade"] == "D"

    def test_empty_pool_with_state_caps_at_d(self):
        """Session state but no memories grades no better than D."""
        from brain.health import generate_health_report
        from brain.models import new_brain_state

        report = generate_health_report([], new_brain_state(), [], [])

        assert report["grade"] == "D"

    def test_fresh_pool_with_state_is_a(self, sample_memories):
        """Fresh active memories plus state is top marks."""
        from brain.health import generate_health_report
        from brain.models import new_brain_state

        report = generate_health_report(sample_memories, new_brain_state(), [], [])

        assert report["grade"] == "A"
        assert report["issues"] == []

    def test_harmful_memories_cost_points(self, sample_memories, make_memory):
        """Memories correlated with failures are flagged."""
        from brain.health import generate_health_report
        from brain.models import new_brain_state

        harmful = make_memory(id="mem-bad", title="Misleading advice", failure_correlations=3)

        report = generate_health_report(sample_memories + [harmful], new_brain_state(), [], [])

        assert report["memories"]["by_health"]["harmful"] == 1
        assert report["grade"] == "B"
        assert "Review and update harmful memories" in report["recommendations"]


class TestReport:
    """Tests for report contents and formatting."""

    def test_report_counts(self, sample_memories):
        """Counts by type, rule stats and cortex stats are filled in."""
        from brain.health import generate_health_report
        from brain.models import new_brain_state

        rules = [
            {"type": "pain-pattern", "confidence": 0.9, "observation_count": 4, "promoted": False},
            {"type": "win-pattern", "confidence": 0.5, "observation_count": 1, "promoted": False},
        ]
        cortex = [{"word": "lockfile", "confidence": 0.85, "observation_count": 6}]

        report = generate_health_report(sample_memories, new_brain_state(), cortex, rules,
                                        default_cortex_size=120, total_gaps_processed=9)

        assert report["memories"]["total"] == 4
        assert report["memories"]["by_type"] == {"pain": 2, "win": 1, "fact": 1}
        assert report["rules"]["documentation_candidates"] == 1
        assert report["rules"]["average_confidence"] == 0.7
        assert report["cortex"] == {"default_entries": 120, "learned_entries": 1,
                                    "promotion_candidates": 1, "total_gaps_processed": 9}

    def test_text_format(self, sample_memories):
        """The text report leads with the grade."""
        from brain.health import format_health_report, generate_health_report

        text = format_health_report(generate_health_report(sample_memories, None, [], []))

        assert text.startswith("Brain Health: D")
        assert "Memories: 4 total" in text
        assert "No brain state found" in text
