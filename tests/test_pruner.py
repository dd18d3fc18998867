"""Tests for pruner.py - archival of dead memories."""

import pytest


@pytest.fixture
def large_pool(make_memory):
    """Fifty fresh memories plus one of each prunable kind."""
    pool = [make_memory(id=f"mem-{i}", type="decision", title=f"Decision {i}", quality_score=0.6)
            for i in range(50)]
    pool.append(make_memory(id="mem-superseded", title="Old approach", superseded_by="mem-0"))
    pool.append(make_memory(id="mem-stale", type="fact", title="Ancient fact", days_ago=400))
    pool.append(make_memory(id="mem-vague", type="decision", title="Vague", quality_score=0.05))
    return pool


class TestPrune:
    """Tests for prune_memories."""

    def test_small_pool_never_pruned(self, make_memory):
        """Below the minimum pool size even superseded memories stay."""
        from brain.pruner import prune_memories

        pool = [make_memory(id="a", superseded_by="b"), make_memory(id="b")]

        result = prune_memories(pool)

        assert result["archived"] == []
        assert len(result["kept"]) == 2
        assert result["stats"]["total_after"] == 2

    def test_each_category_archived(self, large_pool):
        """Superseded, stale and low-quality memories are archived with their category."""
        from brain.pruner import prune_memories

        result = prune_memories(large_pool)

        categories = {a["memory"]["id"]: a["category"] for a in result["archived"]}
        assert categories == {
            "mem-superseded": "superseded",
            "mem-stale": "stale",
            "mem-vague": "low_quality",
        }
        assert result["stats"] == {
            "total_before": 53,
            "total_after": 50,
            "superseded_count": 1,
            "stale_count": 1,
            "low_quality_count": 1,
        }

    def test_options_override_defaults(self, large_pool):
        """A raised minimum pool size disables pruning."""
        from brain.pruner import prune_memories

        result = prune_memories(large_pool, {"min_memory_count": 100})

        assert result["archived"] == []

    def test_preview_does_not_split(self, large_pool):
        """Dry run reports reasons and the surviving count."""
        from brain.pruner import preview_prune

        preview = preview_prune(large_pool)

        assert preview["would_keep"] == 50
        assert {p["memory"]["id"] for p in preview["would_archive"]} == {"mem-superseded", "mem-stale", "mem-vague"}
        assert len(large_pool) == 53


class TestArchive:
    """Tests for archive helpers."""

    def test_restore_clears_supersession(self, make_memory):
        """A restored memory is live again."""
        from brain.pruner import restore_from_archive

        entry = {"memory": make_memory(id="a", superseded_by="b"), "category": "superseded"}

        restored = restore_from_archive(entry)

        assert restored["superseded_by"] is None
        assert restored["last_accessed"] is not None

    def test_archive_stats_by_category(self):
        """Stats group entries by category with date bounds."""
        from brain.pruner import archive_stats

        archived = [
            {"category": "stale", "archived_at": "2026-03-01T00:00:00"},
            {"category": "stale", "archived_at": "2026-05-01T00:00:00"},
            {"category": "superseded", "archived_at": "2026-04-01T00:00:00"},
        ]

        stats = archive_stats(archived)

        assert stats == {"total": 3, "by_category": {"stale": 2, "superseded": 1},
                         "oldest": "2026-03-01T00:00:00", "newest": "2026-05-01T00:00:00"}


class TestCapacity:
    """Tests for check_capacity."""

    @pytest.mark.parametrize("count,level,should_prune", [
        (100, "ok", False),
        (850, "warning", False),
        (1000, "critical", True),
    ])
    def test_levels(self, count, level, should_prune):
        """Levels flip at 80% and 100% of capacity."""
        from brain.pruner import check_capacity

        result = check_capacity(count)

        assert result["level"] == level
        assert result["should_prune"] is should_prune
