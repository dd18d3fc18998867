"""Shared fixtures for the brain test suite.

Design principles:
- State isolation: every test gets its own .brain directory via tmp_path
- Sample data factories: memories built with every default filled
- No mocking core logic: tests exercise the real JSON files and scoring
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure the brain package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def brain_dir(tmp_path, monkeypatch):
    """Isolated state directory; BRAIN_PROJECT_DIR points at tmp_path."""
    monkeypatch.setenv("BRAIN_PROJECT_DIR", str(tmp_path))
    monkeypatch.delenv("BRAIN_CONFIG", raising=False)
    state_dir = tmp_path / ".brain"
    state_dir.mkdir(exist_ok=True)
    # Drop any log directory bound by an earlier test's store
    from brain.logging_config import set_log_dir
    set_log_dir(None)
    return state_dir


@pytest.fixture
def make_memory():
    """Factory for memory dicts.

    days_ago backdates created_at; every other keyword is a memory field.
    """
    from brain.models import new_memory

    def _make(days_ago: float = 0, **fields):
        fields.setdefault("type", "pain")
        fields.setdefault("title", "Untitled memory")
        if days_ago:
            fields.setdefault("created_at", (datetime.now() - timedelta(days=days_ago)).isoformat())
        return new_memory(**fields)

    return _make


@pytest.fixture
def sample_memories(make_memory):
    """Small pool covering pains, wins and a fact across git and deployment topics."""
    return [
        make_memory(
            id="mem-force-push",
            type="pain",
            title="Force push to main destroyed teammate commits",
            content="Ran git push --force on main and lost two days of work from the team",
            rule="Never force push to main; use --force-with-lease on feature branches",
            tags=["git", "version-control", "github"],
            severity="high",
        ),
        make_memory(
            id="mem-lease",
            type="win",
            title="Force-with-lease kept the feature branch safe",
            content="Used git push --force-with-lease after rebase and nothing was overwritten",
            rule="Always use --force-with-lease after a rebase",
            tags=["git", "version-control"],
            severity="low",
        ),
        make_memory(
            id="mem-deploy-env",
            type="pain",
            title="Deploy failed because staging env vars were missing",
            content="The deployment pipeline read an empty DATABASE_URL and crashed on boot",
            rule="Verify environment variables before every deploy",
            tags=["deployment", "infrastructure", "config"],
            severity="medium",
        ),
        make_memory(
            id="mem-node-version",
            type="fact",
            title="Build image pins node 20",
            content="The Dockerfile uses node:20-alpine for every service",
            tags=["infrastructure", "node"],
            severity="low",
        ),
    ]
