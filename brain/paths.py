"""Canonical path resolution for the brain state directory."""
import os
from pathlib import Path

STATE_DIR_NAME = ".brain"


def get_state_dir() -> Path:
    """Get .brain directory: BRAIN_PROJECT_DIR env -> ancestor search -> cwd."""
    project_dir = os.environ.get("BRAIN_PROJECT_DIR")
    if project_dir:
        state_dir = Path(project_dir) / STATE_DIR_NAME
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir

    cwd = Path.cwd()
    for parent in [cwd] + list(cwd.parents):
        state_dir = parent / STATE_DIR_NAME
        if state_dir.exists() and state_dir.is_dir():
            return state_dir

    state_dir = cwd / STATE_DIR_NAME
    state_dir.mkdir(exist_ok=True)
    return state_dir
