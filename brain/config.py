#!/usr/bin/env python3
"""Tunable defaults for the brain core and the optional YAML override file.

Every numeric knob the components use is declared here as a module-level
default. A project may override any of them with a ``brain.yaml`` file in
its state directory (or the path named by ``BRAIN_CONFIG``):

    engine:
      max_pain: 3
    gate:
      dup_threshold: 0.9

Unknown sections or keys are ignored with a warning.
"""

import copy
import os
from pathlib import Path
from typing import Optional

import yaml

from .logging_config import get_logger
from .paths import get_state_dir

log = get_logger("brain.config")

CONFIG_FILE_NAME = "brain.yaml"

# Retrieval engine
ENGINE_DEFAULTS = {
    "max_pain": 5,
    "max_wins": 3,
    "late_max_pain": 2,
    "late_max_wins": 1,
    "min_prompt_length": 5,
    "decay_threshold_days": 30,
    "session_tag_repeat_threshold": 3,
    "context_phase_mid": 20,
    "context_phase_late": 40,
    "min_viable_score": 0.15,
    "max_rule_chars": 200,
}

# Quality gate
GATE_DEFAULTS = {
    "min_quality": 0.15,
    "dup_threshold": 0.85,
    "min_tag_overlap": 2,
    "conflict_floor": 0.25,
}

# Brain state checkpointing (messages between checkpoints, per phase)
CHECKPOINT_INTERVALS = {
    "early": 9,
    "mid": 12,
    "late": 18,
}

STATE_DEFAULTS = {
    "plasticity_boost": 0.1,
    "max_strength": 2.0,
    "decay_fraction": 0.1,
    "trace_baseline_epsilon": 0.05,
    "max_traces": 500,
    "max_activity": 500,
    "activity_stale_days": 7,
}

# Prediction-error capture
PREDICTION_DEFAULTS = {
    "base_threshold": 0.6,
    "min_threshold": 0.3,
    "max_threshold": 0.85,
    "density_window_hours": 4,
    "density_soft_cap": 8,
    "density_floor": 2,
    "decay_per_day": 0.1,
    "max_entries": 500,
    "forget_floor": 0.5,
    "high_surprise_cutoff": 0.2,
}

# Reflection
REFLECTION_DEFAULTS = {
    "interval": 8,
    "min_session_messages": 4,
    "min_significant_events": 3,
    "min_memories_for_meta": 5,
    "min_surprise": 0.3,
    "recent_window_days": 7,
    "max_observations": 5,
}

# Learners
LEARNER_DEFAULTS = {
    "confidence_cap": 0.95,
    "cortex_min_observations": 2,
    "cortex_merge_threshold": 0.5,
    "cortex_promote_confidence": 0.8,
    "cortex_promote_observations": 5,
    "cortex_max_age_days": 60,
    "rule_min_group": 3,
    "rule_min_tag_overlap": 2,
    "rule_min_confidence": 0.4,
    "rule_promote_confidence": 0.8,
    "rule_promote_observations": 3,
    "rule_max_age_days": 90,
}

# Archival
PRUNE_DEFAULTS = {
    "min_score": 0.10,
    "max_stale_days": 90,
    "min_quality": 0.10,
    "min_memory_count": 50,
    "capacity": 1000,
    "capacity_warning_pct": 0.80,
}

DEFAULTS = {
    "engine": ENGINE_DEFAULTS,
    "gate": GATE_DEFAULTS,
    "checkpoint": CHECKPOINT_INTERVALS,
    "state": STATE_DEFAULTS,
    "prediction": PREDICTION_DEFAULTS,
    "reflection": REFLECTION_DEFAULTS,
    "learner": LEARNER_DEFAULTS,
    "prune": PRUNE_DEFAULTS,
}


def _config_path() -> Path:
    env_path = os.environ.get("BRAIN_CONFIG")
    if env_path:
        return Path(env_path)
    return get_state_dir() / CONFIG_FILE_NAME


def _merge_overrides(config: dict, overrides: dict) -> dict:
    """Merge a parsed override mapping onto a copy of the defaults."""
    for section, values in overrides.items():
        if section not in config:
            log.warning(f"Ignoring unknown config section: {section}")
            continue
        if not isinstance(values, dict):
            log.warning(f"Config section {section} must be a mapping, got {type(values).__name__}")
            continue
        for key, value in values.items():
            if key not in config[section]:
                log.warning(f"Ignoring unknown config key: {section}.{key}")
                continue
            config[section][key] = value
    return config


def load_config(path: Optional[Path] = None) -> dict:
    """Load defaults with any YAML overrides applied.

    Args:
        path: Override file. Defaults to BRAIN_CONFIG or <state dir>/brain.yaml.

    Returns:
        Dict of section name -> dict of settings. Always a fresh copy.
    """
    config = copy.deepcopy(DEFAULTS)
    config_path = Path(path) if path else _config_path()
    if not config_path.exists():
        return config

    try:
        overrides = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        log.warning(f"Could not parse {config_path}: {e}")
        return config

    if not isinstance(overrides, dict):
        log.warning(f"{config_path} must contain a mapping at top level")
        return config

    log.debug(f"Loaded config overrides from {config_path}")
    return _merge_overrides(config, overrides)
