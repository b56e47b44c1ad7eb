"""
config.py - Configuration loader for the imaging ingestion engine.

Loads settings from config.yaml with sensible defaults so that storage
paths, retry budgets and identity-matching weights are never hard-coded
inside a module.  Set IMAGING_ENGINE_CONFIG to point at another file.
"""

import os
import yaml
from typing import Any

# Resolve the config file relative to the repo root, not the CWD,
# so imports work regardless of where the script is launched from.
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_CONFIG_PATH = os.environ.get(
    "IMAGING_ENGINE_CONFIG", os.path.join(_REPO_ROOT, "config.yaml")
)

_DEFAULTS: dict[str, Any] = {
    "paths": {
        "input_folder": "data/raw",
        "storage_root": "data/store",
    },
    "storage": {
        "folder": "dicom",
        "retry": {
            "max_attempts": 3,
            "base_delay": 0.5,
            "max_delay": 10.0,
        },
    },
    "ingestion": {
        "max_workers": 4,
        "render_previews": False,
        "validate_patient": True,
    },
    # Business rules for patient identity reconciliation.  The weights sum
    # to 100 and are divided by 100 to give a confidence in [0, 1].
    "identity": {
        "weights": {
            "patient_id": 40,
            "name": 30,
            "birth_date": 20,
            "sex": 10,
        },
        "thresholds": {
            "match": 0.9,
            "partial": 0.6,
            "name_match": 0.8,
            "name_warning": 0.5,
        },
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str = _CONFIG_PATH) -> dict[str, Any]:
    """
    Load the YAML configuration file and merge it with built-in defaults.

    Parameters
    ----------
    config_path : str
        Path to config.yaml. Defaults to the repo-root config.yaml, or the
        file named by IMAGING_ENGINE_CONFIG.

    Returns
    -------
    dict
        Merged configuration dictionary.
    """
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
    else:
        user_config = {}

    return _deep_merge(_DEFAULTS, user_config)


# Module-level singleton so callers can just do
# `from imaging_engine.config import CONFIG`
CONFIG = load_config()
