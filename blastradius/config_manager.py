"""Configuration manager for BlastRadius using TOML files."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict

import toml

logger = logging.getLogger(__name__)


# Defaults for the ``[analysis]`` section.
DEFAULT_ANALYSIS_CONFIG: Dict[str, Any] = {
    "resource_prefix": "azurerm_",
    "test_prefixes": ["Test", "testAcc"],
    "test_step_packages": ["acceptance", "resource", "pluginsdk"],
    "receiver_suffixes": ["Resource", "DataSource"],
    "excluded_names": ["Exists", "Destroy", "ResourceType", "preCheck", "checkDestroy", "testCheckDestroy"],
    "excluded_prefixes": ["Validate", "Parse", "Marshal", "Unmarshal", "Expand", "Flatten"],
    "excluded_suffixes": ["Schema", "Arguments", "Attributes", "Validator", "Parser", "Client"],
    "workers": 0,
}


def load_full_config(config_file: Path) -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", config_file, exc)
        return {}


def load_analysis_config(config_file: Path) -> Dict[str, Any]:
    """Load the ``[analysis]`` section merged over the defaults.

    Unknown keys are ignored; keys with the wrong type keep their default.
    """
    merged = copy.deepcopy(DEFAULT_ANALYSIS_CONFIG)
    section = load_full_config(config_file).get("analysis", {})
    if not isinstance(section, dict):
        return merged

    for key, default in DEFAULT_ANALYSIS_CONFIG.items():
        if key not in section:
            continue
        value = section[key]
        if isinstance(default, list) and isinstance(value, list):
            merged[key] = [str(v) for v in value]
        elif isinstance(default, int) and isinstance(value, int):
            merged[key] = value
        elif isinstance(default, str) and isinstance(value, str):
            merged[key] = value
        else:
            logger.warning("Config key analysis.%s has an unexpected type; using default", key)
    return merged


def save_analysis_config(config_file: Path, **values: Any) -> bool:
    """Update keys of the ``[analysis]`` section, preserving other sections.

    Returns:
        True if saved successfully, False otherwise.
    """
    unknown = set(values) - set(DEFAULT_ANALYSIS_CONFIG)
    if unknown:
        raise ValueError(f"Unknown analysis settings: {', '.join(sorted(unknown))}")

    config = load_full_config(config_file)
    section = config.setdefault("analysis", {})
    section.update(values)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_file, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", config_file, exc)
        return False
