"""Configuration paths and analysis defaults for BlastRadius."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("BLASTRADIUS_HOME", str(Path.home() / ".blastradius"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
STATE_FILE = BASE_DIR / "state.json"
CONFIG_FILE = BASE_DIR / "config.toml"
TABLES_DIRNAME = "tables"
SUPPORTED_EXTENSIONS = {".go"}

# Load analysis settings from ~/.blastradius/config.toml (falls back to defaults)
from .config_manager import load_analysis_config  # noqa: E402

_analysis = load_analysis_config(CONFIG_FILE)

RESOURCE_PREFIX = _analysis["resource_prefix"]
TEST_PREFIXES = tuple(_analysis["test_prefixes"])
TEST_STEP_PACKAGES = tuple(_analysis["test_step_packages"])
WORKERS = _analysis["workers"] or os.cpu_count() or 1


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
