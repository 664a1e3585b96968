"""Pytest configuration and fixtures for BlastRadius tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest

from blastradius.orchestrator import AnalysisOrchestrator
from blastradius.storage import GraphStore, ProjectManager

TARGETS = ["azurerm_resource_group", "azurerm_key_vault", "azurerm_linux_virtual_machine"]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def provider_root() -> Path:
    """Path to the sample provider repository."""
    return Path(__file__).parent / "fixtures" / "provider"


@pytest.fixture
def provider_files(provider_root: Path) -> List[Path]:
    """Every Go file in the sample provider, in a stable order."""
    return sorted(provider_root.rglob("*.go"))


@pytest.fixture
def temp_project_manager(temp_dir: Path, monkeypatch) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    memory_dir = temp_dir / "memory"
    state_file = temp_dir / "state.json"

    # Patch both config AND storage modules (storage imports at module load)
    monkeypatch.setattr("blastradius.config.BASE_DIR", temp_dir)
    monkeypatch.setattr("blastradius.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("blastradius.config.STATE_FILE", state_file)
    monkeypatch.setattr("blastradius.config.CONFIG_FILE", temp_dir / "config.toml")
    monkeypatch.setattr("blastradius.storage.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("blastradius.storage.STATE_FILE", state_file)

    return ProjectManager()


@pytest.fixture
def built(provider_files: List[Path], provider_root: Path):
    """Store and summary for the sample provider, extracted in-process."""
    orchestrator = AnalysisOrchestrator(workers=1)
    store, summary = orchestrator.build(provider_files, TARGETS, repo_root=provider_root)
    yield store, summary
    store.close()


@pytest.fixture
def built_store(built) -> GraphStore:
    return built[0]
