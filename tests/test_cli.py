"""Integration tests for CLI commands (using grouped command hierarchy)."""

from pathlib import Path
from typing import List

from typer.testing import CliRunner

import pytest

from blastradius import __version__
from blastradius.cli import app

runner = CliRunner()

RG = "azurerm_resource_group"


def _build(provider_files: List[Path], provider_root: Path, *extra: str):
    args = ["build", *[str(p) for p in provider_files], "--repo-root", str(provider_root),
            "-r", RG, "-r", "azurerm_linux_virtual_machine", "-w", "1", *extra]
    return runner.invoke(app, args)


@pytest.fixture
def built_project(provider_files: List[Path], provider_root: Path, temp_project_manager):
    result = _build(provider_files, provider_root, "--name", "Prov")
    assert result.exit_code == 0, result.stdout
    return temp_project_manager


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"BlastRadius v{__version__}" in result.stdout


class TestBuildCommand:
    """Tests for 'br build'."""

    def test_build_saves_and_loads_project(self, provider_files, provider_root, temp_project_manager):
        result = _build(provider_files, provider_root, "--name", "Prov")

        assert result.exit_code == 0
        assert "Saved store as project 'Prov'." in result.stdout
        assert "Files:" in result.stdout
        assert temp_project_manager.get_current_project() == "Prov"
        meta = temp_project_manager.get_metadata("Prov")
        assert meta["resources"] == [RG, "azurerm_linux_virtual_machine"]
        assert meta["files"] == 10

    def test_default_name_from_repo_root(self, provider_files, provider_root, temp_project_manager):
        result = _build(provider_files, provider_root)

        assert result.exit_code == 0
        assert "Saved store as project 'provider'." in result.stdout

    def test_unresolved_listing(self, provider_files, provider_root, temp_project_manager):
        result = _build(provider_files, provider_root, "--unresolved")

        assert result.exit_code == 0
        assert "Unresolved calls (" in result.stdout
        assert "Unresolved calls (" not in _build(provider_files, provider_root).stdout

    def test_file_list_argument(self, provider_files, provider_root, temp_dir, temp_project_manager):
        list_file = temp_dir / "files.txt"
        lines = ["# changed files"] + [str(p) for p in provider_files] + [str(provider_root / "README.md")]
        list_file.write_text("\n".join(lines) + "\n", encoding="utf-8")

        result = runner.invoke(app, ["build", f"@{list_file}", "-r", RG, "-w", "1", "--name", "Listed"])

        assert result.exit_code == 0
        assert temp_project_manager.get_metadata("Listed")["files"] == 10

    def test_missing_file_list(self, temp_dir, temp_project_manager):
        result = runner.invoke(app, ["build", f"@{temp_dir / 'nope.txt'}", "-r", RG])
        assert result.exit_code != 0

    def test_no_go_files(self, temp_dir, temp_project_manager):
        result = runner.invoke(app, ["build", str(temp_dir / "notes.txt"), "-r", RG])
        assert result.exit_code != 0

    def test_resource_is_required(self, provider_files, temp_project_manager):
        result = runner.invoke(app, ["build", str(provider_files[0])])
        assert result.exit_code != 0


class TestQueryCommand:
    """Tests for 'br query'."""

    def test_catalog_without_operation(self, built_project):
        result = runner.invoke(app, ["query"])

        assert result.exit_code == 0
        assert "Operations: direct, indirect, combined" in result.stdout
        assert "Loaded resources" in result.stdout

    def test_indirect(self, built_project):
        result = runner.invoke(app, ["query", "indirect", RG])

        assert result.exit_code == 0
        assert "indirect results" in result.stdout

    def test_no_results(self, built_project):
        result = runner.invoke(app, ["query", "direct", "azurerm_nope"])

        assert result.exit_code == 0
        assert "No direct results for azurerm_nope." in result.stdout

    def test_unknown_operation(self, built_project):
        result = runner.invoke(app, ["query", "sideways", RG])
        assert result.exit_code != 0

    def test_operation_needs_resources(self, built_project):
        result = runner.invoke(app, ["query", "direct"])
        assert result.exit_code != 0

    def test_no_project_loaded(self, temp_project_manager):
        result = runner.invoke(app, ["query", "direct", RG])
        assert result.exit_code != 0

    def test_corrupt_store(self, built_project):
        (built_project.tables_dir("Prov") / "TestStep.csv").unlink()

        result = runner.invoke(app, ["query", "direct", RG])

        assert result.exit_code == 1
        assert "Could not load store" in result.stdout


class TestProjectCommands:
    """Tests for 'br project ...'."""

    def test_list_empty(self, temp_project_manager):
        result = runner.invoke(app, ["project", "list"])

        assert result.exit_code == 0
        assert "No projects" in result.stdout

    def test_list_marks_current(self, built_project):
        result = runner.invoke(app, ["project", "list"])

        assert result.exit_code == 0
        assert "* Prov" in result.stdout

    def test_load_and_unload(self, built_project):
        assert runner.invoke(app, ["project", "unload"]).exit_code == 0
        assert "No project loaded." in runner.invoke(app, ["project", "current"]).stdout

        result = runner.invoke(app, ["project", "load", "Prov"])
        assert result.exit_code == 0
        assert "Loaded project 'Prov'." in result.stdout

        current = runner.invoke(app, ["project", "current"])
        assert current.stdout.startswith("Prov")

    def test_load_missing(self, temp_project_manager):
        result = runner.invoke(app, ["project", "load", "Missing"])
        assert result.exit_code != 0

    def test_delete(self, built_project):
        result = runner.invoke(app, ["project", "delete", "Prov"])

        assert result.exit_code == 0
        assert "Prov" not in built_project.list_projects()
        assert built_project.get_current_project() is None


class TestConfigCommands:
    """Tests for 'br config ...'."""

    def test_set_list_value(self, temp_project_manager):
        result = runner.invoke(app, ["config", "set", "test_prefixes", "TestAcc, testAcc"])

        assert result.exit_code == 0
        assert "Set test_prefixes" in result.stdout

        show = runner.invoke(app, ["config", "show"])
        assert show.exit_code == 0
        assert "test_prefixes" in show.stdout

    def test_set_unknown_key(self, temp_project_manager):
        result = runner.invoke(app, ["config", "set", "colour", "blue"])
        assert result.exit_code != 0

    def test_set_bad_integer(self, temp_project_manager):
        result = runner.invoke(app, ["config", "set", "workers", "many"])
        assert result.exit_code != 0
