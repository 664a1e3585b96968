"""Tests for TOML analysis settings and the config-function filter."""

from pathlib import Path

import pytest
import toml

from blastradius.config_manager import DEFAULT_ANALYSIS_CONFIG, load_analysis_config, save_analysis_config
from blastradius.predicates import TemplateFilter


class TestAnalysisConfig:
    """Tests for loading and saving the [analysis] section."""

    def test_missing_file_gives_defaults(self, temp_dir: Path):
        assert load_analysis_config(temp_dir / "config.toml") == DEFAULT_ANALYSIS_CONFIG

    def test_values_merge_over_defaults(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text('[analysis]\nresource_prefix = "google_"\nworkers = 3\n', encoding="utf-8")

        loaded = load_analysis_config(path)

        assert loaded["resource_prefix"] == "google_"
        assert loaded["workers"] == 3
        assert loaded["test_prefixes"] == DEFAULT_ANALYSIS_CONFIG["test_prefixes"]

    def test_wrong_type_keeps_default(self, temp_dir: Path, caplog):
        path = temp_dir / "config.toml"
        path.write_text('[analysis]\ntest_prefixes = "Test"\n', encoding="utf-8")

        assert load_analysis_config(path)["test_prefixes"] == ["Test", "testAcc"]
        assert "unexpected type" in caplog.text

    def test_unreadable_file_gives_defaults(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text("[analysis\n", encoding="utf-8")

        assert load_analysis_config(path) == DEFAULT_ANALYSIS_CONFIG

    def test_save_preserves_other_sections(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text('[other]\nkeep = true\n', encoding="utf-8")

        assert save_analysis_config(path, excluded_names=["Exists"]) is True

        data = toml.load(path)
        assert data["other"] == {"keep": True}
        assert data["analysis"]["excluded_names"] == ["Exists"]

    def test_save_rejects_unknown_keys(self, temp_dir: Path):
        with pytest.raises(ValueError, match="colour"):
            save_analysis_config(temp_dir / "config.toml", colour="blue")


class TestTemplateFilter:
    """Tests for the default config-function predicate."""

    def test_accepts_text_returning_resource_methods(self):
        accept = TemplateFilter()

        assert accept("basic", "WidgetResource", ["string"])
        assert accept("template", "WidgetDataSource", ["string"])

    def test_rejects_non_builders(self):
        accept = TemplateFilter()

        assert not accept("basic", "", ["string"])
        assert not accept("basic", "WidgetResource", ["*bool", "error"])
        assert not accept("basic", "Registration", ["string"])
        assert not accept("ResourceType", "WidgetResource", ["string"])
        assert not accept("ExpandWidget", "WidgetResource", ["string"])
        assert not accept("basicSchema", "WidgetResource", ["string"])

    def test_from_config(self):
        settings = dict(DEFAULT_ANALYSIS_CONFIG, receiver_suffixes=[], excluded_names=[])
        accept = TemplateFilter.from_config(settings)

        assert accept("Exists", "Registration", ["string"])
        assert accept.is_infrastructure_helper("ValidateName")
