"""Tests for YAML-backed settings."""

import pytest
import yaml

from repospector.config.settings import (
    GroupingSettings,
    HNSWSettings,
    MultiPassSettings,
    Settings,
)
from repospector.core.exceptions import ConfigError


class TestDefaults:
    def test_defaults(self):
        settings = Settings()

        assert settings.hnsw.m == 16
        assert settings.hnsw.ef_construction == 200
        assert settings.bm25.k1 == 1.5
        assert settings.hybrid.rrf_k == 60
        assert settings.hybrid.keyword_weight + settings.hybrid.semantic_weight == pytest.approx(1.0)
        assert settings.grouping.solo_risk_threshold == 300
        assert settings.multipass.max_concurrent == 3
        assert settings.multipass.retry_attempts == 1
        assert settings.multipass.focus_areas == ["security", "bugs", "performance", "style"]

    def test_default_lists_are_not_shared(self):
        first, second = Settings(), Settings()
        first.multipass.focus_areas.append("docs")
        assert "docs" not in second.multipass.focus_areas


class TestFromDict:
    def test_partial_sections(self):
        settings = Settings.from_dict(
            {"hnsw": {"m": 8}, "multipass": {"max_concurrent": 5}}
        )
        assert settings.hnsw == HNSWSettings(m=8)
        assert settings.multipass.max_concurrent == 5
        assert settings.grouping == GroupingSettings()

    def test_unknown_section(self):
        with pytest.raises(ConfigError, match="Unknown settings sections"):
            Settings.from_dict({"telemetry": {}})

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="Unknown HNSWSettings keys"):
            Settings.from_dict({"hnsw": {"neighbours": 4}})

    def test_invalid_multipass_values(self):
        with pytest.raises(ConfigError):
            Settings.from_dict({"multipass": {"max_concurrent": 0}})
        with pytest.raises(ConfigError):
            MultiPassSettings(retry_attempts=-1)

    def test_round_trip_through_dict(self):
        settings = Settings.from_dict({"bm25": {"k1": 1.2}, "relevance": {"weights": {"semantic": 1.0}}})
        assert Settings.from_dict(settings.to_dict()) == settings


class TestYaml:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert Settings.load(tmp_path / "absent.yaml") == Settings()

    def test_load(self, tmp_path):
        path = tmp_path / "repospector.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "grouping": {"max_files_per_group": 3},
                    "multipass": {"unit_timeout_seconds": 60},
                }
            )
        )

        settings = Settings.load(path)

        assert settings.grouping.max_files_per_group == 3
        assert settings.multipass.unit_timeout_seconds == 60

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Settings.load(path) == Settings()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("hnsw: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            Settings.load(path)

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigError):
            Settings.load(path)

    def test_save_and_load(self, tmp_path):
        settings = Settings.from_dict({"hybrid": {"diversity_radius": 0.7}})
        path = tmp_path / "nested" / "config.yaml"

        settings.save(path)

        assert Settings.load(path) == settings
