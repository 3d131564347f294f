"""Tests for configuration loading."""

import json

import pytest

from incidentcore.config import ConfigManager, DedupConfig, ScoringWeights
from incidentcore.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so values loaded from .env files are removed on teardown
    for key in ConfigManager.ENV_OVERRIDES:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


class TestDedupConfig:
    """Test defaults and validation."""

    def test_defaults(self):
        config = DedupConfig()

        assert config.scoring.weights.type == 0.30
        assert config.scoring.location_radius_m == 5000.0
        assert config.classifier.duplicate_threshold == 0.85
        assert config.retrieval.sync_window_hours == 12.0
        assert config.consolidation.dry_run is True
        assert config.creation.merge_duplicates is True

    def test_sync_scoring_uses_creation_radius(self):
        config = DedupConfig()
        sync = config.sync_scoring()

        assert sync.location_radius_m == 100.0
        assert config.scoring.location_radius_m == 5000.0
        assert sync.weights == config.scoring.weights

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            ScoringWeights(type=0.5)


class TestConfigManager:
    """Test file and environment layering."""

    def test_defaults_without_file(self):
        config = ConfigManager(load_env=False).load()
        assert config == DedupConfig()

    def test_file_values_deep_merged(self, tmp_path):
        path = tmp_path / "dedup.json"
        path.write_text(json.dumps({
            "consolidation": {"max_deletions_per_run": 25},
            "scoring": {"location_radius_m": 2500},
        }))

        config = ConfigManager(str(path), load_env=False).load()

        assert config.consolidation.max_deletions_per_run == 25
        assert config.consolidation.min_corpus_size == 10
        assert config.scoring.location_radius_m == 2500
        assert config.scoring.weights.type == 0.30

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "dedup.json"
        path.write_text(json.dumps({"consolidation": {"dry_run": True}, "classifier": {"duplicate_threshold": 0.9}}))
        monkeypatch.setenv("DEDUP_DRY_RUN", "false")
        monkeypatch.setenv("DEDUP_SIMILARITY_THRESHOLD", "0.8")
        monkeypatch.setenv("INCIDENT_DB_PATH", "/data/incidents.db")

        config = ConfigManager(str(path), load_env=False).load()

        assert config.consolidation.dry_run is False
        assert config.classifier.duplicate_threshold == 0.8
        assert config.database_path == "/data/incidents.db"

    def test_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("DEDUP_MAX_DELETIONS=7\n")

        config = ConfigManager(env_file=str(env_file)).load()

        assert config.consolidation.max_deletions_per_run == 7

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(str(tmp_path / "missing.json"), load_env=False).load()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            ConfigManager(str(path), load_env=False).load()

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"scoring": {"weights": {"type": 0.9}}}))

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager(str(path), load_env=False).load()
        assert "sum to 1.0" in exc_info.value.message

    def test_save_template_round_trip(self, tmp_path):
        path = tmp_path / "template.json"
        ConfigManager(load_env=False).save_template(str(path))

        config = ConfigManager(str(path), load_env=False).load()
        assert config == DedupConfig()

    def test_load_is_cached(self):
        manager = ConfigManager(load_env=False)
        assert manager.load() is manager.load()
