"""Tests for configuration management."""

import logging
from pathlib import Path

import pytest
import yaml

from shared.config import (
    CONFIG_FILENAME,
    LoggingConfig,
    QualityPipelineConfig,
    _deep_merge,
    clear_config_cache,
    configure_logging,
    get_config,
    load_config,
)


@pytest.fixture(autouse=True)
def _clear_cache():
    """Clear config cache before each test."""
    clear_config_cache()


@pytest.fixture(autouse=True)
def _no_home_config(tmp_path, monkeypatch):
    """Keep a developer's own home config out of the tests."""
    empty_home = tmp_path / "empty-home"
    empty_home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: empty_home)


def write_config(path: Path, data: dict) -> Path:
    config_file = path / CONFIG_FILENAME
    config_file.write_text(yaml.dump(data))
    return config_file


# --- Defaults ---


class TestDefaults:
    def test_load_empty_returns_defaults(self):
        config = load_config(start_dir=Path("/nonexistent"))
        assert isinstance(config, QualityPipelineConfig)

    def test_default_execution(self):
        execution = load_config(start_dir=Path("/nonexistent")).execution
        assert execution.pass_threshold == 80.0
        assert execution.quality_levels.excellent == 95.0
        assert execution.quality_levels.good == 85.0
        assert execution.quality_levels.fair == 70.0
        assert execution.default_timeout_seconds == 300.0

    def test_default_responsibility(self):
        responsibility = load_config(start_dir=Path("/nonexistent")).responsibility
        assert responsibility.default_escalation_path == ["tech-lead", "engineering-manager", "cto"]
        assert responsibility.default_sla_hours == 24.0
        assert responsibility.matrix[-1].category == "*"
        assert responsibility.people == []

    def test_default_storage(self):
        config = load_config(start_dir=Path("/nonexistent"))
        assert config.storage.backend == "jsonl"
        assert config.validators == {}
        assert config.catalog.path == ""


# --- Loading ---


class TestLoading:
    def test_load_explicit_path(self, tmp_path):
        path = write_config(tmp_path, {"execution": {"pass_threshold": 90}})
        config = load_config(config_path=path)
        assert config.execution.pass_threshold == 90

    def test_explicit_path_preserves_other_defaults(self, tmp_path):
        path = write_config(tmp_path, {"execution": {"pass_threshold": 90}})
        config = load_config(config_path=path)
        assert config.execution.quality_levels.good == 85.0
        assert config.storage.backend == "jsonl"

    def test_load_from_start_dir(self, tmp_path):
        write_config(tmp_path, {"storage": {"path": "/data/qp"}})
        assert load_config(start_dir=tmp_path).storage.path == "/data/qp"

    def test_validators_section(self, tmp_path):
        write_config(
            tmp_path,
            {"validators": {"coverage": {"command": ["pytest", "--cov"], "parse": "json"}}},
        )
        validators = load_config(start_dir=tmp_path).validators
        assert validators["coverage"].command == ["pytest", "--cov"]
        assert validators["coverage"].parse == "json"

    def test_people_section(self, tmp_path):
        write_config(
            tmp_path,
            {"responsibility": {"people": [{"name": "ann", "roles": ["developer"]}]}},
        )
        people = load_config(start_dir=tmp_path).responsibility.people
        assert people[0].name == "ann"
        assert people[0].available

    def test_invalid_threshold_rejected(self, tmp_path):
        path = write_config(tmp_path, {"execution": {"pass_threshold": 150}})
        with pytest.raises(Exception):
            load_config(config_path=path)

    def test_nonexistent_explicit_path_returns_defaults(self):
        config = load_config(config_path=Path("/nonexistent/config.yaml"))
        assert config.execution.pass_threshold == 80.0

    def test_empty_yaml_returns_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("")
        assert load_config(start_dir=tmp_path).execution.pass_threshold == 80.0


# --- Cascade ---


class TestCascade:
    def test_repo_overrides_home(self, tmp_path, monkeypatch):
        home_dir = tmp_path / "home"
        home_dir.mkdir()
        write_config(home_dir, {"storage": {"path": "/home-data"}, "logging": {"level": "DEBUG"}})
        monkeypatch.setattr(Path, "home", lambda: home_dir)

        repo_dir = tmp_path / "repo"
        repo_dir.mkdir()
        write_config(repo_dir, {"storage": {"path": "/repo-data"}})

        config = load_config(start_dir=repo_dir)
        assert config.storage.path == "/repo-data"
        assert config.logging.level == "DEBUG"

    def test_get_config_cached(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert get_config() is get_config()
        clear_config_cache()
        write_config(tmp_path, {"execution": {"pass_threshold": 60}})
        assert get_config().execution.pass_threshold == 60


# --- Deep merge ---


class TestDeepMerge:
    def test_nested_merge(self):
        result = _deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        assert result == {"a": {"x": 1, "y": 3}}

    def test_override_dict_with_scalar(self):
        assert _deep_merge({"a": {"x": 1}}, {"a": 5}) == {"a": 5}

    def test_does_not_mutate_base(self):
        base = {"a": {"x": 1}}
        _deep_merge(base, {"a": {"x": 2}})
        assert base == {"a": {"x": 1}}


# --- Logging ---


class TestConfigureLogging:
    def test_sets_level(self, monkeypatch):
        root = logging.getLogger()
        monkeypatch.setattr(root, "handlers", [])
        monkeypatch.setattr(root, "level", logging.WARNING)
        configure_logging(LoggingConfig(level="debug"))
        assert root.level == logging.DEBUG
