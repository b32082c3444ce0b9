"""Tests for src.shared.settings and src.shared.config_loader."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from src.contracts.errors import ValidationError
from src.shared.config_loader import load_yaml
from src.shared.settings import EngineConfig, load_config


class TestEngineConfig:
    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.max_concurrent == 10
        assert cfg.max_queue_size == 1000
        assert cfg.default_priority == 5
        assert cfg.max_retries == 3
        assert cfg.retry_delay == 5.0
        assert cfg.worker_timeout == 30.0
        assert cfg.concurrent_limit == 5
        assert cfg.min_support == 0.1
        assert cfg.min_confidence == 0.5
        assert cfg.time_window == 3600.0
        assert cfg.max_time_gap == 300.0
        assert cfg.history_retention == 30 * 86400
        assert cfg.validate_transitions is True
        assert cfg.max_history == 1000

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            EngineConfig(max_concurrent=0, min_support=1.5)
        assert "max_concurrent must be >= 1" in exc_info.value.errors
        assert "min_support must be within [0, 1]" in exc_info.value.errors

    def test_pattern_length_bounds(self):
        with pytest.raises(ValidationError, match="max_pattern_length"):
            EngineConfig(min_pattern_length=5, max_pattern_length=3)

    def test_with_overrides_revalidates(self):
        cfg = EngineConfig().with_overrides(max_retries=5)
        assert cfg.max_retries == 5
        with pytest.raises(ValidationError):
            cfg.with_overrides(max_retries=0)

    def test_from_dict_flattens_sections_and_sec_suffix(self):
        cfg = EngineConfig.from_dict({
            "scheduler": {"max_concurrent": "4", "retry_delay_sec": 2},
            "state": {"validate_transitions": "no"},
        })
        assert cfg.max_concurrent == 4
        assert cfg.retry_delay == 2.0
        assert cfg.validate_transitions is False

    def test_from_dict_unknown_key_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            cfg = EngineConfig.from_dict({"bogus_option": 1})
        assert cfg == EngineConfig()
        assert "bogus_option" in caplog.text

    def test_from_dict_bad_value(self):
        with pytest.raises(ValidationError, match="max_retries"):
            EngineConfig.from_dict({"max_retries": "many"})


class TestLoading:
    def test_load_config_none_gives_defaults(self):
        assert load_config(None) == EngineConfig()

    def test_load_config_from_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("workflow:\n  concurrent_limit: 2\n", encoding="utf-8")
        assert load_config(path).concurrent_limit == 2

    def test_load_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml(tmp_path / "nope.yaml")

    def test_load_yaml_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_yaml(path)

    def test_shipped_engine_yaml_is_valid(self):
        cfg = load_config(Path(__file__).resolve().parents[1] / "config" / "engine.yaml")
        assert cfg == EngineConfig()
