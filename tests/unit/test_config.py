# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for engine configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from steadybrowser.core.config import EngineConfig, load_config_from_file
from steadybrowser.exceptions import ConfigurationError


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig(data_dir="/tmp/steady")
        assert config.thresholds.loop_threshold == 5
        assert config.thresholds.circuit_threshold == 5
        assert config.thresholds.action_circuit_threshold == 3
        assert config.thresholds.circuit_reset_ms == 30000
        assert config.thresholds.blank_domain_threshold == 2
        assert config.profile_dir == Path("/tmp/steady/profiles/default")
        assert config.traces_dir == Path("/tmp/steady/browser-traces")
        assert config.debug_dir == Path("/tmp/steady/browser-debug")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("STEADYBROWSER_PROFILE_NAME", "work")
        monkeypatch.setenv("STEADYBROWSER_LAUNCH__HEADLESS", "false")
        monkeypatch.setenv("STEADYBROWSER_THRESHOLDS__LOOP_THRESHOLD", "7")
        config = EngineConfig()
        assert config.profile_name == "work"
        assert config.launch.headless is False
        assert config.thresholds.loop_threshold == 7


class TestLoadConfigFromFile:
    def test_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "data_dir: /srv/steady\n"
            "launch:\n"
            "  headless: false\n"
            "search:\n"
            "  providers: [duckduckgo]\n"
        )
        config = load_config_from_file(str(path))
        assert config.data_dir == "/srv/steady"
        assert config.launch.headless is False
        assert config.search.providers == ["duckduckgo"]

    def test_json(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text('{"profile_name": "research"}')
        assert load_config_from_file(str(path)).profile_name == "research"

    def test_empty_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config_from_file(str(path)).ref_attribute == "data-steady-ref"

    @pytest.mark.parametrize(
        "name, body",
        [
            ("engine.toml", "x = 1"),
            ("broken.yaml", "launch: [unclosed"),
            ("list.yaml", "- a\n- b\n"),
        ],
    )
    def test_invalid_files(self, tmp_path, name, body):
        path = tmp_path / name
        path.write_text(body)
        with pytest.raises(ConfigurationError):
            load_config_from_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_from_file(str(tmp_path / "nope.yaml"))
