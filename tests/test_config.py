"""Tests for edgellm.config: file, environment and override layering."""

from __future__ import annotations

import json
import os
import stat
import sys

import pytest

from edgellm.config import DEFAULT_HF_ENDPOINT, EdgeLLMConfig, load_config, save_config


class TestLoadConfig:
    def test_defaults_without_file_or_env(self, tmp_path):
        config = load_config(path=tmp_path / "missing.json", env={})
        assert config == EdgeLLMConfig()
        assert config.hf_endpoint == DEFAULT_HF_ENDPOINT

    def test_file_values_are_used(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"models_dir": "/data/models", "max_retries": 5}))
        config = load_config(path=path, env={})
        assert config.models_dir == "/data/models"
        assert config.max_retries == 5

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"api_key": "x", "force_fallback": True}))
        assert load_config(path=path, env={}).force_fallback is True

    def test_unreadable_file_is_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert load_config(path=path, env={}) == EdgeLLMConfig()

    def test_non_object_file_is_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        assert load_config(path=path, env={}) == EdgeLLMConfig()

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"models_dir": "/from/file"}))
        env = {
            "EDGELLM_MODELS_DIR": "/from/env",
            "HF_TOKEN": "hf_abc",
            "EDGELLM_MEMORY_LIMIT_MB": "256",
            "EDGELLM_FORCE_FALLBACK": "yes",
            "EDGELLM_RETRY_BASE_DELAY": "0.1",
        }
        config = load_config(path=path, env=env)
        assert config.models_dir == "/from/env"
        assert config.hf_token == "hf_abc"
        assert config.memory_limit_mb == 256
        assert config.force_fallback is True
        assert config.retry_base_delay == 0.1

    def test_edgellm_token_beats_hf_token(self, tmp_path):
        env = {"EDGELLM_HF_TOKEN": "mine", "HF_TOKEN": "shared"}
        assert load_config(path=tmp_path / "none", env=env).hf_token == "mine"

    def test_explicit_overrides_win_and_none_is_skipped(self, tmp_path):
        env = {"EDGELLM_MODELS_DIR": "/from/env"}
        config = load_config(
            path=tmp_path / "none", env=env, models_dir="/explicit", force_fallback=None
        )
        assert config.models_dir == "/explicit"
        assert config.force_fallback is False

    def test_reads_home_config_by_default(self, tmp_path, monkeypatch):
        path = tmp_path / "home.json"
        path.write_text(json.dumps({"hf_endpoint": "https://mirror.test"}))
        monkeypatch.setattr("edgellm.config._config_path", lambda: path)
        assert load_config(env={}).hf_endpoint == "https://mirror.test"


class TestSaveConfig:
    def test_round_trip_skips_none(self, tmp_path):
        path = tmp_path / "sub" / "config.json"
        save_config(EdgeLLMConfig(models_dir="/m", hf_token="secret"), path)

        data = json.loads(path.read_text())
        assert "memory_limit_mb" not in data
        assert load_config(path=path, env={}).hf_token == "secret"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, tmp_path):
        path = save_config(EdgeLLMConfig(), tmp_path / "config.json")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_to_dict_masks_token():
    assert EdgeLLMConfig(hf_token="secret").to_dict()["hf_token"] == "***"
    assert EdgeLLMConfig().to_dict()["hf_token"] is None
