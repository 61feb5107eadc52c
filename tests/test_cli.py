"""Tests for edgellm.cli — Click command-line interface."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import MODEL_ID, FakeRepositoryClient, write_bundle
from edgellm.cli import main
from edgellm.download import DownloadManager
from edgellm.storage import FixedStorageRoot


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep the developer's ~/.edgellm/config.json and env out of CLI tests."""
    monkeypatch.setattr("edgellm.config._config_path", lambda: tmp_path / "config.json")
    for var in ("EDGELLM_MODELS_DIR", "EDGELLM_FORCE_FALLBACK", "EDGELLM_HF_TOKEN", "HF_TOKEN"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def models_dir(tmp_path):
    return tmp_path / "models"


def _invoke(models_dir, *args):
    return CliRunner().invoke(main, ["--models-dir", str(models_dir), *args])


def _manager_for(models_dir, client=None):
    return DownloadManager(client or FakeRepositoryClient(), FixedStorageRoot(models_dir))


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


class TestGroup:
    def test_welcome_without_subcommand(self):
        result = CliRunner().invoke(main, [])
        assert result.exit_code == 0
        assert "edgellm pull" in result.output

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "edgellm" in result.output

    def test_commands_registered(self):
        for name in ("pull", "list", "info", "clean", "rm", "generate", "chat", "debug-report"):
            assert name in main.commands


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_no_stream_prints_fallback_response(self, models_dir):
        result = _invoke(models_dir, "generate", "mock/test", "Hello", "--no-stream")
        assert result.exit_code == 0, result.output
        assert "[Fallback Response]" in result.output
        assert "'Hello'" in result.output

    def test_stream_prints_fragments(self, models_dir):
        result = _invoke(models_dir, "generate", "mock/test", "Hi there", "-n", "20")
        assert result.exit_code == 0, result.output
        assert "'Hi there'" in result.output
        assert "Max Tokens: 20" in result.output

    def test_fallback_flag_on_undownloaded_model(self, models_dir):
        result = _invoke(models_dir, "--fallback", "generate", "llama-3.2-1b", "Hey", "--no-stream")
        assert result.exit_code == 0, result.output
        assert "simulated" in result.output

    def test_invalid_params_fail(self, models_dir):
        result = _invoke(models_dir, "generate", "mock/test", "Hello", "--max-tokens", "0")
        assert result.exit_code == 1
        assert "invalid request" in result.output

    def test_unknown_alias_is_usage_error(self, models_dir):
        result = _invoke(models_dir, "generate", "no-such-model", "Hi")
        assert result.exit_code == 2
        assert "Unknown model" in result.output


# ---------------------------------------------------------------------------
# Storage commands
# ---------------------------------------------------------------------------


class TestList:
    def test_empty(self, models_dir):
        result = _invoke(models_dir, "list")
        assert result.exit_code == 0
        assert "No models" in result.output

    def test_lists_only_valid_models(self, models_dir):
        write_bundle(models_dir / "acme--tiny-1B-4bit")
        write_bundle(models_dir / "acme--broken", names=("config.json",))

        result = _invoke(models_dir, "list")
        assert result.exit_code == 0
        assert MODEL_ID in result.output
        assert "acme/broken" not in result.output

    def test_json(self, models_dir):
        write_bundle(models_dir / "acme--tiny-1B-4bit")
        result = _invoke(models_dir, "list", "--json")
        data = json.loads(result.output)
        assert [d["model_id"] for d in data] == [MODEL_ID]


class TestClean:
    def test_removes_incomplete(self, models_dir):
        write_bundle(models_dir / "acme--tiny-1B-4bit")
        write_bundle(models_dir / "acme--broken", names=("config.json",))

        result = _invoke(models_dir, "clean")
        assert result.exit_code == 0
        assert "Removed acme/broken" in result.output
        assert not (models_dir / "acme--broken").exists()
        assert (models_dir / "acme--tiny-1B-4bit").exists()

    def test_nothing_to_clean(self, models_dir):
        result = _invoke(models_dir, "clean")
        assert "Nothing to clean." in result.output


class TestRm:
    def test_deletes_with_yes(self, models_dir):
        write_bundle(models_dir / "acme--tiny-1B-4bit")
        result = _invoke(models_dir, "rm", MODEL_ID, "--yes")
        assert result.exit_code == 0
        assert not (models_dir / "acme--tiny-1B-4bit").exists()

    def test_confirmation_declined(self, models_dir):
        write_bundle(models_dir / "acme--tiny-1B-4bit")
        result = CliRunner().invoke(
            main, ["--models-dir", str(models_dir), "rm", MODEL_ID], input="n\n"
        )
        assert result.exit_code == 1
        assert (models_dir / "acme--tiny-1B-4bit").exists()

    def test_missing_model_fails(self, models_dir):
        result = _invoke(models_dir, "rm", MODEL_ID, "-y")
        assert result.exit_code == 1
        assert "is not downloaded" in result.output


class TestPull:
    def test_downloads_into_storage(self, models_dir):
        manager = _manager_for(models_dir)
        with patch("edgellm.commands.models.get_manager", return_value=manager):
            result = _invoke(models_dir, "pull", MODEL_ID)

        assert result.exit_code == 0, result.output
        assert "Downloaded:" in result.output
        assert manager.is_downloaded(MODEL_ID)
        assert manager.client.closed

    def test_transport_failure_exits_nonzero(self, models_dir):
        client = FakeRepositoryClient(fail_fetch=("model.safetensors",))
        with patch(
            "edgellm.commands.models.get_manager", return_value=_manager_for(models_dir, client)
        ):
            result = _invoke(models_dir, "pull", MODEL_ID, "--quiet")

        assert result.exit_code == 1
        assert "could not complete model download" in result.output

    @pytest.mark.parametrize("ref", ["acme/tiny/extra", "acme/../tiny"])
    def test_unusable_identifier_is_usage_error(self, models_dir, ref):
        with patch("edgellm.commands.models.get_manager") as get_manager:
            result = _invoke(models_dir, "pull", ref)

        assert result.exit_code == 2
        assert "Invalid model identifier" in result.output
        assert "Traceback" not in result.output
        get_manager.assert_not_called()


class TestInfo:
    def test_prints_sizes(self, models_dir):
        with patch("edgellm.commands.models.get_manager", return_value=_manager_for(models_dir)):
            result = _invoke(models_dir, "info", MODEL_ID)

        assert result.exit_code == 0, result.output
        assert "Files:  5 (1 weights, 3 config)" in result.output
        assert "model.safetensors" in result.output

    def test_listing_failure(self, models_dir):
        client = FakeRepositoryClient(fail_listing=True)
        with patch(
            "edgellm.commands.models.get_manager", return_value=_manager_for(models_dir, client)
        ):
            result = _invoke(models_dir, "info", MODEL_ID)

        assert result.exit_code == 1
        assert "could not fetch model info" in result.output


# ---------------------------------------------------------------------------
# debug-report
# ---------------------------------------------------------------------------


class TestDebugReport:
    def test_json(self, models_dir):
        write_bundle(models_dir / "acme--broken", names=("config.json",))
        result = _invoke(models_dir, "debug-report", "--json")

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["storage"]["root"] == str(models_dir)
        assert report["storage"]["incomplete"][0]["model_id"] == "acme/broken"
        assert {r["name"] for r in report["runtimes"]} == {"mlx-lm", "llama.cpp"}

    def test_text(self, models_dir):
        result = _invoke(models_dir, "debug-report")
        assert result.exit_code == 0
        assert "Runtimes:" in result.output
        assert "(no models)" in result.output
