"""Tests for design_critique.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from design_critique import config as config_module
from design_critique.config import load_config
from design_critique.models import Config

ENV_KEYS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "PERPLEXITY_API_KEY",
    "GOOGLE_VISION_API_KEY",
    "CLAUDE_MODEL",
    "OPENAI_MODEL",
    "PERPLEXITY_MODEL",
    "CLAUDE_TIMEOUT_MS",
    "MIN_QUALITY_THRESHOLD",
    "ANALYSIS_STORE_DIR",
    "VIEWPORT_WIDTH",
    "VIEWPORT_HEIGHT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Empty environment, no .env in the working or home directory."""
    for key in ENV_KEYS:
        # setenv first so monkeypatch also undoes values load_dotenv writes
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


class TestLoadConfig:
    def test_defaults(self):
        config = load_config()
        assert not config.has_anthropic()
        assert not config.has_openai()
        assert config.claude_model == "claude-sonnet-4-20250514"
        assert config.claude_timeout_ms == 35000
        assert config.minimum_quality_threshold == 0.7
        assert config.store_dir == "analyses"

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        monkeypatch.setenv("CLAUDE_TIMEOUT_MS", "20000")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")

        config = load_config()

        assert config.has_anthropic()
        assert config.anthropic_api_key == "sk-ant-env"
        assert config.claude_timeout_ms == 20000
        assert config.openai_model == "gpt-4o-mini"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("OPENAI_API_KEY=sk-file\nMIN_QUALITY_THRESHOLD=0.5\n")

        config = load_config(env_file)

        assert config.openai_api_key == "sk-file"
        assert config.minimum_quality_threshold == 0.5

    def test_environment_overrides_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        env_file = tmp_path / "custom.env"
        env_file.write_text("OPENAI_API_KEY=sk-file\n")

        assert load_config(env_file).openai_api_key == "sk-env"

    def test_dotenv_in_working_directory(self, tmp_path):
        (tmp_path / ".env").write_text("PERPLEXITY_API_KEY=pplx-local\n")
        assert load_config().has_perplexity()

    def test_invalid_viewport(self, monkeypatch):
        monkeypatch.setenv("VIEWPORT_WIDTH", "100")
        with pytest.raises(ValidationError):
            load_config()

    def test_viewport_defaults(self, monkeypatch):
        config = load_config()
        assert (config.viewport_width, config.viewport_height) == (1920, 1080)

        monkeypatch.setenv("VIEWPORT_HEIGHT", "900")
        config = load_config()
        assert (config.viewport_width, config.viewport_height) == (1920, 900)

    def test_viewport_defaults_follow_model(self, monkeypatch):
        class LaptopConfig(Config):
            viewport_width: int = 1440
            viewport_height: int = 900

        monkeypatch.setattr(config_module, "Config", LaptopConfig)
        config = load_config()
        assert (config.viewport_width, config.viewport_height) == (1440, 900)
