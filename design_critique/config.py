"""
Configuration Management

Loads configuration from .env files and provides typed config objects.
Handles provider API keys, model ids, timeouts and quality thresholds.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .models import Config


def load_config(env_file: Optional[Path] = None) -> Config:
    """
    Load configuration from .env file and environment variables.

    Searches for .env file in:
    1. Provided env_file path
    2. Current directory
    3. User's home directory

    Environment variables override .env file values.

    Args:
        env_file: Optional path to .env file

    Returns:
        Config object with all settings

    Example:
        config = load_config()
        if config.has_anthropic():
            provider = AnthropicProvider(config.anthropic_api_key)
    """
    # Load .env file
    if env_file and env_file.exists():
        load_dotenv(env_file)
    elif Path(".env").exists():
        load_dotenv(".env")
    elif (Path.home() / ".env").exists():
        load_dotenv(Path.home() / ".env")

    defaults = Config()

    # Build config from environment
    config = Config(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        perplexity_api_key=os.getenv("PERPLEXITY_API_KEY"),
        google_vision_api_key=os.getenv("GOOGLE_VISION_API_KEY"),
        claude_model=os.getenv("CLAUDE_MODEL", defaults.claude_model),
        openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
        perplexity_model=os.getenv("PERPLEXITY_MODEL", defaults.perplexity_model),
        claude_timeout_ms=int(os.getenv("CLAUDE_TIMEOUT_MS", str(defaults.claude_timeout_ms))),
        minimum_quality_threshold=float(
            os.getenv("MIN_QUALITY_THRESHOLD", str(defaults.minimum_quality_threshold))
        ),
        store_dir=os.getenv("ANALYSIS_STORE_DIR", defaults.store_dir),
        viewport_width=int(os.getenv("VIEWPORT_WIDTH", str(defaults.viewport_width))),
        viewport_height=int(os.getenv("VIEWPORT_HEIGHT", str(defaults.viewport_height)))
    )

    return config
