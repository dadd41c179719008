"""Configuration for SpecRoom."""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Provider API keys (any subset may be configured)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")

OPENROUTER_SITE_URL = os.getenv("OPENROUTER_SITE_URL", "http://localhost")
OPENROUTER_APP_TITLE = os.getenv("OPENROUTER_APP_TITLE", "SpecRoom")

# Provider selection
SUPPORTED_PROVIDERS = ["openrouter", "openai", "anthropic", "deepseek"]
AI_DEFAULT_PROVIDER = os.getenv("AI_DEFAULT_PROVIDER", "openai")

# Provider endpoints
OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"
DEEPSEEK_API_URL = "https://api.deepseek.com/v1/chat/completions"

# Default model per provider
PROVIDER_MODELS = {
    "openrouter": os.getenv("OPENROUTER_MODEL", "openai/gpt-4o"),
    "openai": os.getenv("OPENAI_MODEL", "gpt-4"),
    "anthropic": os.getenv("ANTHROPIC_MODEL", "claude-3-sonnet-20240229"),
    "deepseek": os.getenv("DEEPSEEK_MODEL", "deepseek-chat"),
}

# Generation parameters
AI_MAX_TOKENS = _int_env("AI_MAX_TOKENS", 2000)
AI_TEMPERATURE = _float_env("AI_TEMPERATURE", 0.7)
AI_REQUEST_TIMEOUT = _float_env("AI_REQUEST_TIMEOUT", 120.0)
AI_MAX_RETRIES = _int_env("AI_MAX_RETRIES", 3)

# Per-persona rate limit (sliding one-minute window)
AI_RATE_LIMIT_PER_MINUTE = _int_env("AI_RATE_LIMIT_PER_MINUTE", 10)
RATE_LIMIT_WINDOW_SECONDS = 60.0

# Conversation windows
TRIGGER_HISTORY_WINDOW = 5
PROMPT_HISTORY_WINDOW = 10

# Simulated typing pacing for persona responses
TYPING_MS_PER_CHAR = 20
TYPING_MIN_MS = 1000
TYPING_MAX_MS = 5000

# Data directory for conversation storage
DATA_DIR = os.getenv("DATA_DIR", "data/conversations")

# CORS origin for the chat frontend
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = None):
    """Configure root logging for the server process."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
