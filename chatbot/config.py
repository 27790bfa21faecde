"""Centralized configuration for the LangGraph chatbot.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/langgraph-chatbot/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/langgraph-chatbot/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /langgraph-chatbot/{name} (AWS)."
    )


def _optional_env(name: str) -> str:
    """Like ``_require_env`` but returns an empty string when unset."""
    try:
        return _require_env(name)
    except OSError:
        return ""


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-haiku-4-5")
ANSWER_TEMPERATURE: float = float(os.getenv("ANSWER_TEMPERATURE", "0.5"))

# Classification and the ambiguity judge only need a word or a line back
CLASSIFIER_MODEL_NAME: str = os.getenv("CLASSIFIER_MODEL_NAME", "claude-haiku-4-5")
JUDGE_MODEL_NAME: str = os.getenv("JUDGE_MODEL_NAME", "claude-haiku-4-5")

# ── Agent loop ──────────────────────────────────────────────────────
LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
TOOL_TIMEOUT_SECONDS: float = float(os.getenv("TOOL_TIMEOUT_SECONDS", "10"))
MAX_TOOL_ROUNDS: int = int(os.getenv("MAX_TOOL_ROUNDS", "8"))

# ── Tools ───────────────────────────────────────────────────────────
TAVILY_API_KEY: str = _optional_env("TAVILY_API_KEY")
TAVILY_BASE_URL: str = "https://api.tavily.com"
NOMINATIM_BASE_URL: str = "https://nominatim.openstreetmap.org"
WEATHER_GOV_BASE_URL: str = "https://api.weather.gov"
HTTP_USER_AGENT: str = "LangGraph-Chatbot/1.0"

# ── Sessions ────────────────────────────────────────────────────────
SESSION_STORE: str = os.getenv("SESSION_STORE", "memory").lower()
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "86400"))
SESSION_CACHE_MAX_BYTES: int = int(
    os.getenv("SESSION_CACHE_MAX_BYTES", str(50 * 1024 * 1024)),
)
# A turn holds its session lock from load to save
SESSION_LOCK_TIMEOUT_SECONDS: float = float(os.getenv("SESSION_LOCK_TIMEOUT_SECONDS", "300"))
SESSION_LOCK_WAIT_SECONDS: float = float(os.getenv("SESSION_LOCK_WAIT_SECONDS", "60"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3001"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
