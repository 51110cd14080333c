"""Centralized configuration for the BeautiBuk booking agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/beautibuk-agent/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

SSM_PREFIX = "/beautibuk-agent"


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ── Completion provider ─────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
LLM_TEMPERATURE: float = _float_env("LLM_TEMPERATURE", 0.7)
LLM_MAX_TOKENS: int = _int_env("LLM_MAX_TOKENS", 2000)
LLM_TIMEOUT_SECONDS: float = _float_env("LLM_TIMEOUT_SECONDS", 30.0)

# ── Embedding provider (RAG is disabled without a key) ──────────────
OPENAI_API_KEY: str | None = _optional_env("OPENAI_API_KEY")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS: int = _int_env("EMBEDDING_DIMENSIONS", 768)

# ── MCP tool server ─────────────────────────────────────────────────
MCP_SERVER_URL: str = os.getenv("MCP_SERVER_URL", "http://localhost:8002")
MCP_TIMEOUT_SECONDS: float = _float_env("MCP_TIMEOUT_SECONDS", 15.0)

# ── Storage ─────────────────────────────────────────────────────────
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/beautibuk_agent.db")
SESSION_CACHE_MAX_BYTES: int = _int_env("SESSION_CACHE_MAX_BYTES", 5 * 1024 * 1024)
VECTOR_DB_PATH: str = os.getenv("VECTOR_DB_PATH", "data/vectors")

# ── RAG ─────────────────────────────────────────────────────────────
RAG_TOP_K: int = _int_env("RAG_TOP_K", 5)
RAG_SIMILARITY_THRESHOLD: float = _float_env("RAG_SIMILARITY_THRESHOLD", 0.7)

# ── Orchestration limits ────────────────────────────────────────────
MAX_TOOL_ROUNDS: int = _int_env("MAX_TOOL_ROUNDS", 5)
TURN_TIMEOUT_SECONDS: float = _float_env("TURN_TIMEOUT_SECONDS", 60.0)
MAX_HISTORY_MESSAGES: int = _int_env("MAX_HISTORY_MESSAGES", 40)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:8080,http://localhost:3000",
    ).split(",")
]
