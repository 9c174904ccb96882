"""
Centralized application configuration.

Uses pydantic BaseSettings for automatic env-var loading and validation.
Import the singleton ``settings`` instance for process-wide defaults, or build a
``Settings(...)`` explicitly and pass it down (tests do this).
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

# Resolve project root once — all relative paths resolve from here
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))

_log = logging.getLogger("config")


class Settings(BaseSettings):
    """Application settings — validated from environment variables."""

    # ── Environment ────────────────────────────────────────
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False
    LOG_DIR: str = "./logs"

    # ── Dataset Storage ───────────────────────────────────
    DATA_DIR: str = "./data"
    UPLOAD_DIR: str = "./data/uploads"
    DATASET_REGISTRY_FILE: str = "./data/datasets-metadata.json"
    MAX_UPLOAD_SIZE_MB: int = 25
    DATASET_PREVIEW_ROWS: int = 50

    # ── CORS ──────────────────────────────────────────────
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    # ── LLM ───────────────────────────────────────────────
    LLM_PROVIDER: str = "OLLAMA"  # OLLAMA, GOOGLE, NVIDIA
    OLLAMA_MODEL: str = "mistral"
    OLLAMA_BASE_URL: str = "http://127.0.0.1:11434"
    GOOGLE_MODEL: str = "models/gemini-2.5-flash"
    GOOGLE_API_KEY: str = ""
    NVIDIA_MODEL: str = "qwen/qwen3.5-397b-a17b"
    NVIDIA_API_KEY: str = ""
    LLM_TIMEOUT: int = 120

    # ── LLM Generation Control ───────────────────────────
    LLM_TEMPERATURE_CODE: float = 0.2
    LLM_TEMPERATURE_CHAT: float = 0.3
    LLM_TEMPERATURE_CREATIVE: float = 0.7
    LLM_TOP_P: float = 0.95
    LLM_MAX_TOKENS: int = 3000

    # ── Sandbox ───────────────────────────────────────────
    SANDBOX_RUNTIME: Literal["docker", "podman", "local"] = "docker"
    SANDBOX_IMAGE: str = "tabletalk-sandbox:latest"
    SANDBOX_MEMORY_LIMIT: str = "512m"
    SANDBOX_CPU_LIMIT: str = "1.0"
    SANDBOX_PIDS_LIMIT: int = 64
    SANDBOX_TMPFS_SIZE: str = "64m"
    SANDBOX_USER: str = "65534:65534"  # nobody:nogroup
    SANDBOX_MAX_OUTPUT_BYTES: int = 1_000_000
    SANDBOX_MAX_CONCURRENCY: int = 4
    CODE_EXECUTION_TIMEOUT: int = 15

    # ── Code Validator ────────────────────────────────────
    VALIDATOR_BALANCE_SEVERITY: Literal["error", "warning"] = "error"
    MAX_CODE_LENGTH: int = 50_000

    # ── Charts ────────────────────────────────────────────
    CHART_PIE_CAP: int = 10
    CHART_BAR_CAP: int = 30
    CHART_SERIES_CAP: int = 100

    # ── Summaries ─────────────────────────────────────────
    SUMMARY_FALLBACK: str = "Here are the results of your analysis."

    @field_validator("LLM_PROVIDER", mode="after")
    @classmethod
    def _uppercase_provider(cls, v: str) -> str:
        v = v.upper()
        valid = {"OLLAMA", "GOOGLE", "NVIDIA"}
        if v not in valid:
            raise ValueError(f"LLM_PROVIDER must be one of {valid}, got {v!r}")
        return v

    @field_validator("CODE_EXECUTION_TIMEOUT", "SANDBOX_MAX_CONCURRENCY", "DATASET_PREVIEW_ROWS", mode="after")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @model_validator(mode="after")
    def _resolve_paths_and_cross_validate(self):
        """Resolve relative paths to absolute & warn about missing provider keys."""
        for attr in ("LOG_DIR", "DATA_DIR", "UPLOAD_DIR", "DATASET_REGISTRY_FILE"):
            val = getattr(self, attr)
            if val and not os.path.isabs(val):
                object.__setattr__(self, attr, os.path.join(_PROJECT_ROOT, val))

        if self.LLM_PROVIDER == "GOOGLE" and not self.GOOGLE_API_KEY:
            _log.warning("LLM_PROVIDER is GOOGLE but GOOGLE_API_KEY is empty")
        if self.LLM_PROVIDER == "NVIDIA" and not self.NVIDIA_API_KEY:
            _log.warning("LLM_PROVIDER is NVIDIA but NVIDIA_API_KEY is empty")
        if self.SANDBOX_RUNTIME == "local" and self.ENVIRONMENT == "production":
            _log.warning(
                "SANDBOX_RUNTIME=local in production: guest code runs without "
                "network isolation or an unprivileged identity"
            )

        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
