"""
Shared pytest fixtures and configuration for the entire test suite.
Applies to all subdirectories: unit/, integration/, api/
"""

import os
import sys
from types import SimpleNamespace

import pytest

# ── Ensure backend is importable from every pytest session ──────────────────
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

# Minimal env so that Pydantic Settings validates without a .env file
os.environ.setdefault("SANDBOX_RUNTIME", "local")
os.environ.setdefault("LLM_PROVIDER", "OLLAMA")
os.environ.setdefault("ENVIRONMENT", "development")


SALES_CSV = (
    "month,region,product,sales,returned\n"
    "2024-01,North,Widget,100,false\n"
    "2024-01,South,Widget,80,false\n"
    "2024-02,North,Gadget,120,true\n"
    "2024-02,South,Widget,95,false\n"
    "2024-03,North,Gadget,130,false\n"
    "2024-03,South,,70,true\n"
)


# ── Settings fixture ─────────────────────────────────────────────────────────

@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing every path at a temporary directory."""
    from tabletalk.core.config import Settings

    return Settings(
        _env_file=None,
        SANDBOX_RUNTIME="local",
        CODE_EXECUTION_TIMEOUT=15,
        LOG_DIR=str(tmp_path / "logs"),
        DATA_DIR=str(tmp_path / "data"),
        UPLOAD_DIR=str(tmp_path / "data" / "uploads"),
        DATASET_REGISTRY_FILE=str(tmp_path / "data" / "datasets-metadata.json"),
    )


# ── Dataset fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def sales_csv(tmp_path):
    """A small sales CSV on disk; returns its path."""
    path = tmp_path / "0123456789abcdef.csv"
    path.write_text(SALES_CSV, encoding="utf-8")
    return str(path)


@pytest.fixture
def sales_metadata(sales_csv):
    """DatasetMetadata profiled from the sales CSV."""
    from tabletalk.services.datasets.profiler import profile_csv

    return profile_csv(sales_csv, "sales.csv", "0123456789abcdef")


# ── Fake LLM fixture ─────────────────────────────────────────────────────────

class FakeLLM:
    """Minimal stand-in for a LangChain chat model: returns canned replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def ainvoke(self, prompt):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(content=reply)


@pytest.fixture
def fake_llm_factory():
    return FakeLLM
