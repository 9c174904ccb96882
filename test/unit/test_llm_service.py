"""
Unit tests for backend/tabletalk/services/llm_service/ (llm.py, suggestions.py, llm_schemas.py)
Tests: provider selection and temperature tiers, reply text extraction,
suggested-question parsing, GeneratedCode coercion.
Provider clients are replaced with recorders — no model is contacted.
"""

from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from tabletalk.services.llm_service import llm as llm_module
from tabletalk.services.llm_service.llm import get_llm, response_text
from tabletalk.services.llm_service.llm_schemas import GeneratedCode
from tabletalk.services.llm_service.suggestions import parse_questions, suggest_questions


@pytest.fixture
def recorded_builds(monkeypatch):
    builds = []

    def recorder(name):
        def build(config, temperature, top_p, max_tokens):
            builds.append({"provider": name, "temperature": temperature, "top_p": top_p, "max_tokens": max_tokens})
            return name
        return build

    monkeypatch.setattr(
        llm_module,
        "_PROVIDERS",
        {name: recorder(name) for name in ("OLLAMA", "GOOGLE", "NVIDIA")},
    )
    return builds


# ── Provider factory ──────────────────────────────────────────────────────────

class TestGetLlm:
    @pytest.mark.parametrize(
        "mode,attr",
        [
            ("code", "LLM_TEMPERATURE_CODE"),
            ("chat", "LLM_TEMPERATURE_CHAT"),
            ("creative", "LLM_TEMPERATURE_CREATIVE"),
        ],
    )
    def test_temperature_tiers(self, test_settings, recorded_builds, mode, attr):
        get_llm(test_settings, mode=mode)
        assert recorded_builds[-1]["temperature"] == getattr(test_settings, attr)

    def test_explicit_overrides(self, test_settings, recorded_builds):
        get_llm(test_settings, mode="code", temperature=0.9, top_p=0.5, max_tokens=10)
        assert recorded_builds[-1] == {"provider": "OLLAMA", "temperature": 0.9, "top_p": 0.5, "max_tokens": 10}

    def test_defaults_from_settings(self, test_settings, recorded_builds):
        get_llm(test_settings)
        assert recorded_builds[-1]["top_p"] == test_settings.LLM_TOP_P
        assert recorded_builds[-1]["max_tokens"] == test_settings.LLM_MAX_TOKENS

    def test_provider_override(self, test_settings, recorded_builds):
        assert get_llm(test_settings, provider="nvidia") == "NVIDIA"

    def test_unknown_provider_falls_back_to_ollama(self, test_settings, recorded_builds):
        assert get_llm(test_settings, provider="mystery") == "OLLAMA"


class TestResponseText:
    def test_message_content(self):
        assert response_text(SimpleNamespace(content="  hi  ")) == "hi"

    def test_plain_string(self):
        assert response_text("hello") == "hello"

    def test_content_blocks(self):
        blocks = [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]
        assert response_text(SimpleNamespace(content=blocks)) == "ab"

    def test_none_content(self):
        assert response_text(SimpleNamespace(content=None)) == ""


# ── Suggested questions ───────────────────────────────────────────────────────

class TestSuggestions:
    def test_parse_questions_strips_numbering(self):
        text = "1. Which region sells most?\n2) What is the monthly trend?\n\n- How many returns?\n* Top product?"
        assert parse_questions(text) == [
            "Which region sells most?",
            "What is the monthly trend?",
            "How many returns?",
            "Top product?",
        ]

    def test_parse_questions_limit(self):
        text = "\n".join(f"{i}. Question {i}?" for i in range(1, 9))
        assert len(parse_questions(text, limit=5)) == 5

    @pytest.mark.asyncio
    async def test_suggest_questions(self, fake_llm_factory, sales_metadata):
        llm = fake_llm_factory("1. Total sales by region?\n2. Sales trend by month?")
        questions = await suggest_questions(llm, sales_metadata, count=3)
        assert questions == ["Total sales by region?", "Sales trend by month?"]
        assert "month, region, product, sales, returned" in llm.prompts[0]


# ── Schemas ───────────────────────────────────────────────────────────────────

class TestGeneratedCode:
    def test_coercions(self):
        generated = GeneratedCode(
            code=["x = 1", "print(x)"],
            summary=None,
            intent=3,
            columns_used="a, b",
            aggregations=None,
        )
        assert generated.code == "x = 1\nprint(x)"
        assert generated.summary == ""
        assert generated.intent == "3"
        assert generated.columns_used == ["a", "b"]
        assert generated.aggregations == []

    def test_empty_code_rejected(self):
        with pytest.raises(ValidationError):
            GeneratedCode(code="")
