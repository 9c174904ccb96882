"""
Unit tests for backend/tabletalk/services/llm_service/response_parser.py
Tests: each repair pass in isolation, envelope parsing through the pass pipeline,
alternate envelope keys, heuristic recovery of code from free text, failure modes.
"""

import json

import pytest

from tabletalk.services.llm_service.response_parser import (
    REPAIR_PASSES,
    ResponseParseError,
    extract_brace_span,
    extract_code_heuristic,
    normalize_literals,
    normalize_quotes,
    parse_generation_response,
    remove_trailing_commas,
    strip_code_fences,
    strip_fences,
    strip_think_tags,
)


# ── Individual passes ─────────────────────────────────────────────────────────

class TestRepairPasses:
    def test_pass_order(self):
        assert [p.__name__ for p in REPAIR_PASSES] == [
            "strip_think_tags",
            "strip_fences",
            "extract_brace_span",
            "normalize_quotes",
            "normalize_literals",
            "remove_trailing_commas",
        ]

    def test_strip_think_tags(self):
        assert strip_think_tags('<think>plan {a}</think>\n{"a": 1}') == '{"a": 1}'

    def test_strip_fences(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nEnjoy'
        assert strip_fences(text) == '{"a": 1}'

    def test_strip_fences_without_fence(self):
        assert strip_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_extract_brace_span(self):
        assert extract_brace_span('Result: {"a": {"b": 2}} done.') == '{"a": {"b": 2}}'

    def test_extract_brace_span_without_braces(self):
        assert extract_brace_span("no json") == "no json"

    def test_normalize_quotes(self):
        text = "{'code': 'print(df[\"a\"])', 'summary': \"it's fine\"}"
        assert json.loads(normalize_quotes(text)) == {
            "code": 'print(df["a"])',
            "summary": "it's fine",
        }

    def test_normalize_literals_skips_strings(self):
        text = '{"a": True, "b": None, "c": "True or None", "d": False}'
        assert normalize_literals(text) == '{"a": true, "b": null, "c": "True or None", "d": false}'

    def test_remove_trailing_commas_skips_strings(self):
        text = '{"a": [1, 2,], "s": "x,}",}'
        assert remove_trailing_commas(text) == '{"a": [1, 2], "s": "x,}"}'

    def test_strip_code_fences(self):
        assert strip_code_fences("```python\nx = 1\n```") == "x = 1"
        assert strip_code_fences("  x = 1  ") == "x = 1"


# ── Envelope parsing ──────────────────────────────────────────────────────────

class TestParseEnvelope:
    def test_plain_json(self):
        reply = json.dumps({"code": "print(json.dumps(1))", "summary": "Prints one.", "intent": "count"})
        parsed = parse_generation_response(reply)
        assert parsed.code == "print(json.dumps(1))"
        assert parsed.summary == "Prints one."
        assert parsed.intent == "count"

    def test_fenced_json_with_chatter(self):
        reply = 'Sure! Here it is:\n```json\n{"code": "print(1)", "summary": "One."}\n```\nLet me know.'
        parsed = parse_generation_response(reply)
        assert parsed.code == "print(1)"
        assert parsed.summary == "One."

    def test_python_literals_and_single_quotes(self):
        reply = (
            "{'code': 'result = df[\"a\"].isna().any()\\nprint(json.dumps(bool(result)))', "
            "'summary': 'Checks for nulls.', 'intent': None}"
        )
        parsed = parse_generation_response(reply)
        assert parsed.code == 'result = df["a"].isna().any()\nprint(json.dumps(bool(result)))'
        assert parsed.intent is None

    def test_literals_inside_code_are_preserved(self):
        reply = '{"code": "print(json.dumps({\'value\': True}))", "summary": "", "flag": True}'
        parsed = parse_generation_response(reply)
        assert parsed.code == "print(json.dumps({'value': True}))"

    def test_trailing_commas(self):
        reply = '{"code": "print(1)", "columns_used": ["a", "b",],}'
        parsed = parse_generation_response(reply)
        assert parsed.columns_used == ["a", "b"]

    def test_think_block_before_envelope(self):
        parsed = parse_generation_response('<think>maybe {x}?</think>{"code": "print(2)"}')
        assert parsed.code == "print(2)"
        assert parsed.summary == ""

    def test_alternate_keys_and_line_list(self):
        reply = json.dumps({
            "python_code": ["x = 1", "print(json.dumps(x))"],
            "explanation": "Sets x.",
            "columns": "region, sales",
        })
        parsed = parse_generation_response(reply)
        assert parsed.code == "x = 1\nprint(json.dumps(x))"
        assert parsed.summary == "Sets x."
        assert parsed.columns_used == ["region", "sales"]

    def test_fenced_code_inside_envelope(self):
        reply = json.dumps({"code": "```python\nprint(1)\n```"})
        assert parse_generation_response(reply).code == "print(1)"

    @pytest.mark.parametrize(
        "extra",
        [
            {"aggregations": {"sum": "sales"}},
            {"columns": 3},
            {"columns_used": [["a"], {"b": 1}], "aggregations": 7},
        ],
    )
    def test_wrong_metadata_types_are_dropped(self, extra):
        reply = json.dumps({"code": "print(json.dumps(1))", **extra})
        parsed = parse_generation_response(reply)
        assert parsed.code == "print(json.dumps(1))"
        assert parsed.columns_used == []
        assert parsed.aggregations == []


# ── Heuristic fallback ────────────────────────────────────────────────────────

class TestHeuristicFallback:
    def test_fenced_python_with_summary_sentence(self):
        reply = (
            "Here is the code:\n"
            "```python\n"
            "result = df['sales'].sum()\n"
            "print(json.dumps(result))\n"
            "```\n"
            "This sums total sales."
        )
        parsed = parse_generation_response(reply)
        assert parsed.code == "result = df['sales'].sum()\nprint(json.dumps(result))"
        assert parsed.summary == "This sums total sales."

    def test_bare_code_with_trailing_prose(self):
        reply = "result = df['sales'].mean()\nprint(json.dumps(result))\nThat computes the mean."
        code, summary = extract_code_heuristic(reply)
        assert code == "result = df['sales'].mean()\nprint(json.dumps(result))"
        assert summary == "That computes the mean."

    def test_indented_block(self):
        reply = (
            "Use this:\n\n"
            "    totals = df.groupby('region')['sales'].sum()\n"
            "    print(json.dumps(totals))\n\n"
            "Groups sales by region."
        )
        code, summary = extract_code_heuristic(reply)
        assert code == "totals = df.groupby('region')['sales'].sum()\nprint(json.dumps(totals))"
        assert summary == "Groups sales by region."

    def test_prose_only_yields_no_code(self):
        code, _ = extract_code_heuristic("I cannot help with that.")
        assert code is None


# ── Failures ──────────────────────────────────────────────────────────────────

class TestParseFailures:
    @pytest.mark.parametrize("reply", ["", "   \n"])
    def test_empty_reply(self, reply):
        with pytest.raises(ResponseParseError, match="Empty response"):
            parse_generation_response(reply)

    def test_prose_only_reply(self):
        with pytest.raises(ResponseParseError, match="Cannot extract code"):
            parse_generation_response("I cannot help with that.")

    def test_empty_fenced_code_in_envelope(self):
        with pytest.raises(ResponseParseError, match="Cannot extract code"):
            parse_generation_response(json.dumps({"code": "```python\n```"}))

    def test_is_a_value_error(self):
        assert issubclass(ResponseParseError, ValueError)
