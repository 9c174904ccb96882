"""
Unit tests for backend/tabletalk/services/analysis/normalizer.py
Tests: scalar passthrough, non-finite floats, container coercion, idempotence.
"""

import datetime
import json
import math
from decimal import Decimal

import pytest

from tabletalk.services.analysis.normalizer import normalize


class TestScalars:
    @pytest.mark.parametrize("value", [None, True, False, 0, -7, 3.5, "", "text"])
    def test_passthrough(self, value):
        assert normalize(value) == value
        assert type(normalize(value)) is type(value)

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_float_becomes_none(self, value):
        assert normalize(value) is None

    def test_unknown_objects_become_strings(self):
        assert normalize(Decimal("1.50")) == "1.50"
        assert normalize(datetime.date(2024, 1, 31)) == "2024-01-31"


class TestContainers:
    def test_tuple_and_set_become_lists(self):
        assert normalize((1, 2)) == [1, 2]
        assert normalize({3}) == [3]
        assert normalize(frozenset({"a"})) == ["a"]

    def test_mapping_keys_are_stringified(self):
        assert normalize({1: "a", None: math.nan}) == {"1": "a", "None": None}

    def test_nested_structures(self):
        raw = {"rows": [{"v": math.inf, "t": (1, 2)}], "total": 10}
        assert normalize(raw) == {"rows": [{"v": None, "t": [1, 2]}], "total": 10}


class TestInvariants:
    SAMPLES = [
        None,
        42,
        {"a": [1, 2.5, math.nan], "b": {"c": (True, None)}},
        [{"month": "2024-01", "sales": 100}, {"month": "2024-02", "sales": -math.inf}],
        {"x": Decimal("2")},
    ]

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_idempotent(self, raw):
        once = normalize(raw)
        assert normalize(once) == once

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_output_is_strict_json(self, raw):
        json.dumps(normalize(raw), allow_nan=False)
