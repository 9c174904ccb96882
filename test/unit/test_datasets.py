"""
Unit tests for backend/tabletalk/services/datasets/
Tests: column type inference, CSV profiling, dataset ids, the JSON-file registry
(register / lookup / id validation / atomic writes).
"""

import json
import os

import pytest
from pydantic import ValidationError

from tabletalk.services.datasets.profiler import (
    DatasetProfileError,
    infer_column_type,
    make_dataset_id,
    profile_column,
    profile_csv,
)
from tabletalk.services.datasets.registry import (
    DatasetNotFoundError,
    DatasetRegistry,
    is_valid_dataset_id,
)


# ── Type inference ────────────────────────────────────────────────────────────

class TestInferColumnType:
    @pytest.mark.parametrize(
        "values,expected",
        [
            (["1", "2.5", "-3"], "number"),
            (["1", "", "3"], "number"),
            (["true", "FALSE"], "boolean"),
            (["2024-01-31", "2024-02-01"], "date"),
            (["North", "2024-01-01"], "string"),
            (["", ""], "string"),
            (["nan", "1"], "string"),
        ],
    )
    def test_inference(self, values, expected):
        assert infer_column_type(values) == expected

    def test_number_beats_date(self):
        assert infer_column_type(["2024", "2025"]) == "number"

    def test_profile_column_stats(self):
        col = profile_column("sales", ["10", "", "30", "10"])
        assert col.type == "number"
        assert col.nullable is True
        assert col.distinct_count == 2
        assert (col.min, col.max) == (10.0, 30.0)

    def test_non_numeric_column_has_no_range(self):
        col = profile_column("region", ["North", "South"])
        assert col.min is None and col.max is None


# ── CSV profiling ─────────────────────────────────────────────────────────────

class TestProfileCsv:
    def test_sales_profile(self, sales_metadata, sales_csv):
        types = {c.name: c.type for c in sales_metadata.columns}
        assert types == {
            "month": "date",
            "region": "string",
            "product": "string",
            "sales": "number",
            "returned": "boolean",
        }
        assert sales_metadata.row_count_estimate == 6
        assert sales_metadata.column_count == 5
        assert sales_metadata.file_path == os.path.abspath(sales_csv)
        assert sales_metadata.file_size_bytes == os.path.getsize(sales_csv)

    def test_nullable_column(self, sales_metadata):
        product = next(c for c in sales_metadata.columns if c.name == "product")
        assert product.nullable is True

    def test_sample_rows_are_text(self, sales_metadata):
        assert sales_metadata.sample_rows[0] == ["2024-01", "North", "Widget", "100", "false"]

    def test_preview_rows_limit(self, sales_csv):
        metadata = profile_csv(sales_csv, "sales.csv", "0123456789abcdef", preview_rows=2)
        assert len(metadata.sample_rows) == 2
        assert metadata.row_count_estimate == 6

    def test_metadata_is_immutable(self, sales_metadata):
        with pytest.raises(ValidationError):
            sales_metadata.file_name = "other.csv"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(DatasetProfileError, match="CSV file is empty"):
            profile_csv(str(path), "empty.csv", "0123456789abcdef")

    def test_header_only_file(self, tmp_path):
        path = tmp_path / "header.csv"
        path.write_text("a,b\n", encoding="utf-8")
        metadata = profile_csv(str(path), "header.csv", "0123456789abcdef")
        assert metadata.row_count_estimate == 0
        assert [c.type for c in metadata.columns] == ["string", "string"]


# ── Dataset ids ───────────────────────────────────────────────────────────────

class TestDatasetIds:
    def test_make_dataset_id_format(self):
        assert is_valid_dataset_id(make_dataset_id("sales.csv"))

    @pytest.mark.parametrize("dataset_id", ["", "abc", "../../etc/passwd", "0123456789ABCDEF", "0123456789abcdeg"])
    def test_invalid_ids(self, dataset_id):
        assert is_valid_dataset_id(dataset_id) is False


# ── Registry ──────────────────────────────────────────────────────────────────

class TestDatasetRegistry:
    @pytest.fixture
    def registry(self, tmp_path):
        return DatasetRegistry(str(tmp_path / "data" / "registry.json"), str(tmp_path / "uploads"))

    def test_dataset_file_path(self, registry, tmp_path):
        assert registry.dataset_file_path("0123456789abcdef") == str(tmp_path / "uploads" / "0123456789abcdef.csv")

    def test_dataset_file_path_rejects_traversal(self, registry):
        with pytest.raises(ValueError):
            registry.dataset_file_path("../secrets")

    @pytest.mark.asyncio
    async def test_register_and_get(self, registry, sales_metadata):
        await registry.register(sales_metadata)
        assert await registry.get_metadata(sales_metadata.dataset_id) == sales_metadata

    @pytest.mark.asyncio
    async def test_registry_file_is_json(self, registry, sales_metadata):
        await registry.register(sales_metadata)
        with open(registry.registry_path, encoding="utf-8") as f:
            data = json.load(f)
        assert list(data) == [sales_metadata.dataset_id]
        leftovers = [n for n in os.listdir(os.path.dirname(registry.registry_path)) if n.startswith(".registry-")]
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_unknown_and_invalid_ids(self, registry):
        assert await registry.get_metadata("fedcba9876543210") is None
        assert await registry.get_metadata("not-an-id") is None

    @pytest.mark.asyncio
    async def test_require_metadata_raises(self, registry):
        with pytest.raises(DatasetNotFoundError, match="Dataset not found or expired: fedcba9876543210"):
            await registry.require_metadata("fedcba9876543210")

    @pytest.mark.asyncio
    async def test_corrupt_registry_reads_as_empty(self, registry):
        os.makedirs(os.path.dirname(registry.registry_path))
        with open(registry.registry_path, "w", encoding="utf-8") as f:
            f.write("{not json")
        assert await registry.get_metadata("fedcba9876543210") is None
