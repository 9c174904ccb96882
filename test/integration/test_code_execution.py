"""
Integration tests for the code execution stack
(harness.py + sandbox.py + executor.py, local runtime)
Tests: successful runs against a real CSV, pandas/numpy serialization,
categorized runtime errors, invalid output, timeout enforcement,
and one full pipeline run with a fake code-generation model.
Requires pandas/numpy in the current interpreter; no container runtime needed.
"""

import pytest

from tabletalk.services.analysis.orchestrator import AnalysisPipeline
from tabletalk.services.code_execution.executor import FailureKind, SandboxExecutor
from tabletalk.services.code_execution.harness import wrap_code
from tabletalk.services.code_execution.sandbox import SandboxLimits
from tabletalk.services.llm_service.code_generator import CodeGenerator

COLUMNS = ["month", "region", "product", "sales", "returned"]


@pytest.fixture
def executor():
    return SandboxExecutor(SandboxLimits(timeout=20), runtime="local", max_concurrency=2)


async def _run(executor, code, dataset_path):
    return await executor.execute(wrap_code(code, COLUMNS), dataset_path, COLUMNS)


# ── Successful execution ──────────────────────────────────────────────────────

class TestSuccessfulExecution:
    @pytest.mark.asyncio
    async def test_groupby_series(self, executor, sales_csv):
        code = "result = df.groupby('region')['sales'].sum()\nprint(json.dumps(result))"
        outcome = await _run(executor, code, sales_csv)
        assert outcome.success is True, outcome.error
        assert outcome.result == {"North": 350, "South": 245}
        assert outcome.elapsed_seconds > 0

    @pytest.mark.asyncio
    async def test_scalar_numpy_value(self, executor, sales_csv):
        code = "result = {'value': df['sales'].mean()}\nprint(json.dumps(result))"
        outcome = await _run(executor, code, sales_csv)
        assert outcome.result == {"value": pytest.approx(99.1666, rel=1e-3)}

    @pytest.mark.asyncio
    async def test_dataframe_becomes_records(self, executor, sales_csv):
        code = "print(json.dumps(df.head(2)))"
        outcome = await _run(executor, code, sales_csv)
        assert outcome.success is True, outcome.error
        assert len(outcome.result) == 2
        assert list(outcome.result[0]) == COLUMNS
        assert outcome.result[0]["region"] == "North"

    @pytest.mark.asyncio
    async def test_nan_is_serialized_as_null(self, executor, sales_csv):
        code = "print(json.dumps({'value': float('nan')}))"
        outcome = await _run(executor, code, sales_csv)
        assert outcome.result == {"value": None}


# ── Runtime errors ────────────────────────────────────────────────────────────

class TestRuntimeErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,category",
        [
            ("result = df['revenue'].sum()\nprint(json.dumps(result))", "missing_column"),
            ("result = int('abc')\nprint(json.dumps(result))", "value_error"),
            ("result = len(5)\nprint(json.dumps(result))", "type_mismatch"),
            ("result = 1 / 0\nprint(json.dumps(result))", "unknown"),
            ("x = (\n", "unknown"),
        ],
    )
    async def test_error_categories(self, executor, sales_csv, code, category):
        outcome = await _run(executor, code, sales_csv)
        assert outcome.success is False
        assert outcome.failure_kind == FailureKind.RUNTIME_ERROR
        assert outcome.error_category == category

    @pytest.mark.asyncio
    async def test_missing_column_lists_available(self, executor, sales_csv):
        outcome = await _run(executor, "print(json.dumps(df['nope'].sum()))", sales_csv)
        assert "Available:" in outcome.error
        assert "region" in outcome.error


# ── Output contract ───────────────────────────────────────────────────────────

class TestOutputContract:
    @pytest.mark.asyncio
    async def test_non_json_output(self, executor, sales_csv):
        outcome = await _run(executor, "print('hello')", sales_csv)
        assert outcome.failure_kind == FailureKind.INVALID_OUTPUT

    @pytest.mark.asyncio
    async def test_no_output(self, executor, sales_csv):
        outcome = await _run(executor, "result = 1", sales_csv)
        assert outcome.failure_kind == FailureKind.INVALID_OUTPUT
        assert outcome.error == "Execution produced no output"

    @pytest.mark.asyncio
    async def test_multiple_documents(self, executor, sales_csv):
        outcome = await _run(executor, "print(json.dumps(1))\nprint(json.dumps(2))", sales_csv)
        assert outcome.failure_kind == FailureKind.INVALID_OUTPUT
        assert outcome.error == "Expected one JSON document, got 2"

    @pytest.mark.asyncio
    async def test_oversized_output(self, sales_csv):
        executor = SandboxExecutor(SandboxLimits(timeout=20, max_output_bytes=1000), runtime="local")
        outcome = await _run(executor, "print(json.dumps(list(range(1000))))", sales_csv)
        assert outcome.failure_kind == FailureKind.INVALID_OUTPUT
        assert outcome.error == "Output exceeded 1000 bytes"


# ── Timeout ───────────────────────────────────────────────────────────────────

class TestTimeout:
    @pytest.mark.asyncio
    async def test_infinite_loop_times_out(self, sales_csv):
        executor = SandboxExecutor(SandboxLimits(timeout=1), runtime="local")
        outcome = await _run(executor, "while True:\n    pass\nprint(json.dumps(1))", sales_csv)
        assert outcome.success is False
        assert outcome.failure_kind == FailureKind.TIMEOUT
        assert outcome.error == "Execution timed out after 1s"
        assert outcome.elapsed_seconds >= 1


# ── Full pipeline ─────────────────────────────────────────────────────────────

class TestPipelineEndToEnd:
    @pytest.mark.asyncio
    async def test_question_to_chart(self, test_settings, sales_metadata, fake_llm_factory):
        reply = (
            '{"code": "result = df.groupby([\'month\', \'region\'])[\'sales\'].sum().reset_index()'
            '\\nprint(json.dumps(result))", "summary": "Monthly sales per region."}'
        )
        pipeline = AnalysisPipeline(
            generator=CodeGenerator(fake_llm_factory(reply)),
            executor=SandboxExecutor.from_settings(test_settings),
            config=test_settings,
        )

        response = await pipeline.run("How did sales move per region?", sales_metadata)

        assert response.success is True, response.error
        assert response.chart.chart_type.value == "line"
        assert response.chart_data.series_keys == ["North", "South"]
        assert response.chart_data.records[0] == {"month": "2024-01", "North": 100, "South": 80}
        assert response.summary == test_settings.SUMMARY_FALLBACK
