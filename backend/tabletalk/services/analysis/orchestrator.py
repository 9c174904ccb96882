"""Analysis pipeline — drives one question through the full state machine.

    GENERATING → VALIDATING → EXECUTING → NORMALIZING → CLASSIFYING → SUMMARIZING → DONE

``FAILED`` is reachable from GENERATING, VALIDATING and EXECUTING only.
Each question is attempted exactly once; there are no retries here.
Classification cannot fail and summarization degrades to a fixed message,
so once execution succeeds the request succeeds.

Collaborators are injected, so tests can drive the pipeline with fakes.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from enum import Enum
from typing import Any, List

from tabletalk.core.config import Settings
from tabletalk.services.analysis.chart_recommender import build_chart
from tabletalk.services.analysis.normalizer import normalize
from tabletalk.services.analysis.schemas import AnalysisResponse
from tabletalk.services.code_execution.executor import ExecutionOutcome, FailureKind
from tabletalk.services.code_execution.harness import wrap_code
from tabletalk.services.code_execution.security import Severity, validate_code
from tabletalk.services.datasets.models import DatasetMetadata
from tabletalk.services.llm_service.code_generator import GenerationError

logger = logging.getLogger(__name__)

_RAW_OUTPUT_CHARS = 10_000


class PipelineState(str, Enum):
    GENERATING = "generating"
    VALIDATING = "validating"
    EXECUTING = "executing"
    NORMALIZING = "normalizing"
    CLASSIFYING = "classifying"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


class _Run:
    """Per-request bookkeeping: run id, visited states, timing."""

    def __init__(self, query: str):
        self.run_id = str(uuid.uuid4())[:8]
        self.states: List[PipelineState] = []
        self.started = time.time()
        self.query = query

    def enter(self, state: PipelineState) -> None:
        self.states.append(state)
        logger.info(f"[{self.run_id}] → {state.value.upper()}")

    @property
    def state_names(self) -> List[str]:
        return [s.value for s in self.states]


class AnalysisPipeline:
    """Generate → validate → execute → normalize → classify → summarize.

    Args:
        generator: Object with ``async generate(query, metadata) -> GeneratedCode``.
        executor: Object with ``async execute(wrapped_code, dataset_path, columns) -> ExecutionOutcome``.
        summarizer: Optional object with ``async summarize(query, result, code_summary) -> str``.
        config: Settings for validator policy, chart caps and the fallback summary.
    """

    def __init__(self, generator: Any, executor: Any, config: Settings, summarizer: Any = None):
        self.generator = generator
        self.executor = executor
        self.summarizer = summarizer
        self.config = config

    def _fail(
        self,
        run: _Run,
        stage: PipelineState,
        summary: str,
        error: str,
        **fields: Any,
    ) -> AnalysisResponse:
        run.enter(PipelineState.FAILED)
        logger.warning(f"[{run.run_id}] Pipeline failed at {stage.value}: {error}")
        return AnalysisResponse(
            success=False,
            summary=summary,
            error=error,
            failed_stage=stage.value,
            states=run.state_names,
            **fields,
        )

    async def run(self, query: str, metadata: DatasetMetadata) -> AnalysisResponse:
        run = _Run(query)
        columns = metadata.column_names
        logger.info(f"[{run.run_id}] Analysis started for dataset {metadata.dataset_id}: {query[:120]!r}")

        # ── Generate ──────────────────────────────────────
        run.enter(PipelineState.GENERATING)
        try:
            generated = await self.generator.generate(query, metadata)
        except GenerationError as e:
            return self._fail(
                run,
                PipelineState.GENERATING,
                summary="I couldn't generate analysis code for that question.",
                error=str(e),
            )

        # ── Validate ──────────────────────────────────────
        run.enter(PipelineState.VALIDATING)
        validation = validate_code(
            generated.code,
            available_columns=columns,
            balance_severity=Severity(self.config.VALIDATOR_BALANCE_SEVERITY),
            max_length=self.config.MAX_CODE_LENGTH,
        )
        if not validation.is_valid:
            return self._fail(
                run,
                PipelineState.VALIDATING,
                summary="The generated code was blocked by the safety checks and was not run.",
                error="; ".join(validation.errors),
                code=generated.code,
                errors=validation.errors,
                warnings=validation.warnings,
            )

        # ── Execute ───────────────────────────────────────
        run.enter(PipelineState.EXECUTING)
        if not os.path.isfile(metadata.file_path):
            return self._fail(
                run,
                PipelineState.EXECUTING,
                summary="The dataset file for this conversation is no longer available.",
                error="Dataset file is missing",
                code=validation.sanitized_code,
                elapsed_time=0.0,
                failure_kind=FailureKind.SANDBOX_ERROR.value,
                warnings=validation.warnings,
            )

        wrapped = wrap_code(validation.sanitized_code, columns)
        outcome: ExecutionOutcome = await self.executor.execute(wrapped, metadata.file_path, columns)
        raw_output = outcome.stdout.strip()[:_RAW_OUTPUT_CHARS]

        if not outcome.success:
            return self._fail(
                run,
                PipelineState.EXECUTING,
                summary="The analysis code ran but did not produce a usable result.",
                error=outcome.error or "Execution failed",
                code=validation.sanitized_code,
                raw_output=raw_output,
                elapsed_time=outcome.elapsed_seconds,
                failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
                error_category=outcome.error_category,
                warnings=validation.warnings,
            )

        # ── Normalize ─────────────────────────────────────
        run.enter(PipelineState.NORMALIZING)
        result = normalize(outcome.result)

        # ── Classify ──────────────────────────────────────
        run.enter(PipelineState.CLASSIFYING)
        chart, chart_data = build_chart(
            result,
            pie_cap=self.config.CHART_PIE_CAP,
            bar_cap=self.config.CHART_BAR_CAP,
            series_cap=self.config.CHART_SERIES_CAP,
        )
        logger.info(
            f"[{run.run_id}] Chart: {chart.chart_type.value} "
            f"({chart.confidence.value}): {chart.reason}"
        )

        # ── Summarize ─────────────────────────────────────
        run.enter(PipelineState.SUMMARIZING)
        summary = await self._summarize(run, result, generated.summary)

        run.enter(PipelineState.DONE)
        logger.info(
            f"[{run.run_id}] Analysis complete in {time.time() - run.started:.2f}s "
            f"(execution {outcome.elapsed_seconds}s)"
        )
        return AnalysisResponse(
            success=True,
            summary=summary,
            code=validation.sanitized_code,
            raw_output=raw_output,
            elapsed_time=outcome.elapsed_seconds,
            result=result,
            chart=chart,
            chart_data=chart_data,
            warnings=validation.warnings,
            states=run.state_names,
        )

    async def _summarize(self, run: _Run, result: Any, code_summary: str) -> str:
        """Best-effort: any failure yields the configured fallback string."""
        if self.summarizer is None:
            return self.config.SUMMARY_FALLBACK
        try:
            return await self.summarizer.summarize(run.query, result, code_summary)
        except Exception as e:
            logger.warning(f"[{run.run_id}] Summarization failed, using fallback: {type(e).__name__}: {e}")
            return self.config.SUMMARY_FALLBACK
