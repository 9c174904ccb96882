"""Executor — runs wrapped analysis code and turns raw output into an ExecutionOutcome.

Ties together admission control → sandbox run → stdout parsing → failure
classification. The guest must print exactly one JSON document; anything
else (nothing, several documents, non-JSON, a non-zero exit, a timeout) is a
structured failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from tabletalk.core.config import Settings
from tabletalk.services.code_execution.harness import CATEGORY_KEY, ERROR_KEY, parse_harness_error
from tabletalk.services.code_execution.sandbox import (
    SandboxLimits,
    SandboxResult,
    run_in_sandbox,
)

logger = logging.getLogger(__name__)

_DIAGNOSTIC_CHARS = 2000

# Exit statuses that mean the host killed the guest (SIGKILL / SIGXCPU)
_KILLED_EXIT_CODES = {137, -9, 152, -24}


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    RESOURCE_LIMIT = "resource_limit"
    RUNTIME_ERROR = "runtime_error"
    INVALID_OUTPUT = "invalid_output"
    SANDBOX_ERROR = "sandbox_error"


@dataclass
class ExecutionOutcome:
    """Result of one sandboxed execution.

    ``result`` is populated only on success and ``error`` only on failure;
    ``elapsed_seconds`` is always set, measured by the caller.
    """
    success: bool
    elapsed_seconds: float
    result: Any = None
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    error_category: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None

    def __post_init__(self):
        if self.success and self.error is not None:
            raise ValueError("successful outcome cannot carry an error")
        if not self.success and (self.error is None or self.result is not None):
            raise ValueError("failed outcome needs an error and no result")


class OutputParseError(ValueError):
    """Guest stdout was not exactly one JSON document."""


def parse_json_documents(stdout: str) -> List[Any]:
    """Split *stdout* into consecutive JSON documents.

    Raises:
        OutputParseError: empty output or anything that is not JSON.
    """
    text = stdout.strip()
    if not text:
        raise OutputParseError("Execution produced no output")

    decoder = json.JSONDecoder()
    documents: List[Any] = []
    pos = 0
    while pos < len(text):
        try:
            doc, end = decoder.raw_decode(text, pos)
        except json.JSONDecodeError as e:
            raise OutputParseError(f"Output is not valid JSON: {e.msg} at position {e.pos}") from e
        documents.append(doc)
        pos = end
        while pos < len(text) and text[pos].isspace():
            pos += 1
    return documents


def _truncate(text: str) -> str:
    return text if len(text) <= _DIAGNOSTIC_CHARS else text[:_DIAGNOSTIC_CHARS] + "…"


def interpret_result(raw: SandboxResult, elapsed: float, timeout: int) -> ExecutionOutcome:
    """Classify a raw sandbox result into an ExecutionOutcome."""
    diagnostics = dict(
        stdout=_truncate(raw.stdout),
        stderr=_truncate(raw.stderr),
        exit_code=raw.exit_code,
        elapsed_seconds=elapsed,
    )

    if raw.timed_out:
        return ExecutionOutcome(
            success=False,
            error=f"Execution timed out after {timeout}s",
            failure_kind=FailureKind.TIMEOUT,
            **diagnostics,
        )

    if raw.error is not None:
        return ExecutionOutcome(
            success=False,
            error=raw.error,
            failure_kind=FailureKind.SANDBOX_ERROR,
            **diagnostics,
        )

    if raw.output_limit_exceeded is not None:
        return ExecutionOutcome(
            success=False,
            error=f"Output exceeded {raw.output_limit_exceeded} bytes",
            failure_kind=FailureKind.INVALID_OUTPUT,
            **diagnostics,
        )

    documents: List[Any] = []
    parse_error: Optional[str] = None
    try:
        documents = parse_json_documents(raw.stdout)
    except OutputParseError as e:
        parse_error = str(e)
    if parse_error is None and len(documents) > 1:
        parse_error = f"Expected one JSON document, got {len(documents)}"

    # The harness boundary always prints last, even after partial output
    harness_error = parse_harness_error(documents[-1]) if documents else None
    if harness_error is not None:
        return ExecutionOutcome(
            success=False,
            error=harness_error[ERROR_KEY],
            failure_kind=FailureKind.RUNTIME_ERROR,
            error_category=harness_error[CATEGORY_KEY],
            **diagnostics,
        )

    if raw.exit_code != 0:
        if raw.exit_code in _KILLED_EXIT_CODES:
            return ExecutionOutcome(
                success=False,
                error="Execution was killed after exceeding its memory or CPU limit",
                failure_kind=FailureKind.RESOURCE_LIMIT,
                **diagnostics,
            )
        return ExecutionOutcome(
            success=False,
            error=f"Execution failed with exit code {raw.exit_code}",
            failure_kind=FailureKind.RUNTIME_ERROR,
            **diagnostics,
        )

    if parse_error is not None:
        return ExecutionOutcome(
            success=False,
            error=parse_error,
            failure_kind=FailureKind.INVALID_OUTPUT,
            **diagnostics,
        )

    return ExecutionOutcome(success=True, result=documents[0], **diagnostics)


class SandboxExecutor:
    """Executes wrapped code in the configured sandbox, one fresh environment per call.

    Concurrent calls are admitted through a semaphore so that simultaneous
    runs cannot oversubscribe the host's memory/CPU ceilings.
    """

    def __init__(
        self,
        limits: SandboxLimits,
        runtime: str = "docker",
        image: str = "tabletalk-sandbox:latest",
        max_concurrency: int = 4,
    ):
        self.limits = limits
        self.runtime = runtime
        self.image = image
        self._slots = asyncio.Semaphore(max_concurrency)

    @classmethod
    def from_settings(cls, config: Settings) -> "SandboxExecutor":
        limits = SandboxLimits(
            timeout=config.CODE_EXECUTION_TIMEOUT,
            memory=config.SANDBOX_MEMORY_LIMIT,
            cpus=config.SANDBOX_CPU_LIMIT,
            pids=config.SANDBOX_PIDS_LIMIT,
            tmpfs_size=config.SANDBOX_TMPFS_SIZE,
            user=config.SANDBOX_USER,
            max_output_bytes=config.SANDBOX_MAX_OUTPUT_BYTES,
        )
        return cls(
            limits,
            runtime=config.SANDBOX_RUNTIME,
            image=config.SANDBOX_IMAGE,
            max_concurrency=config.SANDBOX_MAX_CONCURRENCY,
        )

    async def execute(
        self,
        wrapped_code: str,
        dataset_path: str,
        columns: Sequence[str],
    ) -> ExecutionOutcome:
        """Run *wrapped_code* against *dataset_path* and return a structured outcome.

        Args:
            wrapped_code: Guest script produced by ``harness.wrap_code``.
            dataset_path: Host path of the dataset, mounted read-only.
            columns: Column allowlist of the dataset (baked into the wrapper;
                used here for diagnostics).
        """
        job_id = str(uuid.uuid4())[:8]

        async with self._slots:
            logger.info(
                f"[{job_id}] Executing code ({len(wrapped_code)} chars, "
                f"{len(columns)} columns, runtime={self.runtime})"
            )
            start_time = time.monotonic()
            raw = await run_in_sandbox(
                wrapped_code,
                dataset_path,
                self.limits,
                runtime=self.runtime,
                image=self.image,
            )
            elapsed = round(time.monotonic() - start_time, 3)

        outcome = interpret_result(raw, elapsed, self.limits.timeout)

        logger.info(
            f"[{job_id}] Execution complete: "
            f"success={outcome.success}, "
            f"exit={raw.exit_code}, "
            f"timeout={raw.timed_out}, "
            f"elapsed={elapsed}s"
        )
        if not outcome.success:
            logger.warning(
                "[%s] Execution failed (%s): %s | stderr: %s",
                job_id,
                outcome.failure_kind.value if outcome.failure_kind else "unknown",
                outcome.error,
                _truncate(raw.stderr),
            )

        return outcome
