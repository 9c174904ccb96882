"""
Shared route dependencies.

Services are built once at start-up (see ``build_services``) and kept on
``app.state``; routes reach them through these small dependency functions,
which tests replace via ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import HTTPException, Request

from tabletalk.core.config import Settings
from tabletalk.services.analysis.orchestrator import AnalysisPipeline
from tabletalk.services.code_execution.executor import SandboxExecutor
from tabletalk.services.datasets.registry import DatasetRegistry
from tabletalk.services.llm_service.code_generator import CodeGenerator
from tabletalk.services.llm_service.llm import get_llm
from tabletalk.services.llm_service.summarizer import ResultSummarizer

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    config: Settings
    registry: DatasetRegistry
    pipeline: Optional[AnalysisPipeline]
    suggestion_llm: Any = None


def _build_llm(config: Settings, mode: str) -> Any:
    try:
        return get_llm(config, mode=mode)
    except (ValueError, ImportError) as e:
        logger.error(f"Could not build {config.LLM_PROVIDER} LLM client ({mode}): {e}")
        return None


def build_services(config: Settings) -> AppServices:
    """Wire registry, sandbox executor, LLM collaborators and the pipeline."""
    registry = DatasetRegistry(config.DATASET_REGISTRY_FILE, config.UPLOAD_DIR)
    executor = SandboxExecutor.from_settings(config)

    code_llm = _build_llm(config, "code")
    chat_llm = _build_llm(config, "chat")

    pipeline = None
    if code_llm is not None:
        pipeline = AnalysisPipeline(
            generator=CodeGenerator(code_llm),
            executor=executor,
            config=config,
            summarizer=ResultSummarizer(chat_llm) if chat_llm is not None else None,
        )

    return AppServices(
        config=config,
        registry=registry,
        pipeline=pipeline,
        suggestion_llm=_build_llm(config, "creative"),
    )


def _services(request: Request) -> AppServices:
    return request.app.state.services


def get_config(request: Request) -> Settings:
    return _services(request).config


def get_registry(request: Request) -> DatasetRegistry:
    return _services(request).registry


def get_pipeline(request: Request) -> AnalysisPipeline:
    pipeline = _services(request).pipeline
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Code generation service is not configured")
    return pipeline


def get_suggestion_llm(request: Request) -> Any:
    return _services(request).suggestion_llm
