"""Code generator — asks the LLM for pandas code answering a question about a dataset.

The LLM instance is injected; nothing here reaches for a global client.
Exactly one model call per query: retrying is the provider client's business.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import ValidationError

from tabletalk.prompts import get_code_generation_prompt
from tabletalk.services.datasets.models import DatasetMetadata
from tabletalk.services.llm_service.llm import response_text
from tabletalk.services.llm_service.llm_schemas import GeneratedCode
from tabletalk.services.llm_service.response_parser import ResponseParseError, parse_generation_response

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """The code-generation model was unreachable or returned nothing usable."""


class CodeGenerator:
    """Turns (question, dataset metadata) into GeneratedCode via an LLM.

    Args:
        llm: Any LangChain-compatible model with ``ainvoke``.
    """

    def __init__(self, llm: Any):
        self.llm = llm

    def build_prompt(self, query: str, metadata: DatasetMetadata) -> str:
        return get_code_generation_prompt(
            query=query,
            columns=[{"name": c.name, "type": c.type} for c in metadata.columns],
            sample_rows=metadata.sample_rows,
            row_count=metadata.row_count_estimate,
        )

    async def generate(self, query: str, metadata: DatasetMetadata) -> GeneratedCode:
        """Generate analysis code for *query*.

        Raises:
            GenerationError: if the model call fails or no code can be recovered.
        """
        prompt = self.build_prompt(query, metadata)

        start_time = time.time()
        try:
            response = await self.llm.ainvoke(prompt)
        except Exception as e:
            logger.error(f"Code generation call failed: {type(e).__name__}: {e}")
            raise GenerationError(f"Code generation service unavailable: {e}") from e

        text = response_text(response)
        logger.info(f"Code generation reply received ({len(text)} chars, {time.time() - start_time:.2f}s)")

        try:
            generated = parse_generation_response(text)
        except (ResponseParseError, ValidationError) as e:
            logger.warning(f"Unusable code generation reply: {e}")
            raise GenerationError(str(e)) from e

        logger.debug(f"Generated code:\n{generated.code}")
        return generated
