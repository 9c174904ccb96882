"""Suggested questions for a freshly uploaded dataset."""

from __future__ import annotations

import logging
import re
from typing import Any, List

from tabletalk.prompts import get_suggested_questions_prompt
from tabletalk.services.datasets.models import DatasetMetadata
from tabletalk.services.llm_service.llm import response_text

logger = logging.getLogger(__name__)

_NUMBERING_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def parse_questions(text: str, limit: int = 5) -> List[str]:
    """One question per line, numbering and bullets removed."""
    questions = []
    for line in text.splitlines():
        question = _NUMBERING_RE.sub("", line).strip()
        if question:
            questions.append(question)
    return questions[:limit]


async def suggest_questions(llm: Any, metadata: DatasetMetadata, count: int = 5) -> List[str]:
    """Ask the LLM for *count* questions worth asking about the dataset.

    Raises whatever the model call raises; the upload route treats this as
    best-effort.
    """
    prompt = get_suggested_questions_prompt(metadata.column_names, metadata.sample_rows, count)
    response = await llm.ainvoke(prompt)
    questions = parse_questions(response_text(response), limit=count)
    logger.info(f"Generated {len(questions)} suggested questions for dataset {metadata.dataset_id}")
    return questions
