"""Result summarizer — a short natural-language gloss of an analysis result.

Failures propagate; the pipeline decides to swallow them and fall back to a
fixed message.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from tabletalk.prompts import get_summary_prompt
from tabletalk.services.llm_service.llm import response_text

logger = logging.getLogger(__name__)


class ResultSummarizer:
    def __init__(self, llm: Any):
        self.llm = llm

    async def summarize(self, query: str, result: Any, code_summary: str = "") -> str:
        prompt = get_summary_prompt(query, json.dumps(result, ensure_ascii=False), code_summary)
        response = await self.llm.ainvoke(prompt)
        text = response_text(response)
        if not text:
            raise ValueError("Summarizer returned an empty reply")
        return text
