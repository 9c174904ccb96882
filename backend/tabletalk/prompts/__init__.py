"""Prompt template loader.

Each ``get_*_prompt`` function loads a ``.txt`` template from this
package directory and substitutes placeholders.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, List, Sequence

_DIR = os.path.dirname(__file__)

_MAX_SAMPLE_ROWS = 5
_MAX_RESULT_CHARS = 4000


@lru_cache(maxsize=32)
def _load(filename: str) -> str:
    """Read a template file, caching the result."""
    with open(os.path.join(_DIR, filename), encoding="utf-8") as f:
        return f.read()


def _render(filename: str, subs: Dict[str, str]) -> str:
    """Load *filename* and apply all substitutions."""
    text = _load(filename)
    for key, val in subs.items():
        text = text.replace(key, val)
    return text


def _format_rows(rows: Sequence[Sequence[str]], limit: int = _MAX_SAMPLE_ROWS) -> str:
    return "\n".join(", ".join(str(v) for v in row) for row in list(rows)[:limit]) or "(no rows)"


# ── Public helpers ────────────────────────────────────────


def get_code_generation_prompt(
    query: str,
    columns: List[Dict[str, str]],
    sample_rows: Sequence[Sequence[str]],
    row_count: int,
) -> str:
    column_lines = "\n".join(f"- {c['name']}: {c['type']}" for c in columns)
    header = ", ".join(c["name"] for c in columns)
    return _render("code_generation_prompt.txt", {
        "{{ROW_COUNT}}": str(row_count),
        "{{COLUMNS}}": column_lines,
        "{{SAMPLE_ROWS}}": f"{header}\n{_format_rows(sample_rows)}",
        "{{QUERY}}": query,
    })


def get_summary_prompt(query: str, result_json: str, code_summary: str = "") -> str:
    if len(result_json) > _MAX_RESULT_CHARS:
        result_json = result_json[:_MAX_RESULT_CHARS] + " ..."
    return _render("summary_prompt.txt", {
        "{{QUERY}}": query,
        "{{CODE_SUMMARY}}": code_summary or "Not provided",
        "{{RESULT}}": result_json,
    })


def get_suggested_questions_prompt(
    headers: Sequence[str],
    sample_rows: Sequence[Sequence[str]],
    count: int = 5,
) -> str:
    return _render("suggested_questions_prompt.txt", {
        "{{HEADERS}}": ", ".join(headers),
        "{{SAMPLE_ROWS}}": _format_rows(sample_rows),
        "{{COUNT}}": str(count),
    })
