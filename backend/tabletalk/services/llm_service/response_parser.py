"""Lenient parsing of code-generation replies.

Models are asked for a JSON envelope ``{"code": ..., "summary": ...}`` but
frequently wrap it in markdown fences, add chatter around it, use Python
literals or single quotes, or leave trailing commas. Parsing runs an ordered
list of small pure repair passes, attempting ``json.loads`` after each one:

1. strip_think_tags:      drop ``<think>...</think>`` reasoning blocks
2. strip_fences:          unwrap a ```json fenced block
3. extract_brace_span:    keep the first ``{`` to the last ``}``
4. normalize_quotes:      single-quoted strings → double-quoted
5. normalize_literals:    True/False/None → true/false/null
6. remove_trailing_commas

Then the ``json_repair`` library gets a go, and finally a heuristic pulls a
code block and a one-sentence summary straight out of the text.

Passes 4–6 only touch text outside double-quoted strings, so the Python code
carried inside the envelope is never rewritten.
"""

from __future__ import annotations

import json
import logging
import re
import textwrap
from typing import Any, Callable, Dict, List, Optional, Tuple

import json_repair
from pydantic import ValidationError

from tabletalk.services.llm_service.llm_schemas import GeneratedCode

logger = logging.getLogger(__name__)

RepairPass = Callable[[str], str]

_THINK_TAG_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_JSON_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n(.*?)```", re.DOTALL)
_CODE_FENCE_RE = re.compile(r"```[ \t]*(?:python|py|Python)?[ \t]*\n(.*?)```", re.DOTALL)
_PYTHON_FENCE_RE = re.compile(r"```[ \t]*(?:python|py|Python)[ \t]*\n(.*?)```", re.DOTALL)
_SENTENCE_RE = re.compile(r"[^.!?\n]*[A-Za-z][^.!?\n]*[.!?]")
_CODE_LINE_RE = re.compile(r"^\s*(?:import |from \w|df\b|result\b|print\(|[A-Za-z_]\w*\s*=\s*\S)")

_CODE_KEYS = ("code", "python_code", "pythonCode", "python")
_COLUMN_KEYS = ("columns_used", "columns", "columnsUsed")


class ResponseParseError(ValueError):
    """No usable code could be recovered from a model reply."""


# ── String-aware helpers ──────────────────────────────────────


def _string_end(text: str, start: int, quote: str) -> int:
    """Index just past the string literal opened at *start* (or len(text))."""
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        i += 1
    return len(text)


def _split_strings(text: str) -> List[Tuple[bool, str]]:
    """Split *text* into (is_string, chunk) pieces on double-quoted literals."""
    pieces: List[Tuple[bool, str]] = []
    i = last = 0
    while i < len(text):
        if text[i] == '"':
            if i > last:
                pieces.append((False, text[last:i]))
            end = _string_end(text, i, '"')
            pieces.append((True, text[i:end]))
            i = last = end
        else:
            i += 1
    if last < len(text):
        pieces.append((False, text[last:]))
    return pieces


def _outside_strings(text: str, transform: Callable[[str], str]) -> str:
    return "".join(chunk if is_string else transform(chunk) for is_string, chunk in _split_strings(text))


# ── Repair passes ─────────────────────────────────────────────


def strip_think_tags(text: str) -> str:
    return _THINK_TAG_RE.sub("", text).strip()


def strip_fences(text: str) -> str:
    """Unwrap the first ```json (or bare ```) block that looks like an object."""
    for match in _JSON_FENCE_RE.finditer(text):
        body = match.group(1).strip()
        if body.startswith("{"):
            return body
    return text.strip()


def extract_brace_span(text: str) -> str:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start:end + 1]


def normalize_quotes(text: str) -> str:
    """Rewrite single-quoted string literals as double-quoted JSON strings."""
    out: List[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == '"':
            end = _string_end(text, i, '"')
            out.append(text[i:end])
            i = end
        elif ch == "'":
            end = _string_end(text, i, "'")
            inner = text[i + 1:end - 1] if end <= len(text) and text[end - 1] == "'" else text[i + 1:end]
            inner = inner.replace("\\'", "'")
            inner = re.sub(r'(?<!\\)"', '\\"', inner)
            out.append(f'"{inner}"')
            i = end
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def normalize_literals(text: str) -> str:
    """Python-style True/False/None → JSON true/false/null."""
    def fix(chunk: str) -> str:
        chunk = re.sub(r"\bTrue\b", "true", chunk)
        chunk = re.sub(r"\bFalse\b", "false", chunk)
        return re.sub(r"\bNone\b", "null", chunk)

    return _outside_strings(text, fix)


def remove_trailing_commas(text: str) -> str:
    return _outside_strings(text, lambda chunk: re.sub(r",(\s*[}\]])", r"\1", chunk))


REPAIR_PASSES: Tuple[RepairPass, ...] = (
    strip_think_tags,
    strip_fences,
    extract_brace_span,
    normalize_quotes,
    normalize_literals,
    remove_trailing_commas,
)


# ── Envelope handling ─────────────────────────────────────────


def strip_code_fences(code: str) -> str:
    """Extract code from a fenced block if present, else return it trimmed."""
    text = code.strip()
    match = _CODE_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def _first(data: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key) not in (None, "", []):
            return data[key]
    return None


def _from_envelope(data: Any) -> Optional[GeneratedCode]:
    if not isinstance(data, dict):
        return None
    code = _first(data, _CODE_KEYS)
    if isinstance(code, list):
        code = "\n".join(str(line) for line in code)
    if not isinstance(code, str) or not code.strip():
        return None
    try:
        return GeneratedCode(
            code=strip_code_fences(code),
            summary=data.get("summary") or data.get("explanation") or "",
            intent=data.get("intent"),
            columns_used=_first(data, _COLUMN_KEYS),
            aggregations=data.get("aggregations"),
        )
    except ValidationError as e:
        logger.debug(f"Envelope rejected: {e.error_count()} invalid field(s)")
        return None


def _try_json(text: str) -> Any:
    try:
        return json.loads(text, strict=False)
    except json.JSONDecodeError:
        return None


# ── Heuristic fallback ────────────────────────────────────────


def _indented_block(text: str) -> Optional[str]:
    """Longest run of indented lines (4 spaces / tab), dedented."""
    best: List[str] = []
    current: List[str] = []
    for line in text.splitlines() + [""]:
        if line.startswith(("    ", "\t")) or (current and not line.strip()):
            current.append(line)
            continue
        if len([l for l in current if l.strip()]) > len([l for l in best if l.strip()]):
            best = current
        current = []
    lines = [l for l in best if l.strip()]
    if len(lines) < 2:
        return None
    return textwrap.dedent("\n".join(best)).strip()


def _bare_code(text: str) -> Tuple[Optional[str], str]:
    """Unfenced code: from the first code-looking line, minus trailing prose."""
    lines = text.splitlines()
    start = next((i for i, line in enumerate(lines) if _CODE_LINE_RE.match(line)), None)
    if start is None:
        return None, text

    end = len(lines)
    while end > start and (
        not lines[end - 1].strip()
        or (not lines[end - 1].startswith((" ", "\t", "#")) and _SENTENCE_RE.fullmatch(lines[end - 1].strip()))
    ):
        end -= 1

    code = "\n".join(lines[start:end]).strip()
    prose = "\n".join(lines[:start] + lines[end:])
    return code or None, prose


def extract_code_heuristic(text: str) -> Tuple[Optional[str], str]:
    """Pull (code, summary) out of free text; code is None when nothing looks like code."""
    text = strip_think_tags(text)

    match = _PYTHON_FENCE_RE.search(text) or _CODE_FENCE_RE.search(text)
    if match:
        code = match.group(1).strip()
        prose = (text[:match.start()] + "\n" + text[match.end():]).strip()
    else:
        code = _indented_block(text)
        if code is not None:
            prose = "\n".join(l for l in text.splitlines() if not l.startswith(("    ", "\t")))
        else:
            code, prose = _bare_code(text)

    summary_match = _SENTENCE_RE.search(prose or "")
    summary = summary_match.group(0).strip() if summary_match else ""
    return code, summary


# ── Public API ────────────────────────────────────────────────


def parse_generation_response(text: str) -> GeneratedCode:
    """Recover a GeneratedCode from a raw model reply.

    Raises:
        ResponseParseError: if no code can be found by any strategy.
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response from code generator")

    candidate = text
    result = _from_envelope(_try_json(candidate))
    if result is not None:
        return result

    for repair in REPAIR_PASSES:
        candidate = repair(candidate)
        result = _from_envelope(_try_json(candidate))
        if result is not None:
            logger.debug(f"Parsed code envelope after repair pass '{repair.__name__}'")
            return result

    try:
        repaired = json_repair.loads(candidate)
    except (ValueError, RecursionError) as e:
        logger.debug(f"json_repair could not parse the reply: {e}")
        repaired = None
    result = _from_envelope(repaired)
    if result is not None:
        logger.debug("Parsed code envelope with json_repair")
        return result

    code, summary = extract_code_heuristic(text)
    if code:
        logger.info("Recovered code from an unstructured reply")
        return GeneratedCode(code=code, summary=summary)

    raise ResponseParseError(
        f"Cannot extract code from code generator response. First 300 chars: {text[:300]}"
    )
