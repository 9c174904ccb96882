"""Pydantic schemas for validating structured LLM outputs."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


# ── Code generation ───────────────────────────────────────

class GeneratedCode(BaseModel):
    """Analysis code returned by the code-generation model, plus optional metadata."""
    code: str = Field(min_length=1)
    summary: str = ""
    intent: Optional[str] = None
    columns_used: List[str] = Field(default_factory=list)
    aggregations: List[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def _coerce_code(cls, v: Any) -> Any:
        # Some models return the code as a list of lines
        if isinstance(v, list):
            return "\n".join(str(line) for line in v)
        return v

    @field_validator("summary", mode="before")
    @classmethod
    def _coerce_summary(cls, v: Any) -> Any:
        return "" if v is None else str(v)

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, v: Any) -> Any:
        return v if v is None else str(v)

    @field_validator("columns_used", "aggregations", mode="before")
    @classmethod
    def _coerce_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        if isinstance(v, list):
            return [str(s) for s in v if isinstance(s, (str, int, float))]
        return []
