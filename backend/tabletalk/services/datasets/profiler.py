"""Dataset profiler — reads an uploaded CSV and builds its DatasetMetadata.

Column types are inferred from the preview rows only, with the precedence
number > boolean > date > string. Every cell is read as text so that the
inference sees what the user uploaded, not what pandas guessed.
"""

from __future__ import annotations

import hashlib
import logging
import math
import os
import time
from datetime import datetime, timezone
from typing import List

import pandas as pd

from tabletalk.services.datasets.models import ColumnMetadata, ColumnType, DatasetMetadata

logger = logging.getLogger(__name__)

_BOOLEAN_VALUES = {"true", "false"}


class DatasetProfileError(ValueError):
    """The uploaded file could not be read as a non-empty CSV."""


def make_dataset_id(file_name: str) -> str:
    """First 16 hex chars of sha256(file name + millisecond timestamp)."""
    seed = f"{file_name}{int(time.time() * 1000)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


def _is_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def _is_date(value: str) -> bool:
    if _is_number(value):
        return False
    try:
        return not pd.isna(pd.to_datetime(value, errors="coerce"))
    except (ValueError, TypeError, OverflowError):
        return False


def infer_column_type(values: List[str]) -> ColumnType:
    """Infer a column type from its preview cells (empty cells ignored)."""
    non_empty = [v for v in values if v != ""]
    if not non_empty:
        return "string"
    if all(_is_number(v) for v in non_empty):
        return "number"
    if all(v.lower() in _BOOLEAN_VALUES for v in non_empty):
        return "boolean"
    if all(_is_date(v) for v in non_empty):
        return "date"
    return "string"


def profile_column(name: str, values: List[str]) -> ColumnMetadata:
    column_type = infer_column_type(values)
    non_empty = [v for v in values if v != ""]
    numbers = [float(v) for v in non_empty] if column_type == "number" else []
    return ColumnMetadata(
        name=name,
        type=column_type,
        nullable=len(non_empty) < len(values),
        distinct_count=len(set(non_empty)),
        min=min(numbers) if numbers else None,
        max=max(numbers) if numbers else None,
    )


def profile_csv(
    file_path: str,
    file_name: str,
    dataset_id: str,
    preview_rows: int = 50,
) -> DatasetMetadata:
    """Profile the CSV at *file_path*.

    Raises:
        DatasetProfileError: if the file is empty or not parseable as CSV.
    """
    try:
        df = pd.read_csv(
            file_path,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise DatasetProfileError("CSV file is empty") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise DatasetProfileError(f"Could not parse CSV: {e}") from e

    if len(df.columns) == 0:
        raise DatasetProfileError("CSV file is empty")

    preview = df.head(preview_rows)
    headers = [str(c) for c in df.columns]
    columns = [
        profile_column(name, preview[col].astype(str).tolist())
        for name, col in zip(headers, df.columns)
    ]

    metadata = DatasetMetadata(
        dataset_id=dataset_id,
        file_name=file_name,
        file_size_bytes=os.path.getsize(file_path),
        row_count_estimate=len(df),
        column_count=len(headers),
        columns=columns,
        sample_rows=preview.astype(str).values.tolist(),
        created_at=datetime.now(timezone.utc).isoformat(),
        file_path=os.path.abspath(file_path),
    )
    logger.info(
        f"Profiled dataset {dataset_id}: {metadata.row_count_estimate} rows, "
        f"{metadata.column_count} columns ({', '.join(f'{c.name}:{c.type}' for c in columns)})"
    )
    return metadata
