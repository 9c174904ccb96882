"""Harness — wraps validated analysis code into a self-contained guest script.

The wrapper:
- Loads the dataset read-only into ``df`` from ``$DATASET_PATH``
- Injects the dataset's column names as ``_AVAILABLE_COLUMNS``
- Patches ``json.dumps`` so every dumped value goes through ``_safe_to_json``
- Runs the generated code inside a catch-all boundary that turns any failure
  into a single ``{"error": ..., "error_category": ...}`` JSON document

so the guest prints either well-formed JSON or nothing useful at all —
never a traceback on the success path.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Sequence

ERROR_KEY = "error"
CATEGORY_KEY = "error_category"
DATASET_ENV_VAR = "DATASET_PATH"


class ErrorCategory(str, Enum):
    MISSING_COLUMN = "missing_column"
    TYPE_MISMATCH = "type_mismatch"
    VALUE_ERROR = "value_error"
    UNKNOWN = "unknown"


_WRAPPER_TEMPLATE = '''# === Safety Wrapper ===
import json as _json
import math as _math
import os as _os
import sys as _sys

_AVAILABLE_COLUMNS = {columns}
_USER_CODE = {code}


def _emit_error(category, message):
    _sys.stdout.write(_raw_dumps({{"error": message, "error_category": category}}) + "\\n")
    _sys.stdout.flush()


_raw_dumps = _json.dumps

try:
    import numpy as np
    import pandas as pd

    def _safe_to_json(obj):
        """Convert pandas/numpy objects to JSON-serializable structures."""
        if isinstance(obj, pd.DataFrame):
            frame = obj.copy()
            if any(name is not None for name in frame.index.names):
                frame = frame.reset_index()
            for col in frame.columns:
                if pd.api.types.is_datetime64_any_dtype(frame[col]):
                    frame[col] = frame[col].dt.strftime("%Y-%m-%d")
                elif isinstance(frame[col].dtype, pd.PeriodDtype):
                    frame[col] = frame[col].astype(str)
            frame.columns = [str(c) for c in frame.columns]
            return [_safe_to_json(r) for r in frame.to_dict(orient="records")]
        if isinstance(obj, pd.Series):
            return {{str(k): _safe_to_json(v) for k, v in obj.to_dict().items()}}
        if obj is pd.NaT or obj is pd.NA:
            return None
        if isinstance(obj, (pd.Timestamp, pd.Period, pd.Timedelta, pd.Interval)):
            return str(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, (np.floating, float)):
            value = float(obj)
            return value if _math.isfinite(value) else None
        if isinstance(obj, np.ndarray):
            return [_safe_to_json(v) for v in obj.tolist()]
        if isinstance(obj, dict):
            return {{str(k): _safe_to_json(v) for k, v in obj.items()}}
        if isinstance(obj, (list, tuple, set)):
            return [_safe_to_json(v) for v in obj]
        if obj is None or isinstance(obj, (bool, int, str)):
            return obj
        return str(obj)

    def _dumps(obj, *args, **kwargs):
        kwargs.pop("default", None)
        kwargs["allow_nan"] = False
        return _raw_dumps(_safe_to_json(obj), *args, **kwargs)

    _json.dumps = _dumps

    df = pd.read_csv(_os.environ["{dataset_env}"])
    _namespace = {{"df": df, "pd": pd, "np": np, "json": _json, "math": _math, "__name__": "__analysis__"}}
    exec(compile(_USER_CODE, "<analysis>", "exec"), _namespace)
except KeyError as e:
    _emit_error("missing_column", f"Column not found: {{e}}. Available: {{_AVAILABLE_COLUMNS}}")
except TypeError as e:
    _emit_error("type_mismatch", f"Type error: {{e}}")
except ValueError as e:
    _emit_error("value_error", f"Value error: {{e}}")
except Exception as e:
    _emit_error("unknown", f"{{type(e).__name__}}: {{e}}")
'''


def wrap_code(code: str, available_columns: Sequence[str]) -> str:
    """Embed validated *code* into the guest wrapper script.

    The code is injected as a string literal (not pasted in) so it cannot break
    out of the exception boundary, and syntax errors surface as structured errors.
    """
    return _WRAPPER_TEMPLATE.format(
        columns=repr(list(available_columns)),
        code=repr(code),
        dataset_env=DATASET_ENV_VAR,
    )


def parse_harness_error(document: Any) -> Optional[Dict[str, str]]:
    """Return ``{"error", "error_category"}`` if *document* is a harness error, else None.

    A plain ``{"error": ...}`` produced by the analysis code itself is a result,
    not a harness error.
    """
    if not isinstance(document, dict) or set(document) != {ERROR_KEY, CATEGORY_KEY}:
        return None
    category = document.get(CATEGORY_KEY)
    if category not in {c.value for c in ErrorCategory}:
        return None
    return {ERROR_KEY: str(document[ERROR_KEY]), CATEGORY_KEY: category}
