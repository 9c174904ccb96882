"""Result normalizer — coerces an execution result into plain JSON values.

Walks lists element-wise and mappings value-wise; any other object becomes
its string form. Non-finite floats become ``None`` so the output always
survives ``json.dumps(..., allow_nan=False)``.
"""

import math
from collections.abc import Mapping
from typing import Any


def normalize(raw: Any) -> Any:
    """Return a JSON-safe copy of *raw*. ``normalize(normalize(x)) == normalize(x)``."""
    if raw is None or isinstance(raw, (bool, int, str)):
        return raw
    if isinstance(raw, float):
        return raw if math.isfinite(raw) else None
    if isinstance(raw, Mapping):
        return {str(k): normalize(v) for k, v in raw.items()}
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [normalize(v) for v in raw]
    return str(raw)
