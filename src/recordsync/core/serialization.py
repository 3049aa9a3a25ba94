"""JSON encoding shared by the local store and the HTTP remote store."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any


def json_default(value: Any) -> Any:
    """Encode datetimes as ISO-8601, refuse everything else."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_json(value: Any) -> str:
    """Serialize a document.

    Raises:
        TypeError: On values JSON cannot represent.
        ValueError: On NaN/infinity or circular references.
    """
    return json.dumps(value, default=json_default, allow_nan=False)
