from __future__ import annotations

import json
from typing import Any


def canonical_value_bytes(value: Any) -> bytes:
    """Canonical encoding of a single field value as committed (no trailing LF)."""

    text = json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"), allow_nan=False)
    return text.encode("utf-8", errors="strict")


def pretty_json_text(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
