from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection
import re
from datetime import datetime

from certbatch.core.hash import is_hex_sha256


@dataclass(frozen=True)
class SchemaIssue:
    path: str
    message: str


_RFC3339_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T"
    r"\d{2}:\d{2}:\d{2}"
    r"(?:\.\d{1,9})?"
    r"(?:Z|[+\-]\d{2}:\d{2})$"
)

def parse_rfc3339(dt: str) -> None:
    if not isinstance(dt, str) or not dt:
        raise ValueError("date-time missing/empty")
    if _RFC3339_RE.match(dt) is None:
        raise ValueError("invalid RFC3339 format")
    if dt.endswith("Z"):
        dt = dt[:-1] + "+00:00"
    parsed = datetime.fromisoformat(dt)
    if parsed.tzinfo is None:
        raise ValueError("missing timezone offset")


def join_path(parent: str, key: str) -> str:
    return f"{parent}.{key}" if parent else key


def index_path(parent: str, idx: int) -> str:
    return f"{parent}[{idx}]"


def validate_schema(
    obj: Any,
    schema: dict[str, Any],
    *,
    root_schema: dict[str, Any],
    path: str = "",
    redacted: Collection[str] = (),
) -> list[SchemaIssue]:
    """Deterministic, stdlib-only validator sufficient for certbatch document schemas.

    Supported keywords:
      - $ref (internal only)
      - type
      - required
      - properties
      - additionalProperties=false
      - minLength
      - minimum
      - pattern
      - enum
      - const
      - items
      - format: date-time

    Paths use the same notation as field commitments (``a.b[0].c``). A node
    whose path is in ``redacted`` only has to be a sha256 hex string: its
    cleartext has been replaced by the field commitment.

    Returns a stable list of SchemaIssue objects.
    """

    errors: list[SchemaIssue] = []
    redacted_set = frozenset(redacted)

    def err(p: str, msg: str) -> None:
        errors.append(SchemaIssue(path=p or "$", message=msg))

    def json_type_name(v: Any) -> str:
        if v is None:
            return "null"
        if isinstance(v, bool):
            return "boolean"
        if isinstance(v, int) and not isinstance(v, bool):
            return "integer"
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return "number"
        if isinstance(v, str):
            return "string"
        if isinstance(v, list):
            return "array"
        if isinstance(v, dict):
            return "object"
        return type(v).__name__

    def type_matches(v: Any, expected: str) -> bool:
        actual = json_type_name(v)
        if expected == "number":
            return actual in ("number", "integer")
        return actual == expected

    def resolve_json_pointer(root: Any, ptr: str) -> Any:
        # Supports only internal refs: '#/...'.
        if ptr == "#":
            return root
        if not ptr.startswith("#/"):
            raise ValueError(f"Unsupported $ref (only internal refs supported): {ptr}")
        parts = ptr[2:].split("/")
        cur: Any = root
        for raw in parts:
            part = raw.replace("~1", "/").replace("~0", "~")
            if isinstance(cur, dict):
                if part not in cur:
                    raise KeyError(f"Missing ref path segment: {part}")
                cur = cur[part]
            elif isinstance(cur, list):
                idx = int(part)
                cur = cur[idx]
            else:
                raise TypeError("Cannot traverse non-container")
        return cur

    def walk(cur_obj: Any, sch: Any, cur_path: str) -> None:
        if not isinstance(sch, dict):
            err(cur_path, "schema node is not an object")
            return

        if cur_path in redacted_set:
            if not is_hex_sha256(cur_obj):
                err(cur_path, "redacted field must hold its commitment hash")
            return

        if "$ref" in sch:
            ref = sch.get("$ref")
            if not isinstance(ref, str):
                err(cur_path, "$ref must be string")
                return
            try:
                target = resolve_json_pointer(root_schema, ref)
            except (ValueError, KeyError, TypeError, IndexError) as e:
                err(cur_path, f"unresolvable $ref: {e}")
                return
            walk(cur_obj, target, cur_path)
            return

        # Type
        expected_type = sch.get("type")
        if isinstance(expected_type, str) and not type_matches(cur_obj, expected_type):
            err(cur_path, f"expected type {expected_type}, got {json_type_name(cur_obj)}")
            return

        # enum / const
        if "const" in sch:
            if cur_obj != sch.get("const"):
                err(cur_path, "const mismatch")
                return

        if "enum" in sch:
            enum_vals = sch.get("enum")
            if isinstance(enum_vals, list):
                if cur_obj not in enum_vals:
                    err(cur_path, "enum mismatch")
                    return

        # Scalars
        if isinstance(cur_obj, str):
            min_len = sch.get("minLength")
            if min_len is not None and len(cur_obj) < int(min_len):
                err(cur_path, f"minLength {min_len}")

            patt = sch.get("pattern")
            if isinstance(patt, str):
                if re.search(patt, cur_obj) is None:
                    err(cur_path, "pattern mismatch")

            fmt = sch.get("format")
            if fmt == "date-time":
                try:
                    parse_rfc3339(cur_obj)
                except ValueError:
                    err(cur_path, "invalid date-time")

        if isinstance(cur_obj, (int, float)) and not isinstance(cur_obj, bool):
            minimum = sch.get("minimum")
            if minimum is not None and float(cur_obj) < float(minimum):
                err(cur_path, f"minimum {minimum}")

        # Objects
        if isinstance(cur_obj, dict):
            required = sch.get("required")
            if isinstance(required, list):
                for k in required:
                    if k not in cur_obj:
                        err(cur_path, f"missing required '{k}'")

            props = sch.get("properties")
            if isinstance(props, dict):
                # Deterministic iteration
                for k in sorted(props.keys()):
                    if k in cur_obj:
                        walk(cur_obj[k], props[k], join_path(cur_path, k))

                addl = sch.get("additionalProperties")
                if addl is False:
                    allowed_keys = set(props.keys())
                    extra = sorted([k for k in cur_obj.keys() if k not in allowed_keys])
                    for k in extra:
                        err(join_path(cur_path, k), "additionalProperties not allowed")

        # Arrays
        if isinstance(cur_obj, list):
            item_schema = sch.get("items")
            if isinstance(item_schema, dict):
                for i, item in enumerate(cur_obj):
                    walk(item, item_schema, index_path(cur_path, i))

    walk(obj, schema, path)
    errors.sort(key=lambda e: (e.path, e.message))
    return errors
