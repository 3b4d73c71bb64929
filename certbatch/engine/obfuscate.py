"""Selective redaction of issued documents.

Redacting a field replaces its cleartext with its commitment hash and drops
the salt. The leaf hash only covers commitment hashes, so the document keeps
verifying against the same proof and signature.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

from certbatch.core.errors import FieldNotFoundError, SchemaError, error_for_category
from certbatch.core.files import atomic_write_json, load_json_document
from certbatch.core.schema import SchemaIssue
from certbatch.engine.signature import Keyring
from certbatch.engine.verify import verify_document
from certbatch.protocol.document import FIELD_COMMITMENTS, redacted_paths
from certbatch.protocol.registry import SchemaRegistry


logger = logging.getLogger(__name__)


def _parse_path(path: str) -> list[str | int]:
    """Split ``a.b[0].c`` into ``["a", "b", 0, "c"]``."""

    parts: list[str | int] = []
    for segment in path.split("."):
        name, _, rest = segment.partition("[")
        if name:
            parts.append(name)
        while rest:
            idx, _, rest = rest.partition("]")
            parts.append(int(idx))
            rest = rest[1:] if rest.startswith("[") else rest
    return parts


def _set_value(body: dict[str, Any], path: str, value: Any) -> None:
    parts = _parse_path(path)
    cur: Any = body
    for p in parts[:-1]:
        cur = cur[p]
    cur[parts[-1]] = value


def expand_paths(commitments: dict[str, Any], requested: Iterable[str]) -> list[str]:
    """Resolve requested paths to committed leaf paths.

    A request names a leaf or a subtree; a subtree expands to every committed
    leaf under it. Unknown requests raise FieldNotFoundError before anything
    is changed.
    """

    resolved: set[str] = set()
    missing: list[str] = []
    for req in requested:
        if req in commitments:
            resolved.add(req)
            continue
        under = [p for p in commitments if p.startswith(req + ".") or p.startswith(req + "[")]
        if not req or not under:
            missing.append(req)
            continue
        resolved.update(under)
    if missing:
        raise FieldNotFoundError(f"fields not found in commitments: {', '.join(repr(m) for m in missing)}")
    return sorted(resolved)


def obfuscate_fields(
    document: dict[str, Any],
    fields: Iterable[str],
    *,
    registry: SchemaRegistry | None = None,
) -> dict[str, Any]:
    """Return a copy of ``document`` with ``fields`` redacted.

    The input is never mutated. Already-redacted fields are left as they are.
    When a registry is given, redacting a mandatory-disclosure field of the
    document's schema raises SchemaError.
    """

    commitments = document.get(FIELD_COMMITMENTS)
    if not isinstance(commitments, dict) or not commitments:
        raise FieldNotFoundError("document has no field commitments (not issued?)")

    paths = expand_paths(commitments, list(fields))

    if registry is not None:
        version = document.get("schemaVersion")
        entry = registry.get(version) if isinstance(version, str) else None
        if entry is None:
            raise SchemaError("document has no schemaVersion")
        blocked = [p for p in paths if entry.is_mandatory(p)]
        if blocked:
            raise SchemaError(
                f"mandatory disclosure fields cannot be redacted: {', '.join(blocked)}",
                issues=[SchemaIssue(path=p, message="mandatory disclosure") for p in blocked],
            )

    out = copy.deepcopy(document)
    out_commitments = out[FIELD_COMMITMENTS]
    changed = 0
    for path in paths:
        entry_obj = out_commitments[path]
        if not isinstance(entry_obj, dict) or "hash" not in entry_obj:
            raise FieldNotFoundError(f"malformed commitment for {path}")
        if "salt" not in entry_obj:
            continue
        commitment = str(entry_obj["hash"])
        try:
            _set_value(out, path, commitment)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise FieldNotFoundError(f"field {path} is committed but absent from the body") from e
        out_commitments[path] = {"hash": commitment}
        changed += 1

    logger.debug("redacted %d field(s), %d already redacted", changed, len(paths) - changed)
    return out


def obfuscated_paths(document: dict[str, Any]) -> list[str]:
    return redacted_paths(document)


def redact_file(
    source: Path,
    destination: Path,
    fields: Sequence[str],
    schema_version: str | None,
    registry: SchemaRegistry,
    *,
    keyring: Keyring | None = None,
) -> dict[str, Any]:
    """Redact ``fields`` of the document at ``source`` and write it to ``destination``.

    Nothing is written unless the redacted document still passes schema and
    signature verification; the failure is raised instead.
    """

    document = load_json_document(source)
    redacted = obfuscate_fields(document, fields, registry=registry)
    result = verify_document(redacted, schema_version, registry, keyring=keyring, source=source.name)
    if not result.ok:
        logger.error("privacy filtering caused document to fail verification: %s", result.message)
        raise error_for_category(result.category, result.message, source=source.name)

    atomic_write_json(destination, redacted)
    logger.debug("obfuscated document saved to %s", destination)
    return redacted
