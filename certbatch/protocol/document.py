"""Decorated document layout.

A decorated document is a JSON object whose body (every key except the
reserved decoration keys below) is the certificate itself. Issuance adds:

    fieldCommitments  {path: {"salt": hex, "hash": hex}}   salt absent once redacted
    targetHash        leaf hash over the commitment hashes
    proof             [{"sibling": hex, "position": "left" | "right"}, ...]
    merkleRoot        batch root the proof folds to
    signature         {"type": "ed25519", "suite": SUITE, "value": base64}
"""

from __future__ import annotations

from typing import Any

from certbatch.core.schema import SchemaIssue, validate_schema


SUITE = "certbatch-sha256-ed25519/1"
SIGNATURE_TYPE = "ed25519"

FIELD_COMMITMENTS = "fieldCommitments"
TARGET_HASH = "targetHash"
PROOF = "proof"
MERKLE_ROOT = "merkleRoot"
SIGNATURE = "signature"

RESERVED_KEYS = frozenset({FIELD_COMMITMENTS, TARGET_HASH, PROOF, MERKLE_ROOT, SIGNATURE})

_HEX64 = {"type": "string", "pattern": "^[0-9a-f]{64}$"}

ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": [FIELD_COMMITMENTS, TARGET_HASH, PROOF, MERKLE_ROOT, SIGNATURE],
    "properties": {
        FIELD_COMMITMENTS: {"type": "object"},
        TARGET_HASH: _HEX64,
        PROOF: {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["sibling", "position"],
                "properties": {
                    "sibling": _HEX64,
                    "position": {"enum": ["left", "right"]},
                },
                "additionalProperties": False,
            },
        },
        MERKLE_ROOT: _HEX64,
        SIGNATURE: {
            "type": "object",
            "required": ["type", "value"],
            "properties": {
                "type": {"type": "string"},
                "suite": {"type": "string"},
                "value": {"type": "string", "minLength": 1},
            },
        },
    },
}

COMMITMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["hash"],
    "properties": {
        "salt": _HEX64,
        "hash": _HEX64,
    },
    "additionalProperties": False,
}


def document_body(document: dict[str, Any]) -> dict[str, Any]:
    """Return the certificate body: the document without its decoration keys."""

    return {k: v for k, v in document.items() if k not in RESERVED_KEYS}


def reserved_keys_in(raw: dict[str, Any]) -> list[str]:
    return sorted(k for k in raw.keys() if k in RESERVED_KEYS)


def redacted_paths(document: dict[str, Any]) -> list[str]:
    """Field paths whose salt has been discarded, in sorted order."""

    commitments = document.get(FIELD_COMMITMENTS)
    if not isinstance(commitments, dict):
        return []
    return sorted(
        path
        for path, entry in commitments.items()
        if isinstance(entry, dict) and "salt" not in entry
    )


def envelope_issues(document: dict[str, Any]) -> list[SchemaIssue]:
    """Structural check of the decoration keys only; the body is checked against its schema."""

    decoration = {k: document[k] for k in RESERVED_KEYS if k in document}
    issues = validate_schema(decoration, ENVELOPE_SCHEMA, root_schema=ENVELOPE_SCHEMA)

    commitments = document.get(FIELD_COMMITMENTS)
    if isinstance(commitments, dict):
        for path in sorted(commitments.keys()):
            issues.extend(
                validate_schema(
                    commitments[path],
                    COMMITMENT_SCHEMA,
                    root_schema=COMMITMENT_SCHEMA,
                    path=f"{FIELD_COMMITMENTS}[{path!r}]",
                )
            )
    return issues
