"""Salted per-field commitments and the per-document leaf hash.

    commitment(path, value) = H(salt || 0x00 || utf8(path) || 0x00 || canonical_json(value))
    leaf_hash               = H(commitment hashes as raw bytes, ordered by path)

The leaf hash never sees a cleartext value, so replacing a value with its
commitment hash (redaction) leaves it unchanged.
"""

from __future__ import annotations

import copy
import logging
import secrets
from dataclasses import dataclass
from typing import Any

from certbatch.core.errors import ProofError, SchemaError
from certbatch.core.hash import digest_bytes, is_hex_sha256, sha256_concat
from certbatch.core.json_canon import canonical_value_bytes
from certbatch.core.schema import SchemaIssue, index_path, join_path
from certbatch.protocol.document import (
    FIELD_COMMITMENTS,
    document_body,
    reserved_keys_in,
)
from certbatch.protocol.registry import SchemaRegistry, require_valid_document


logger = logging.getLogger(__name__)

SALT_BYTES = 32
FIELD_DELIMITER = b"\x00"


@dataclass(frozen=True)
class FieldCommitment:
    path: str
    salt: str | None  # hex; None once redacted
    hash: str

    def to_dict(self) -> dict[str, str]:
        if self.salt is None:
            return {"hash": self.hash}
        return {"salt": self.salt, "hash": self.hash}


@dataclass(frozen=True)
class HashedDocument:
    body: dict[str, Any]
    commitments: dict[str, FieldCommitment]
    leaf_hash: str

    def commitments_dict(self) -> dict[str, dict[str, str]]:
        return {p: self.commitments[p].to_dict() for p in sorted(self.commitments)}


def flatten_fields(body: Any, prefix: str = "") -> dict[str, Any]:
    """Map every leaf field path to its value.

    Objects recurse with ``a.b``, arrays with ``a[0]``; scalars, null and
    empty containers are leaves.
    """

    out: dict[str, Any] = {}
    if isinstance(body, dict) and body:
        for k in sorted(body.keys()):
            if not isinstance(k, str) or not k:
                raise SchemaError(f"field names must be non-empty strings (at {prefix or '$'})")
            if any(c in k for c in ".[]"):
                raise SchemaError(f"field name {k!r} must not contain '.', '[' or ']'")
            out.update(flatten_fields(body[k], join_path(prefix, k)))
    elif isinstance(body, list) and body:
        for i, item in enumerate(body):
            out.update(flatten_fields(item, index_path(prefix, i)))
    else:
        if not prefix:
            raise SchemaError("document body has no fields")
        out[prefix] = body
    return out


def new_salt() -> str:
    return secrets.token_bytes(SALT_BYTES).hex()


def commitment_hash(path: str, value: Any, salt: str) -> str:
    salt_raw = bytes.fromhex(salt)
    if len(salt_raw) != SALT_BYTES:
        raise ValueError(f"salt must be {SALT_BYTES} bytes")
    try:
        value_bytes = canonical_value_bytes(value)
    except ValueError as e:
        raise SchemaError(f"field {path} is not JSON-serializable: {e}") from e
    return sha256_concat(
        salt_raw,
        FIELD_DELIMITER,
        path.encode("utf-8", errors="strict"),
        FIELD_DELIMITER,
        value_bytes,
    )


def commit_field(path: str, value: Any, salt: str | None = None) -> FieldCommitment:
    s = salt if salt is not None else new_salt()
    return FieldCommitment(path=path, salt=s, hash=commitment_hash(path, value, s))


def compute_leaf_hash(commitments: dict[str, Any]) -> str:
    """Leaf hash over commitment hashes sorted by field path.

    Accepts either FieldCommitment values or their dict form.
    """

    if not commitments:
        raise ProofError("cannot compute a leaf hash without commitments")
    parts: list[bytes] = []
    for path in sorted(commitments):
        c = commitments[path]
        h = c.hash if isinstance(c, FieldCommitment) else c.get("hash")
        parts.append(digest_bytes(h))
    return sha256_concat(*parts)


def hash_document(
    raw: dict[str, Any],
    schema_version: str,
    registry: SchemaRegistry,
    *,
    issuer_public_key: str | None = None,
    source: str | None = None,
) -> HashedDocument:
    """Commit every field of a raw document and compute its leaf hash.

    ``schemaVersion`` is stamped when absent and ``issuer.publicKey`` when a
    signing key is supplied; both are then committed like any other field.
    Raises SchemaError when the body does not satisfy the selected schema.
    """

    if not isinstance(raw, dict):
        raise SchemaError("document must be a JSON object", source=source)

    reserved = reserved_keys_in(raw)
    if reserved:
        raise SchemaError(
            f"raw document uses reserved keys: {', '.join(reserved)}",
            issues=[SchemaIssue(path=k, message="reserved key") for k in reserved],
            source=source,
        )

    body = copy.deepcopy(document_body(raw))
    body.setdefault("schemaVersion", schema_version)

    if issuer_public_key is not None:
        signing_key = issuer_public_key.lower()
        issuer = body.get("issuer")
        if isinstance(issuer, dict):
            declared = issuer.get("publicKey")
            if declared is not None and (not isinstance(declared, str) or declared.lower() != signing_key):
                raise SchemaError(
                    "issuer.publicKey does not match the signing key",
                    issues=[SchemaIssue(path="issuer.publicKey", message="signing key mismatch")],
                    source=source,
                )
            issuer["publicKey"] = signing_key

    require_valid_document(body, schema_version, registry, source=source)

    try:
        fields = flatten_fields(body)
    except SchemaError as e:
        raise SchemaError(e.message, source=source) from e

    commitments = {path: commit_field(path, value) for path, value in fields.items()}
    leaf = compute_leaf_hash(commitments)
    logger.debug("hashed %s: %d fields, leaf %s", source or "document", len(commitments), leaf)
    return HashedDocument(body=body, commitments=commitments, leaf_hash=leaf)


def recompute_leaf_hash(document: dict[str, Any]) -> str:
    """Recompute the leaf hash of a decorated document from its body and commitments.

    Cleartext fields must match their salted commitment; redacted fields must
    hold exactly their commitment hash. The commitment set must cover the
    body's leaf paths exactly.
    """

    commitments = document.get(FIELD_COMMITMENTS)
    if not isinstance(commitments, dict) or not commitments:
        raise ProofError("fieldCommitments missing/empty")

    try:
        fields = flatten_fields(document_body(document))
    except SchemaError as e:
        raise ProofError(f"document body cannot be flattened: {e.message}") from e

    uncommitted = sorted(set(fields) - set(commitments))
    if uncommitted:
        raise ProofError(f"fields without commitment: {', '.join(uncommitted[:5])}")
    missing = sorted(set(commitments) - set(fields))
    if missing:
        raise ProofError(f"committed fields missing from body: {', '.join(missing[:5])}")

    for path in sorted(commitments):
        entry = commitments[path]
        if not isinstance(entry, dict) or not is_hex_sha256(entry.get("hash")):
            raise ProofError(f"malformed commitment for {path}")
        expected = str(entry["hash"]).lower()
        salt = entry.get("salt")
        if salt is None:
            if fields[path] != expected:
                raise ProofError(f"redacted field {path} does not hold its commitment hash")
            continue
        if not is_hex_sha256(salt):
            raise ProofError(f"malformed salt for {path}")
        try:
            recomputed = commitment_hash(path, fields[path], str(salt))
        except SchemaError as e:
            raise ProofError(e.message) from e
        if recomputed != expected:
            raise ProofError(f"field {path} does not match its commitment")

    return compute_leaf_hash(commitments)
