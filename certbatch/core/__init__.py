"""Lowest-level certbatch utilities.

Dependency direction rules:
- certbatch.core must not import certbatch.engine, certbatch.protocol or certbatch.cli
"""

from certbatch.core.errors import (
	CertbatchError,
	DocumentIOError,
	EmptyBatchError,
	FieldNotFoundError,
	ProofError,
	SchemaError,
	SignatureError,
)
from certbatch.core.hash import digest_bytes, is_hex_sha256, sha256_bytes, with_0x
from certbatch.core.json_canon import canonical_value_bytes
from certbatch.core.schema import SchemaIssue, parse_rfc3339, validate_schema

__all__ = [
	"CertbatchError",
	"DocumentIOError",
	"EmptyBatchError",
	"FieldNotFoundError",
	"ProofError",
	"SchemaError",
	"SchemaIssue",
	"SignatureError",
	"canonical_value_bytes",
	"digest_bytes",
	"is_hex_sha256",
	"parse_rfc3339",
	"sha256_bytes",
	"validate_schema",
	"with_0x",
]
