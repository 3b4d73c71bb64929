"""Error taxonomy shared by issuance, verification and redaction.

Every error carries a stable ``category`` string (the class name) so that
per-document results can report the kind of failure without holding on to the
exception object.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from certbatch.core.schema import SchemaIssue


class CertbatchError(Exception):
    category = "CertbatchError"

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


class SchemaError(CertbatchError):
    """Structural mismatch against the declared or selected schema version."""

    category = "SchemaError"

    def __init__(self, message: str, *, issues: Sequence["SchemaIssue"] = (), source: str | None = None) -> None:
        super().__init__(message, source=source)
        self.issues = list(issues)


class SignatureError(CertbatchError):
    """Missing, malformed or non-verifying issuer signature."""

    category = "SignatureError"


class ProofError(CertbatchError):
    """Commitments or Merkle proof do not fold to the claimed values."""

    category = "ProofError"


class EmptyBatchError(CertbatchError):
    category = "EmptyBatchError"


class FieldNotFoundError(CertbatchError):
    """Obfuscation target path is absent from the document's commitments."""

    category = "FieldNotFoundError"


class DocumentIOError(CertbatchError):
    """Document file missing, unreadable, unparsable as JSON, or unwritable."""

    category = "IOError"


_BY_CATEGORY: dict[str, type[CertbatchError]] = {
    cls.category: cls
    for cls in (SchemaError, SignatureError, ProofError, EmptyBatchError, FieldNotFoundError, DocumentIOError)
}


def error_for_category(category: str | None, message: str, *, source: str | None = None) -> CertbatchError:
    """Rebuild an exception from a reported result category."""

    cls = _BY_CATEGORY.get(category or "", CertbatchError)
    return cls(message, source=source)
