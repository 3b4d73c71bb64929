"""Document and batch verification.

A document verifies when all four checks pass:

    schema       body matches its schema version (redacted leaves tolerated)
    commitments  cleartext fields match their commitments; leaf hash == targetHash
    proof        targetHash folds through proof to merkleRoot
    signature    issuer signature over merkleRoot is valid

Document faults never raise out of this module; they are reported as
CheckResult values so a batch run always covers every document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from certbatch.core.errors import CertbatchError, DocumentIOError, ProofError, SchemaError, SignatureError
from certbatch.core.files import list_document_files, load_json_document
from certbatch.core.hash import digest_bytes
from certbatch.core.parallel import parallel_map
from certbatch.engine.hasher import recompute_leaf_hash
from certbatch.engine.signature import IssuerIdentity, Keyring, verify_merkle_proof, verify_signature
from certbatch.protocol.document import (
    MERKLE_ROOT,
    PROOF,
    SIGNATURE,
    TARGET_HASH,
    envelope_issues,
)
from certbatch.protocol.registry import SchemaRegistry, validate_document


logger = logging.getLogger(__name__)

Status = str  # "PASS" | "FAIL"

CHECK_IDS = ("schema", "commitments", "proof", "signature")


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    status: Status
    message: str
    category: str | None = None


@dataclass(frozen=True)
class DocumentResult:
    source: str
    checks: list[CheckResult] = field(default_factory=list)
    target_hash: str | None = None
    merkle_root: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.checks) and all(c.status == "PASS" for c in self.checks)

    @property
    def failures(self) -> list[CheckResult]:
        return [c for c in self.checks if c.status == "FAIL"]

    @property
    def category(self) -> str | None:
        fails = self.failures
        return fails[0].category if fails else None

    @property
    def message(self) -> str:
        fails = self.failures
        if not fails:
            return "verified"
        return "; ".join(f"{c.check_id}: {c.message}" for c in fails)


@dataclass(frozen=True)
class BatchReport:
    results: list[DocumentResult]

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> list[DocumentResult]:
        return [r for r in self.results if not r.ok]

    @property
    def merkle_roots(self) -> list[str]:
        return sorted({r.merkle_root for r in self.results if r.merkle_root})


def _fail(check_id: str, err: CertbatchError) -> CheckResult:
    return CheckResult(check_id=check_id, status="FAIL", message=err.message, category=err.category)


def _pass(check_id: str, message: str) -> CheckResult:
    return CheckResult(check_id=check_id, status="PASS", message=message)


def verify_document(
    document: Any,
    schema_version: str | None,
    registry: SchemaRegistry,
    *,
    keyring: Keyring | None = None,
    source: str = "<document>",
) -> DocumentResult:
    """Run every check on one decorated document.

    ``schema_version`` None means the version the document declares.
    """

    if not isinstance(document, dict):
        err = SchemaError("document must be a JSON object")
        return DocumentResult(source=source, checks=[_fail(c, err) for c in CHECK_IDS])

    checks: list[CheckResult] = []

    envelope = envelope_issues(document)
    version = schema_version if schema_version is not None else document.get("schemaVersion")

    # schema
    try:
        if not isinstance(version, str):
            raise SchemaError("document declares no schemaVersion")
        issues = validate_document(document, version, registry)
        if issues:
            raise SchemaError(
                "; ".join(f"{i.path}: {i.message}" for i in issues[:5]),
                issues=issues,
            )
        checks.append(_pass("schema", f"valid {version}"))
    except SchemaError as e:
        checks.append(_fail("schema", e))

    if envelope:
        err = SchemaError(
            "decoration malformed: " + "; ".join(f"{i.path}: {i.message}" for i in envelope[:5]),
            issues=envelope,
        )
        checks.extend(_fail(c, err) for c in ("commitments", "proof", "signature"))
        return DocumentResult(source=source, checks=checks)

    target = str(document[TARGET_HASH]).lower()
    root = str(document[MERKLE_ROOT]).lower()

    # commitments
    try:
        leaf = recompute_leaf_hash(document)
        if leaf != target:
            raise ProofError(f"recomputed leaf hash {leaf} != targetHash {target}")
        checks.append(_pass("commitments", "fields match commitments"))
    except ProofError as e:
        checks.append(_fail("commitments", e))

    # proof
    if verify_merkle_proof(target, document[PROOF], root):
        checks.append(_pass("proof", f"proof folds to {root}"))
    else:
        checks.append(_fail("proof", ProofError("proof does not fold to merkleRoot")))

    # signature
    issuer = IssuerIdentity.from_document(document)
    if verify_signature(digest_bytes(root), document[SIGNATURE], issuer, keyring=keyring):
        checks.append(_pass("signature", f"signed by {issuer.id}"))
    else:
        checks.append(
            _fail("signature", SignatureError(f"issuer signature over merkleRoot is invalid (issuer {issuer.id!r})"))
        )

    return DocumentResult(source=source, checks=checks, target_hash=target, merkle_root=root)


def is_verified(
    document: Any,
    schema_version: str | None,
    registry: SchemaRegistry,
    *,
    keyring: Keyring | None = None,
) -> bool:
    return verify_document(document, schema_version, registry, keyring=keyring).ok


def verify_file(
    path: Path,
    schema_version: str | None,
    registry: SchemaRegistry,
    *,
    keyring: Keyring | None = None,
) -> DocumentResult:
    try:
        document = load_json_document(path)
    except DocumentIOError as e:
        return DocumentResult(source=path.name, checks=[_fail("io", e)])
    return verify_document(document, schema_version, registry, keyring=keyring, source=path.name)


def verify_batch(
    sources: Iterable[Path],
    schema_version: str | None,
    registry: SchemaRegistry,
    *,
    keyring: Keyring | None = None,
    max_workers: int | None = None,
) -> BatchReport:
    """Verify every file independently and concurrently; the report covers all of them."""

    paths = list(sources)

    def check(p: Path) -> DocumentResult:
        return verify_file(p, schema_version, registry, keyring=keyring)

    results = parallel_map(check, paths, max_workers=max_workers)
    for r in results:
        if r.ok:
            logger.info("%s: verified", r.source)
        else:
            logger.error("%s: %s [%s]", r.source, r.message, r.category)
    return BatchReport(results=results)


def verify_directory(
    directory: Path,
    schema_version: str | None,
    registry: SchemaRegistry,
    *,
    keyring: Keyring | None = None,
    max_workers: int | None = None,
) -> BatchReport:
    paths = list_document_files(directory)
    if not paths:
        logger.warning("no documents found in %s", directory)
    return verify_batch(paths, schema_version, registry, keyring=keyring, max_workers=max_workers)
