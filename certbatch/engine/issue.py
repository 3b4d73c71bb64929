"""Batch issuance.

    phase 1  parallel: load + commit every raw document      -> per-document outcome
    join     any failed outcome aborts the batch (nothing computed, nothing written)
    phase 2  sequential: Merkle tree over leaf hashes in canonical order, sign root
    phase 3  parallel: decorate each document with its proof, self-verify, stage
    commit   staged files are moved into the output directory only when all staged
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from certbatch.core.errors import CertbatchError, DocumentIOError, EmptyBatchError, ProofError
from certbatch.core.files import atomic_write_json, list_document_files, load_json_document
from certbatch.core.hash import with_0x
from certbatch.core.parallel import parallel_map
from certbatch.engine.hasher import HashedDocument, hash_document
from certbatch.engine.merkle import ProofStep, build_merkle_tree
from certbatch.engine.signature import public_key_hex, sign_root
from certbatch.engine.verify import verify_document
from certbatch.protocol.document import FIELD_COMMITMENTS, MERKLE_ROOT, PROOF, SIGNATURE, TARGET_HASH
from certbatch.protocol.registry import SchemaRegistry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HashOutcome:
    """Per-document result of phase 1; exactly one of ``hashed``/``error`` is set."""

    name: str
    hashed: HashedDocument | None = None
    error: CertbatchError | None = None


@dataclass(frozen=True)
class IssuedDocument:
    name: str
    document: dict[str, Any]
    target_hash: str
    proof: list[ProofStep]


@dataclass(frozen=True)
class IssuedBatch:
    merkle_root: str
    documents: list[IssuedDocument]

    @property
    def root_0x(self) -> str:
        return with_0x(self.merkle_root)


def decorate(hashed: HashedDocument, proof: Sequence[ProofStep], root: str, signature: dict[str, str]) -> dict[str, Any]:
    out = dict(hashed.body)
    out[FIELD_COMMITMENTS] = hashed.commitments_dict()
    out[TARGET_HASH] = hashed.leaf_hash
    out[PROOF] = [step.to_dict() for step in proof]
    out[MERKLE_ROOT] = root
    out[SIGNATURE] = dict(signature)
    return out


def _abort_on_failures(outcomes: Sequence[HashOutcome]) -> None:
    errors = [o.error for o in outcomes if o.error is not None]
    if not errors:
        return
    for err in errors:
        logger.error("%s [%s]", err, err.category)
    logger.error("batch aborted: %d of %d document(s) failed", len(errors), len(outcomes))
    raise errors[0]


def _build_batch(
    outcomes: Sequence[HashOutcome],
    schema_version: str,
    registry: SchemaRegistry,
    private_key: Ed25519PrivateKey,
    max_workers: int | None,
) -> IssuedBatch:
    if not outcomes:
        raise EmptyBatchError("no documents supplied to batch issuance")
    _abort_on_failures(outcomes)

    hashed = [o.hashed for o in outcomes if o.hashed is not None]
    tree = build_merkle_tree([h.leaf_hash for h in hashed])
    signature = sign_root(tree.root, private_key)
    logger.info("batch of %d document(s), merkle root %s", tree.leaf_count, with_0x(tree.root))

    def finish(i: int) -> IssuedDocument:
        proof = tree.proof(i)
        doc = decorate(hashed[i], proof, tree.root, signature)
        result = verify_document(doc, schema_version, registry, source=outcomes[i].name)
        if not result.ok:
            raise ProofError(f"issued document fails self-verification: {result.message}", source=outcomes[i].name)
        return IssuedDocument(name=outcomes[i].name, document=doc, target_hash=hashed[i].leaf_hash, proof=proof)

    documents = parallel_map(finish, range(len(hashed)), max_workers=max_workers)
    return IssuedBatch(merkle_root=tree.root, documents=documents)


def issue_documents(
    named: Sequence[tuple[str, dict[str, Any]]],
    schema_version: str,
    registry: SchemaRegistry,
    private_key: Ed25519PrivateKey,
    *,
    max_workers: int | None = None,
) -> IssuedBatch:
    """Issue in-memory raw documents as one batch.

    ``named`` pairs a unique name with each raw document; leaves are ordered by
    name. A single document yields root == its leaf hash and an empty proof.
    """

    if not named:
        raise EmptyBatchError("no documents supplied to batch issuance")
    names = [n for n, _ in named]
    if len(set(names)) != len(names):
        raise ValueError("document names must be unique within a batch")

    ordered = sorted(named, key=lambda x: x[0])
    pub = public_key_hex(private_key)

    def commit(item: tuple[str, dict[str, Any]]) -> HashOutcome:
        name, raw = item
        try:
            return HashOutcome(name=name, hashed=hash_document(raw, schema_version, registry, issuer_public_key=pub, source=name))
        except CertbatchError as e:
            return HashOutcome(name=name, error=e)

    outcomes = parallel_map(commit, ordered, max_workers=max_workers)
    return _build_batch(outcomes, schema_version, registry, private_key, max_workers)


def issue_document(
    raw: dict[str, Any],
    schema_version: str,
    registry: SchemaRegistry,
    private_key: Ed25519PrivateKey,
) -> dict[str, Any]:
    """Sign a single document on its own: the signature covers its leaf hash directly."""

    batch = issue_documents([("document", raw)], schema_version, registry, private_key, max_workers=1)
    return batch.documents[0].document


def _check_targets(batched_dir: Path, documents: Sequence[IssuedDocument]) -> None:
    for doc in documents:
        target = batched_dir / doc.name
        if target.is_symlink() or (target.exists() and not target.is_file()):
            raise DocumentIOError("output path exists and is not a regular file", source=doc.name)


def _roll_back(batched_dir: Path, new_dir: Path, old_dir: Path, touched: Sequence[str]) -> None:
    for name in reversed(touched):
        target = batched_dir / name
        if not (new_dir / name).exists():
            target.unlink(missing_ok=True)
        if (old_dir / name).exists():
            os.replace(str(old_dir / name), str(target))


def _write_all(batched_dir: Path, documents: Sequence[IssuedDocument], max_workers: int | None) -> None:
    batched_dir.mkdir(parents=True, exist_ok=True)
    _check_targets(batched_dir, documents)
    staging = Path(tempfile.mkdtemp(prefix=".certbatch-staging-", dir=str(batched_dir)))
    new_dir, old_dir = staging / "new", staging / "old"
    try:
        new_dir.mkdir()
        old_dir.mkdir()

        def stage(doc: IssuedDocument) -> DocumentIOError | None:
            try:
                atomic_write_json(new_dir / doc.name, doc.document)
            except DocumentIOError as e:
                return e
            return None

        errors = [e for e in parallel_map(stage, documents, max_workers=max_workers) if e is not None]
        if errors:
            raise errors[0]

        # previous files are parked in old_dir so a failed move can put them back
        touched: list[str] = []
        try:
            for doc in documents:
                target = batched_dir / doc.name
                touched.append(doc.name)
                if target.exists():
                    os.replace(str(target), str(old_dir / doc.name))
                os.replace(str(new_dir / doc.name), str(target))
        except OSError:
            _roll_back(batched_dir, new_dir, old_dir, touched)
            raise
    except OSError as e:
        raise DocumentIOError(f"cannot write batch output: {e}") from e
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def issue_batch(
    raw_dir: Path,
    batched_dir: Path,
    schema_version: str,
    registry: SchemaRegistry,
    private_key: Ed25519PrivateKey,
    *,
    max_workers: int | None = None,
) -> IssuedBatch:
    """Issue every ``*.json`` document in ``raw_dir`` as one batch into ``batched_dir``.

    Either every decorated document is written and the batch is returned, or
    an error is raised and nothing is written.
    """

    paths = list_document_files(raw_dir)
    if not paths:
        raise EmptyBatchError(f"no documents found in {raw_dir}")
    logger.debug("issuing %d document(s) from %s", len(paths), raw_dir)

    pub = public_key_hex(private_key)

    def commit(p: Path) -> HashOutcome:
        try:
            raw = load_json_document(p)
            return HashOutcome(name=p.name, hashed=hash_document(raw, schema_version, registry, issuer_public_key=pub, source=p.name))
        except CertbatchError as e:
            return HashOutcome(name=p.name, error=e)

    outcomes = parallel_map(commit, paths, max_workers=max_workers)
    batch = _build_batch(outcomes, schema_version, registry, private_key, max_workers)
    _write_all(batched_dir, batch.documents, max_workers)
    for doc in batch.documents:
        logger.debug("wrote %s", batched_dir / doc.name)
    return batch
