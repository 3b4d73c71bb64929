"""End-to-end batch issuance tests.

These tests verify:
- A/B/C batch round trip: every issued document verifies against one root
- Leaves are ordered by source file name
- One failing raw document aborts the batch and nothing is written
- Empty input is rejected before any output exists
- A failed write leaves the output directory as it was
- Single-document batches sign the leaf hash directly
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from certbatch.core.errors import DocumentIOError, EmptyBatchError, SchemaError
from certbatch.core.hash import with_0x
from certbatch.engine.issue import issue_batch, issue_document, issue_documents
from certbatch.engine.merkle import build_merkle_tree
from certbatch.engine.signature import public_key_hex
from certbatch.engine.verify import verify_directory, verify_document
from certbatch.protocol.document import FIELD_COMMITMENTS, MERKLE_ROOT, PROOF, SIGNATURE, TARGET_HASH
from certbatch.protocol.registry import get_builtin_registry


V1 = "certbatch/1.0"
V2 = "certbatch/2.0"


def _key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(bytes.fromhex("11" * 32))


def _raw(n: int, name: str) -> dict:
    return {
        "id": f"cert-{n:03d}",
        "name": "Diploma in Applied Science",
        "issuedOn": "2024-05-01T09:00:00Z",
        "issuer": {"id": "did:example:school", "name": "Example School", "url": "https://school.example"},
        "recipient": {"name": name, "email": f"{name.lower()}@example.org"},
        "transcript": [{"name": "Algebra", "grade": "A", "score": 90 + n}],
    }


def _write_raw(raw_dir: Path, docs: dict[str, dict]) -> None:
    raw_dir.mkdir(parents=True, exist_ok=True)
    for fname, doc in docs.items():
        (raw_dir / fname).write_text(json.dumps(doc), encoding="utf-8")


def _abc(raw_dir: Path) -> None:
    _write_raw(raw_dir, {"a.json": _raw(1, "Alice"), "b.json": _raw(2, "Bob"), "c.json": _raw(3, "Carol")})


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------

def test_abc_round_trip(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    _abc(raw_dir)

    batch = issue_batch(raw_dir, out_dir, V2, registry, _key(), max_workers=4)

    assert [d.name for d in batch.documents] == ["a.json", "b.json", "c.json"]
    assert sorted(p.name for p in out_dir.iterdir()) == ["a.json", "b.json", "c.json"]
    assert batch.root_0x == with_0x(batch.merkle_root)

    # Leaves in file-name order rebuild the same root.
    tree = build_merkle_tree([d.target_hash for d in batch.documents])
    assert tree.root == batch.merkle_root

    for d in batch.documents:
        written = json.loads((out_dir / d.name).read_text(encoding="utf-8"))
        assert written == d.document
        assert written[MERKLE_ROOT] == batch.merkle_root
        assert written[TARGET_HASH] == d.target_hash
        assert len(written[PROOF]) == 2
        assert written["issuer"]["publicKey"] == public_key_hex(_key())
        assert written["schemaVersion"] == V2
        assert all("salt" in c for c in written[FIELD_COMMITMENTS].values())

    report = verify_directory(out_dir, None, registry)
    assert report.ok
    assert len(report.results) == 3
    assert report.merkle_roots == [batch.merkle_root]


def test_output_is_pretty_printed_with_trailing_newline(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "out"
    _abc(raw_dir)
    issue_batch(raw_dir, out_dir, V1, registry, _key(), max_workers=1)

    text = (out_dir / "a.json").read_text(encoding="utf-8")
    assert text.endswith("}\n")
    assert '\n  "fieldCommitments": {' in text


def test_tampering_one_document_fails_only_that_document(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    _abc(raw_dir)
    issue_batch(raw_dir, out_dir, V2, registry, _key())

    p = out_dir / "b.json"
    doc = json.loads(p.read_text(encoding="utf-8"))
    doc["recipient"]["name"] = "Mallory"
    p.write_text(json.dumps(doc), encoding="utf-8")

    report = verify_directory(out_dir, None, registry)
    assert not report.ok
    assert [r.source for r in report.failed] == ["b.json"]
    assert report.failed[0].category == "ProofError"
    assert [r.ok for r in report.results] == [True, False, True]


def test_forged_root_fails_signature(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    batch = issue_documents([("a.json", _raw(1, "Alice")), ("b.json", _raw(2, "Bob"))], V1, registry, _key())
    doc = dict(batch.documents[0].document)
    other = issue_documents([("x.json", _raw(9, "Eve")), ("y.json", _raw(8, "Ed"))], V1, registry,
                            Ed25519PrivateKey.from_private_bytes(bytes.fromhex("33" * 32)))
    doc[SIGNATURE] = other.documents[0].document[SIGNATURE]

    result = verify_document(doc, V1, registry)
    assert not result.ok
    assert [c.check_id for c in result.failures] == ["signature"]


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

def test_invalid_document_aborts_batch_and_writes_nothing(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    bad = _raw(2, "Bob")
    del bad["issuer"]
    _write_raw(raw_dir, {"a.json": _raw(1, "Alice"), "b.json": bad, "c.json": _raw(3, "Carol")})

    with pytest.raises(SchemaError) as ei:
        issue_batch(raw_dir, out_dir, V1, registry, _key(), max_workers=4)
    assert ei.value.source == "b.json"
    assert not out_dir.exists() or list(out_dir.iterdir()) == []


def test_unparsable_document_aborts_batch(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    _write_raw(raw_dir, {"a.json": _raw(1, "Alice")})
    (raw_dir / "b.json").write_text("{broken", encoding="utf-8")

    with pytest.raises(DocumentIOError):
        issue_batch(raw_dir, out_dir, V1, registry, _key())
    assert not out_dir.exists() or list(out_dir.iterdir()) == []


def test_deeply_nested_document_aborts_batch(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    _write_raw(raw_dir, {"a.json": _raw(1, "Alice"), "c.json": _raw(3, "Carol")})
    (raw_dir / "b.json").write_text("[" * 100000 + "]" * 100000, encoding="utf-8")

    with pytest.raises(DocumentIOError) as ei:
        issue_batch(raw_dir, out_dir, V1, registry, _key(), max_workers=2)
    assert ei.value.source == "b.json"
    assert not out_dir.exists()


def test_non_file_output_target_writes_nothing(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    _abc(raw_dir)
    (out_dir / "b.json").mkdir(parents=True)

    with pytest.raises(DocumentIOError) as ei:
        issue_batch(raw_dir, out_dir, V1, registry, _key())
    assert ei.value.source == "b.json"
    assert [p.name for p in out_dir.iterdir()] == ["b.json"]
    assert (out_dir / "b.json").is_dir()


def test_failed_move_restores_previous_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    _abc(raw_dir)
    out_dir.mkdir()
    (out_dir / "a.json").write_text("previous\n", encoding="utf-8")

    real_replace = os.replace

    def failing_replace(src, dst):
        if Path(dst) == out_dir / "b.json":
            raise OSError("disk full")
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", failing_replace)
    with pytest.raises(DocumentIOError):
        issue_batch(raw_dir, out_dir, V1, registry, _key(), max_workers=1)
    monkeypatch.undo()

    assert sorted(p.name for p in out_dir.iterdir()) == ["a.json"]
    assert (out_dir / "a.json").read_text(encoding="utf-8") == "previous\n"


def test_empty_batch_writes_nothing(tmp_path: Path) -> None:
    registry = get_builtin_registry()
    raw_dir, out_dir = tmp_path / "raw", tmp_path / "batched"
    raw_dir.mkdir()
    (raw_dir / "notes.txt").write_text("not a document", encoding="utf-8")

    with pytest.raises(EmptyBatchError):
        issue_batch(raw_dir, out_dir, V1, registry, _key())
    assert not out_dir.exists()


def test_missing_raw_dir(tmp_path: Path) -> None:
    with pytest.raises(DocumentIOError):
        issue_batch(tmp_path / "nope", tmp_path / "out", V1, get_builtin_registry(), _key())


def test_issue_documents_rejects_empty_and_duplicate_names() -> None:
    registry = get_builtin_registry()
    with pytest.raises(EmptyBatchError):
        issue_documents([], V1, registry, _key())
    with pytest.raises(ValueError):
        issue_documents([("a", _raw(1, "A")), ("a", _raw(2, "B"))], V1, registry, _key())


# ---------------------------------------------------------------------------
# Single document and worker counts
# ---------------------------------------------------------------------------

def test_single_document_signs_leaf_directly() -> None:
    registry = get_builtin_registry()
    doc = issue_document(_raw(1, "Alice"), V1, registry, _key())
    assert doc[PROOF] == []
    assert doc[MERKLE_ROOT] == doc[TARGET_HASH]
    assert verify_document(doc, V1, registry).ok


def test_worker_count_does_not_change_structure() -> None:
    registry = get_builtin_registry()
    named = [(f"{i:02d}.json", _raw(i, f"Student{i}")) for i in range(9)]
    seq = issue_documents(named, V1, registry, _key(), max_workers=1)
    par = issue_documents(list(reversed(named)), V1, registry, _key(), max_workers=8)

    assert [d.name for d in seq.documents] == [d.name for d in par.documents]
    assert [len(d.proof) for d in seq.documents] == [len(d.proof) for d in par.documents]
    for batch in (seq, par):
        assert all(verify_document(d.document, V1, registry).ok for d in batch.documents)
