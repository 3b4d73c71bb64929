"""Issuance, verification and redaction engine.

Dependency direction rules:
- certbatch.engine may import certbatch.core and certbatch.protocol, never certbatch.cli
"""

from certbatch.engine.hasher import FieldCommitment, HashedDocument, compute_leaf_hash, hash_document
from certbatch.engine.issue import IssuedBatch, issue_batch, issue_document, issue_documents
from certbatch.engine.merkle import MerkleTree, ProofStep, build_merkle_tree
from certbatch.engine.obfuscate import obfuscate_fields, redact_file
from certbatch.engine.signature import IssuerIdentity, Keyring, verify_merkle_proof, verify_signature
from certbatch.engine.verify import BatchReport, DocumentResult, verify_batch, verify_directory, verify_document

__all__ = [
    "BatchReport",
    "DocumentResult",
    "FieldCommitment",
    "HashedDocument",
    "IssuedBatch",
    "IssuerIdentity",
    "Keyring",
    "MerkleTree",
    "ProofStep",
    "build_merkle_tree",
    "compute_leaf_hash",
    "hash_document",
    "issue_batch",
    "issue_document",
    "issue_documents",
    "obfuscate_fields",
    "redact_file",
    "verify_batch",
    "verify_directory",
    "verify_document",
    "verify_merkle_proof",
    "verify_signature",
]
