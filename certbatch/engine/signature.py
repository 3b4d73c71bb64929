"""Issuer signatures over batch roots and independent Merkle proof checks.

The signed payload is the 32 raw bytes of the batch root digest as published
in ``merkleRoot``. A batch of one document therefore signs its leaf hash
directly.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from certbatch.core.errors import ProofError
from certbatch.core.hash import digest_bytes, is_hex_sha256
from certbatch.engine.merkle import ProofStep, fold_proof
from certbatch.protocol.document import SIGNATURE_TYPE, SUITE


logger = logging.getLogger(__name__)

_HEX_64_RE = re.compile(r"^[0-9a-fA-F]{64}$")
ED25519_SIGNATURE_BYTES = 64


@dataclass(frozen=True)
class IssuerIdentity:
    id: str
    public_key: str | None  # raw Ed25519 public key, hex

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "IssuerIdentity":
        issuer = document.get("issuer")
        if not isinstance(issuer, dict):
            return cls(id="", public_key=None)
        issuer_id = issuer.get("id")
        pub = issuer.get("publicKey")
        return cls(
            id=issuer_id if isinstance(issuer_id, str) else "",
            public_key=pub if isinstance(pub, str) else None,
        )


@dataclass(frozen=True)
class Keyring:
    """Trusted issuer keys: issuer id -> Ed25519 public key hex."""

    keys: Mapping[str, str]

    def trusts(self, issuer: IssuerIdentity) -> bool:
        expected = self.keys.get(issuer.id)
        if expected is None or issuer.public_key is None:
            return False
        return expected.lower() == issuer.public_key.lower()


def load_keyring(path: Path) -> Keyring:
    try:
        obj = json.loads(path.read_text(encoding="utf-8", errors="strict"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"cannot read trusted keys file {path}: {e}") from e
    if not isinstance(obj, dict):
        raise ValueError("trusted keys file must be a JSON object of issuer id -> public key hex")
    keys: dict[str, str] = {}
    for issuer_id, pub in sorted(obj.items()):
        if not isinstance(pub, str) or not _HEX_64_RE.fullmatch(pub):
            raise ValueError(f"trusted key for {issuer_id!r} must be 64 hex chars")
        keys[str(issuer_id)] = pub.lower()
    return Keyring(keys=MappingProxyType(keys))


def load_private_key(blob: bytes) -> Ed25519PrivateKey:
    """Load an Ed25519 private key from a 64-hex seed or a PEM (PKCS#8, unencrypted)."""

    trimmed = blob.strip()
    try:
        hex_s = trimmed.decode("ascii", errors="strict").strip()
    except UnicodeDecodeError:
        hex_s = ""
    if _HEX_64_RE.fullmatch(hex_s):
        return Ed25519PrivateKey.from_private_bytes(bytes.fromhex(hex_s))

    key = serialization.load_pem_private_key(trimmed, password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError("Private key is not Ed25519")
    return key


def load_private_key_file(path: Path) -> Ed25519PrivateKey:
    try:
        blob = path.read_bytes()
    except OSError as e:
        raise ValueError(f"cannot read issuer key {path}: {e}") from e
    return load_private_key(blob)


def load_public_key(blob: bytes) -> Ed25519PublicKey:
    """Load an Ed25519 public key from 64 hex chars or PEM (SubjectPublicKeyInfo)."""

    trimmed = blob.strip()
    try:
        hex_s = trimmed.decode("ascii", errors="strict").strip()
    except UnicodeDecodeError:
        hex_s = ""
    if _HEX_64_RE.fullmatch(hex_s):
        return Ed25519PublicKey.from_public_bytes(bytes.fromhex(hex_s))

    key = serialization.load_pem_public_key(trimmed)
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("Public key is not Ed25519")
    return key


def public_key_hex(key: Ed25519PrivateKey | Ed25519PublicKey) -> str:
    pub = key.public_key() if isinstance(key, Ed25519PrivateKey) else key
    raw = pub.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)
    return raw.hex()


def sign_root(root: str, private_key: Ed25519PrivateKey) -> dict[str, str]:
    """Sign the raw bytes of ``root`` and return the document ``signature`` block."""

    payload = digest_bytes(root)
    sig = private_key.sign(payload)
    return {
        "type": SIGNATURE_TYPE,
        "suite": SUITE,
        "value": base64.b64encode(sig).decode("ascii"),
    }


def verify_signature(
    payload: bytes,
    signature: Any,
    issuer: IssuerIdentity,
    *,
    keyring: Keyring | None = None,
) -> bool:
    """True iff ``signature`` was produced by ``issuer`` over exactly ``payload``.

    Never raises: malformed signatures, unsupported types, unknown or
    untrusted issuer keys all yield False.
    """

    if not isinstance(payload, (bytes, bytearray)):
        return False
    if not isinstance(signature, dict) or signature.get("type") != SIGNATURE_TYPE:
        return False
    suite = signature.get("suite", SUITE)
    if suite != SUITE:
        return False

    value = signature.get("value")
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        sig_bytes = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(sig_bytes) != ED25519_SIGNATURE_BYTES:
        return False

    if keyring is not None and not keyring.trusts(issuer):
        logger.debug("issuer %r is not in the trusted keyring", issuer.id)
        return False
    if issuer.public_key is None or not _HEX_64_RE.fullmatch(issuer.public_key):
        return False
    try:
        pub = Ed25519PublicKey.from_public_bytes(bytes.fromhex(issuer.public_key))
    except ValueError:
        return False

    try:
        pub.verify(sig_bytes, bytes(payload))
    except InvalidSignature:
        return False
    return True


def verify_merkle_proof(leaf_hash: str, proof: Sequence[ProofStep] | Sequence[dict[str, Any]], claimed_root: str) -> bool:
    """True iff folding ``leaf_hash`` through ``proof`` yields ``claimed_root``."""

    if not is_hex_sha256(leaf_hash) or not is_hex_sha256(claimed_root):
        return False
    try:
        steps = [s if isinstance(s, ProofStep) else ProofStep.from_dict(s) for s in proof]
        return fold_proof(leaf_hash, steps) == claimed_root.lower()
    except (ProofError, ValueError, TypeError):
        return False
