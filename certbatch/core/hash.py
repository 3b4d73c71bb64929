from __future__ import annotations

import hashlib


DIGEST_SIZE = 32


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_concat(*parts: bytes) -> str:
    h = hashlib.sha256()
    for p in parts:
        h.update(p)
    return h.hexdigest()


def is_hex_sha256(s: str) -> bool:
    if not isinstance(s, str) or len(s) != 2 * DIGEST_SIZE:
        return False
    for c in s:
        if c not in "0123456789abcdefABCDEF":
            return False
    return True


def digest_bytes(hex_digest: str) -> bytes:
    """Decode a 64-hex digest (optionally 0x-prefixed) to its 32 raw bytes."""

    s = strip_0x(hex_digest)
    if not is_hex_sha256(s):
        raise ValueError(f"not a sha256 hex digest: {hex_digest!r}")
    return bytes.fromhex(s)


def strip_0x(s: str) -> str:
    if isinstance(s, str) and s[:2] in ("0x", "0X"):
        return s[2:]
    return s


def with_0x(hex_digest: str) -> str:
    return "0x" + strip_0x(hex_digest).lower()
