"""Batch Merkle tree over per-document leaf hashes.

Leaves are taken in the order given; callers pass them in canonical batch
order (source file name). Each internal node is H(left || right) over the raw
32-byte digests. A level with an odd number of nodes pairs its last node with
itself, so a verifier can rebuild the identical tree shape from the same
ordered leaves. One leaf yields root == leaf with an empty proof.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from certbatch.core.errors import EmptyBatchError, ProofError
from certbatch.core.hash import digest_bytes, is_hex_sha256, sha256_concat


LEFT = "left"
RIGHT = "right"


@dataclass(frozen=True)
class ProofStep:
    sibling: str
    position: str  # side the sibling sits on: "left" | "right"

    def to_dict(self) -> dict[str, str]:
        return {"sibling": self.sibling, "position": self.position}

    @classmethod
    def from_dict(cls, obj: Any) -> "ProofStep":
        if not isinstance(obj, dict):
            raise ProofError("proof step must be an object")
        sibling = obj.get("sibling")
        position = obj.get("position")
        if not is_hex_sha256(sibling):
            raise ProofError("proof step sibling must be a sha256 hex digest")
        if position not in (LEFT, RIGHT):
            raise ProofError(f"proof step position must be 'left' or 'right', got {position!r}")
        return cls(sibling=str(sibling).lower(), position=str(position))


def hash_pair(left: str, right: str) -> str:
    return sha256_concat(digest_bytes(left), digest_bytes(right))


class MerkleTree:
    """Immutable Merkle tree built once from an ordered list of leaf hashes."""

    def __init__(self, leaves: Sequence[str]) -> None:
        if not leaves:
            raise EmptyBatchError("cannot build a Merkle tree over zero documents")
        normalized: list[str] = []
        for i, leaf in enumerate(leaves):
            if not is_hex_sha256(leaf):
                raise ProofError(f"leaf {i} is not a sha256 hex digest")
            normalized.append(leaf.lower())

        levels: list[list[str]] = [normalized]
        current = normalized
        while len(current) > 1:
            nxt: list[str] = []
            for i in range(0, len(current), 2):
                left = current[i]
                right = current[i + 1] if i + 1 < len(current) else left
                nxt.append(hash_pair(left, right))
            levels.append(nxt)
            current = nxt
        self._levels = levels

    @property
    def root(self) -> str:
        return self._levels[-1][0]

    @property
    def leaves(self) -> list[str]:
        return list(self._levels[0])

    @property
    def leaf_count(self) -> int:
        return len(self._levels[0])

    @property
    def depth(self) -> int:
        return len(self._levels) - 1

    def proof(self, index: int) -> list[ProofStep]:
        if index < 0 or index >= self.leaf_count:
            raise IndexError(f"leaf index out of range: {index}")

        path: list[ProofStep] = []
        idx = index
        for level in self._levels[:-1]:
            if idx % 2 == 0:
                sibling_idx = idx + 1
                if sibling_idx < len(level):
                    path.append(ProofStep(level[sibling_idx], RIGHT))
                else:
                    path.append(ProofStep(level[idx], RIGHT))  # duplicated last node
            else:
                path.append(ProofStep(level[idx - 1], LEFT))
            idx //= 2
        return path

    def proofs(self) -> list[list[ProofStep]]:
        return [self.proof(i) for i in range(self.leaf_count)]


def build_merkle_tree(leaves: Sequence[str]) -> MerkleTree:
    return MerkleTree(leaves)


def fold_proof(leaf_hash: str, proof: Sequence[ProofStep]) -> str:
    cur = leaf_hash.lower()
    for step in proof:
        if step.position == LEFT:
            cur = hash_pair(step.sibling, cur)
        else:
            cur = hash_pair(cur, step.sibling)
    return cur
