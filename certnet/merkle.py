"""Merkle tree and batch set-proof utilities for certified transactions.

This module implements the inclusion-proof primitive consumed by the
transactions proof verification engine: a binary Merkle tree over
transaction hashes and a compact proof that a *batch* (subset) of leaves
belongs to a given root.

Design goals:
- Deterministic across implementations
- Simple reference implementation (not optimized)
- Proofs are self-contained and travel as an opaque hex blob

Hashing:
- SHA-256
- Domain separation:
  - leaf = SHA256(0x00 || utf8(leaf))
  - node = SHA256(0x01 || left || right)
- A level with an odd number of nodes promotes its last node unchanged.

Proof blob:
- lowercase hex of the canonical JSON bytes of
  {"root", "leaves_count", "items": [{"index", "leaf_hash", "path"}]}
  where each path step is {"side": "left"|"right", "hash": <hex>}.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from certnet.core import canonical_json_bytes, is_valid_sha256


class MerkleProofError(Exception):
    """A Merkle proof does not prove the given leaves."""
    pass


class MerkleProofDecodeError(ValueError):
    """A proof blob cannot be decoded into a MerkleProof."""
    pass


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def leaf_hash(leaf: str) -> str:
    """Compute the leaf hash of a transaction hash (or any string leaf)."""
    return _sha256(b"\x00" + leaf.encode("utf-8")).hex()


def node_hash(left_hex: str, right_hex: str) -> str:
    """Compute a parent hash from two child hashes (each 32 bytes hex)."""
    if not is_valid_sha256(left_hex) or not is_valid_sha256(right_hex):
        raise ValueError("left_hex and right_hex must be 64 lowercase hex chars")
    return _sha256(b"\x01" + bytes.fromhex(left_hex) + bytes.fromhex(right_hex)).hex()


@dataclass(frozen=True)
class PathStep:
    side: str  # side of the sibling: "left" or "right"
    hash: str

    def to_dict(self) -> Dict[str, str]:
        return {"side": self.side, "hash": self.hash}


@dataclass(frozen=True)
class ProofItem:
    """Inclusion path of one leaf."""
    index: int
    leaf_hash: str
    path: List[PathStep] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "leaf_hash": self.leaf_hash,
            "path": [s.to_dict() for s in self.path],
        }


def _expected_sides(leaves_count: int, index: int) -> List[str]:
    """Return the sibling sides a valid path for `index` must have."""
    sides: List[str] = []
    size = leaves_count
    pos = index
    while size > 1:
        if pos % 2 == 1:
            sides.append("left")
        elif pos + 1 < size:
            sides.append("right")
        # else: last node of an odd level, promoted without a sibling
        pos //= 2
        size = (size + 1) // 2
    return sides


class MerkleTree:
    """Binary Merkle tree over string leaves."""

    def __init__(self, leaves: Sequence[str]):
        if not leaves:
            raise ValueError("cannot build a Merkle tree without leaves")
        self._leaves: List[str] = list(leaves)
        level = [leaf_hash(x) for x in self._leaves]
        self._levels: List[List[str]] = [level]
        while len(level) > 1:
            nxt: List[str] = []
            for i in range(0, len(level) - 1, 2):
                nxt.append(node_hash(level[i], level[i + 1]))
            if len(level) % 2 == 1:
                nxt.append(level[-1])
            level = nxt
            self._levels.append(level)

    @classmethod
    def from_leaves(cls, leaves: Sequence[str]) -> "MerkleTree":
        return cls(leaves)

    @property
    def root(self) -> str:
        return self._levels[-1][0]

    @property
    def leaves(self) -> List[str]:
        return list(self._leaves)

    def __len__(self) -> int:
        return len(self._leaves)

    def _path(self, index: int) -> List[PathStep]:
        path: List[PathStep] = []
        pos = index
        for level in self._levels[:-1]:
            if pos % 2 == 1:
                path.append(PathStep(side="left", hash=level[pos - 1]))
            elif pos + 1 < len(level):
                path.append(PathStep(side="right", hash=level[pos + 1]))
            pos //= 2
        return path

    def compute_proof(self, leaves: Sequence[str]) -> "MerkleProof":
        """Build a batch proof for `leaves`, in the given order.

        Duplicate leaves are matched against successive occurrences in the tree.
        """
        if not leaves:
            raise MerkleProofError("cannot prove an empty set of leaves")

        positions: Dict[str, List[int]] = {}
        for i, value in enumerate(self._leaves):
            positions.setdefault(value, []).append(i)

        items: List[ProofItem] = []
        for value in leaves:
            candidates = positions.get(value)
            if not candidates:
                raise MerkleProofError(f"leaf not found in tree: {value}")
            index = candidates.pop(0)
            items.append(ProofItem(
                index=index,
                leaf_hash=self._levels[0][index],
                path=self._path(index),
            ))

        return MerkleProof(root=self.root, leaves_count=len(self._leaves), items=items)


@dataclass(frozen=True)
class MerkleProof:
    """Proof that a batch of leaves belongs to the tree with root `root`."""
    root: str
    leaves_count: int
    items: List[ProofItem]

    @classmethod
    def from_leaves(cls, leaves: Sequence[str]) -> "MerkleProof":
        """Build a tree over exactly `leaves` and prove all of them."""
        return MerkleTree.from_leaves(leaves).compute_proof(leaves)

    def merkle_root(self) -> str:
        return self.root

    def verify(self, leaves: Sequence[str]) -> None:
        """Check that this proof proves `leaves` (in order) against `root`.

        Raises:
            MerkleProofError: if any leaf is not proven by this proof.
        """
        if len(leaves) != len(self.items):
            raise MerkleProofError(
                f"proof covers {len(self.items)} leaves, {len(leaves)} given"
            )

        seen = set()
        for value, item in zip(leaves, self.items):
            if leaf_hash(value) != item.leaf_hash:
                raise MerkleProofError(f"leaf is not proven by this proof: {value}")
            if not 0 <= item.index < self.leaves_count:
                raise MerkleProofError(f"leaf index out of range: {item.index}")
            if item.index in seen:
                raise MerkleProofError(f"leaf index proven twice: {item.index}")
            seen.add(item.index)

            expected = _expected_sides(self.leaves_count, item.index)
            if [s.side for s in item.path] != expected:
                raise MerkleProofError(f"inconsistent path for leaf index {item.index}")

            cur = item.leaf_hash
            for step in item.path:
                cur = node_hash(step.hash, cur) if step.side == "left" else node_hash(cur, step.hash)

            if cur != self.root:
                raise MerkleProofError(f"path for leaf {value} does not match root {self.root}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "leaves_count": self.leaves_count,
            "items": [i.to_dict() for i in self.items],
        }

    def to_hex(self) -> str:
        return canonical_json_bytes(self.to_dict()).hex()

    @classmethod
    def from_dict(cls, data: Any) -> "MerkleProof":
        if not isinstance(data, dict):
            raise MerkleProofDecodeError("proof must be a JSON object")

        root = data.get("root")
        leaves_count = data.get("leaves_count")
        items_in = data.get("items")
        if not isinstance(root, str) or not is_valid_sha256(root):
            raise MerkleProofDecodeError("proof root must be 64 lowercase hex chars")
        if not isinstance(leaves_count, int) or isinstance(leaves_count, bool) or leaves_count < 1:
            raise MerkleProofDecodeError("proof leaves_count must be a positive integer")
        if not isinstance(items_in, list) or not items_in:
            raise MerkleProofDecodeError("proof items must be a non-empty list")

        items: List[ProofItem] = []
        for raw in items_in:
            if not isinstance(raw, dict):
                raise MerkleProofDecodeError("proof item must be an object")
            index = raw.get("index")
            lh = raw.get("leaf_hash")
            path_in = raw.get("path")
            if not isinstance(index, int) or isinstance(index, bool):
                raise MerkleProofDecodeError("proof item index must be an integer")
            if not isinstance(lh, str) or not is_valid_sha256(lh):
                raise MerkleProofDecodeError("proof item leaf_hash must be 64 lowercase hex chars")
            if not isinstance(path_in, list):
                raise MerkleProofDecodeError("proof item path must be a list")
            path: List[PathStep] = []
            for step in path_in:
                if not isinstance(step, dict):
                    raise MerkleProofDecodeError("path step must be an object")
                side = step.get("side")
                h = step.get("hash")
                if side not in ("left", "right"):
                    raise MerkleProofDecodeError(f"invalid path side: {side!r}")
                if not isinstance(h, str) or not is_valid_sha256(h):
                    raise MerkleProofDecodeError("path hash must be 64 lowercase hex chars")
                path.append(PathStep(side=side, hash=h))
            items.append(ProofItem(index=index, leaf_hash=lh, path=path))

        return cls(root=root, leaves_count=leaves_count, items=items)

    @classmethod
    def from_hex(cls, blob: str) -> "MerkleProof":
        """Decode a proof blob produced by `to_hex()`."""
        try:
            raw = bytes.fromhex(blob)
            data = json.loads(raw.decode("utf-8"))
        except (TypeError, ValueError, RecursionError) as e:
            raise MerkleProofDecodeError(f"proof blob is not hex encoded JSON: {e}") from e
        return cls.from_dict(data)
