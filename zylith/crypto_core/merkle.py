# crypto_core/merkle.py
"""
Membership-tree proofs as served by the ASP.

The tree hash (BN254 Poseidon) lives outside this service, so root recomputation takes the
two-to-one hash as a parameter. Shape checks (depth, bits, field range) are local.
"""
from __future__ import annotations

from typing import Callable, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from zylith.crypto_core.codec import FIELD_PRIME, parse_u256
from zylith.core.errors import ValidationError

Hash2 = Callable[[int, int], int]


class MerkleProof(BaseModel):
    model_config = ConfigDict(extra="ignore")

    leaf: str = Field(..., description="Leaf commitment (decimal or 0x-hex).")
    path: List[str] = Field(..., description="Sibling hashes from leaf level upward.")
    path_indices: List[int] = Field(..., description="0 = leaf side is left, 1 = leaf side is right.")
    root: str = Field(..., description="Root the path was generated against.")

    @field_validator("leaf", "root", mode="before")
    @classmethod
    def _felt_str(cls, v):
        return str(v)

    @field_validator("path", mode="before")
    @classmethod
    def _path_strs(cls, v):
        return [str(x) for x in v]

    def check_shape(self, depth: int) -> None:
        bad = []
        if len(self.path) != depth:
            bad.append("path")
        if len(self.path_indices) != len(self.path) or any(b not in (0, 1) for b in self.path_indices):
            bad.append("path_indices")
        for name, value in (("leaf", self.leaf), ("root", self.root)):
            if parse_u256(value, name) >= FIELD_PRIME:
                bad.append(name)
        if any(parse_u256(x, "path") >= FIELD_PRIME for x in self.path):
            bad.append("path")
        if bad:
            raise ValidationError(
                f"Malformed Merkle proof (expected depth {depth}): {', '.join(sorted(set(bad)))}",
                fields=sorted(set(bad)),
            )

    def compute_root(self, hash2: Hash2) -> int:
        node = parse_u256(self.leaf)
        for sibling, bit in zip(self.path, self.path_indices):
            s = parse_u256(sibling)
            node = hash2(s, node) if bit else hash2(node, s)
        return node

    def verify(self, hash2: Hash2) -> bool:
        return self.compute_root(hash2) == parse_u256(self.root)

    def circuit_inputs(self) -> dict:
        """Field names the circuits expect for the Merkle path."""
        return {"root": str(parse_u256(self.root)), "pathElements": [str(parse_u256(x)) for x in self.path],
                "pathIndices": list(self.path_indices)}


__all__ = ["MerkleProof", "Hash2"]
