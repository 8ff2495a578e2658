"""Fixed-depth Merkle tree over agent identity commitments.

The tree is the membership accumulator behind ``agents_root``: the
authority appends each registered identity commitment, publishes the root
with ``update_root``, and agents prove membership against it.

Empty subtrees hash to precomputed zero hashes (z[0] = 0,
z[i] = H(z[i-1], z[i-1])), so only the occupied prefix of each level is
ever materialized.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from ..core.exceptions import ValidationException
from .field import DEFAULT_HASHER, FieldHasher, from_bytes32, to_bytes32

TREE_DEPTH = 20
MAX_TREE_DEPTH = 32

LEFT = 0
RIGHT = 1


@dataclass(frozen=True)
class MerkleProof:
    """Sibling hashes from leaf to root; ``path_indices[i]`` is 1 when the path node is a right child."""

    leaf: bytes
    siblings: tuple[bytes, ...]
    path_indices: tuple[int, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "leaf": self.leaf.hex(),
            "siblings": [s.hex() for s in self.siblings],
            "path_indices": list(self.path_indices),
        }


class MerkleTree:
    """Append-only binary Merkle tree of fixed depth."""

    def __init__(self, depth: int = TREE_DEPTH, hasher: FieldHasher | None = None) -> None:
        if not 1 <= depth <= MAX_TREE_DEPTH:
            raise ValidationException(
                f"tree depth must be between 1 and {MAX_TREE_DEPTH}", field="depth", value=depth
            )
        self.depth = depth
        self.hasher = hasher or DEFAULT_HASHER
        self._leaves: list[int] = []
        self.zero_hashes = [0]
        for _ in range(depth):
            self.zero_hashes.append(self._hash_pair(self.zero_hashes[-1], self.zero_hashes[-1]))

    def _hash_pair(self, left: int, right: int) -> int:
        return self.hasher.hash([left, right])

    @property
    def capacity(self) -> int:
        return 1 << self.depth

    def __len__(self) -> int:
        return len(self._leaves)

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def add_leaf(self, commitment: bytes) -> int:
        """Append a commitment and return its index."""
        index = len(self._leaves)
        if index >= self.capacity:
            raise ValidationException(
                f"tree of depth {self.depth} is full", field="leaves", value=self.capacity
            )
        self._leaves.append(from_bytes32(commitment))
        return index

    def leaf(self, index: int) -> bytes | None:
        if not 0 <= index < len(self._leaves):
            return None
        return to_bytes32(self._leaves[index])

    def _next_level(self, level: list[int], depth: int) -> list[int]:
        zero = self.zero_hashes[depth]
        return [
            self._hash_pair(level[i], level[i + 1] if i + 1 < len(level) else zero)
            for i in range(0, len(level), 2)
        ]

    def root(self) -> bytes:
        if not self._leaves:
            return to_bytes32(self.zero_hashes[self.depth])
        level = list(self._leaves)
        for d in range(self.depth):
            level = self._next_level(level, d)
        return to_bytes32(level[0])

    def proof(self, index: int) -> MerkleProof:
        """Membership proof for the leaf at ``index``."""
        if not 0 <= index < len(self._leaves):
            raise ValidationException(
                f"leaf index {index} out of range for {len(self._leaves)} leaves", field="index", value=index
            )
        siblings: list[bytes] = []
        path_indices: list[int] = []
        position = index
        level = list(self._leaves)
        for d in range(self.depth):
            is_right = position % 2 == 1
            sibling = position - 1 if is_right else position + 1
            siblings.append(to_bytes32(level[sibling] if sibling < len(level) else self.zero_hashes[d]))
            path_indices.append(RIGHT if is_right else LEFT)
            level = self._next_level(level, d)
            position //= 2
        return MerkleProof(to_bytes32(self._leaves[index]), tuple(siblings), tuple(path_indices))

    def verify_proof(self, proof: MerkleProof, root: bytes) -> bool:
        """Recompute the root from ``proof`` and compare it with ``root``."""
        if len(proof.siblings) != self.depth or len(proof.path_indices) != self.depth:
            return False
        current = from_bytes32(proof.leaf)
        for sibling, side in zip(proof.siblings, proof.path_indices):
            if side == RIGHT:
                current = self._hash_pair(from_bytes32(sibling), current)
            elif side == LEFT:
                current = self._hash_pair(current, from_bytes32(sibling))
            else:
                return False
        return to_bytes32(current) == bytes(root)

    def serialize(self) -> str:
        return json.dumps({"depth": self.depth, "leaves": [str(leaf) for leaf in self._leaves]})

    @classmethod
    def deserialize(cls, data: str, hasher: FieldHasher | None = None) -> MerkleTree:
        try:
            parsed = json.loads(data)
            tree = cls(int(parsed["depth"]), hasher=hasher)
            leaves = [int(leaf) for leaf in parsed["leaves"]]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ValidationException(f"invalid serialized tree: {e}", field="tree") from e
        for leaf in leaves:
            tree.add_leaf(to_bytes32(leaf))
        return tree

    @classmethod
    def from_commitments(
        cls, commitments: list[bytes], depth: int = TREE_DEPTH, hasher: FieldHasher | None = None
    ) -> MerkleTree:
        tree = cls(depth, hasher=hasher)
        for commitment in commitments:
            tree.add_leaf(commitment)
        return tree
