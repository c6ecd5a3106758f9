"""Binary Merkle tree over 32-byte leaf digests.

Uses keccak-256, the hash the verifying contract recomputes on-chain.
Leaves keep their submission order. Parents are keccak(left || right);
an unpaired last node is promoted to the next level unchanged, so a
path may be shorter than the tree height.
"""

from __future__ import annotations

from collections.abc import Sequence

from eth_utils import keccak


def _hash_pair(left: bytes, right: bytes) -> bytes:
    return keccak(left + right)


def _next_level(level: Sequence[bytes]) -> list[bytes]:
    parents = [_hash_pair(level[i], level[i + 1]) for i in range(0, len(level) - 1, 2)]
    if len(level) % 2 == 1:
        parents.append(level[-1])
    return parents


def merkle_root(leaves: Sequence[bytes]) -> bytes:
    """Compute the root of a non-empty list of leaves."""
    if not leaves:
        raise ValueError("Cannot build a Merkle tree without leaves")
    level = list(leaves)
    while len(level) > 1:
        level = _next_level(level)
    return level[0]


def merkle_path(leaves: Sequence[bytes], index: int) -> list[bytes]:
    """Sibling hashes from the leaf at `index` up to the root."""
    if not 0 <= index < len(leaves):
        raise IndexError(f"Leaf index {index} out of range")

    path: list[bytes] = []
    level = list(leaves)
    while len(level) > 1:
        promoted = index == len(level) - 1 and len(level) % 2 == 1
        if not promoted:
            path.append(level[index ^ 1])
        level = _next_level(level)
        index //= 2
    return path


def verify_path(
    root: bytes,
    leaf: bytes,
    path: Sequence[bytes],
    leaf_count: int,
    leaf_index: int,
) -> bool:
    """Check that `path` links `leaf` at `leaf_index` to `root`."""
    if not 0 <= leaf_index < leaf_count:
        return False

    node = leaf
    width = leaf_count
    index = leaf_index
    siblings = iter(path)
    consumed = 0
    while width > 1:
        promoted = index == width - 1 and width % 2 == 1
        if not promoted:
            sibling = next(siblings, None)
            if sibling is None:
                return False
            consumed += 1
            node = _hash_pair(node, sibling) if index % 2 == 0 else _hash_pair(sibling, node)
        index //= 2
        width = (width + 1) // 2

    return consumed == len(path) and node == root
