"""
Merkle tree over ledger block hashes.

The root summarises the whole chain in one digest; a proof lets an auditor
check that a single block hash is part of the chain without the other blocks.
"""

import hashlib
from typing import Dict, List


class MerkleTree:
    def __init__(self, leaves: List[str]):
        self.leaves = list(leaves)
        self.tree = self._build_tree()

    @staticmethod
    def _hash(data: str) -> str:
        """Hash the data using SHA-256"""
        return hashlib.sha256(data.encode('utf-8')).hexdigest()

    def _build_tree(self) -> List[List[str]]:
        """Build the tree bottom-up from the hashed leaves"""
        if not self.leaves:
            return [[]]

        tree = [[self._hash(leaf) for leaf in self.leaves]]

        while len(tree[-1]) > 1:
            level = tree[-1]
            next_level = []

            for i in range(0, len(level), 2):
                if i + 1 < len(level):
                    next_level.append(self._hash(level[i] + level[i + 1]))
                else:
                    # Odd node is promoted unchanged
                    next_level.append(level[i])

            tree.append(next_level)

        return tree

    def get_root(self) -> str:
        """Get the Merkle root, or an empty string for an empty tree"""
        top = self.tree[-1]
        return top[0] if top else ""

    def get_proof(self, index: int) -> List[Dict[str, str]]:
        """Get the Merkle proof for the leaf at index"""
        if index < 0 or index >= len(self.leaves):
            raise ValueError("Index out of range")

        proof = []
        for level in self.tree[:-1]:
            is_right = index % 2 == 0
            pair_index = index + 1 if is_right else index - 1

            if pair_index < len(level):
                proof.append({
                    'position': 'right' if is_right else 'left',
                    'data': level[pair_index]
                })

            index = index // 2

        return proof


def verify_proof(leaf: str, proof: List[Dict[str, str]], root: str) -> bool:
    """Verify a Merkle proof for a leaf against a root"""
    current = MerkleTree._hash(leaf)

    for step in proof:
        if step['position'] == 'left':
            current = MerkleTree._hash(step['data'] + current)
        else:
            current = MerkleTree._hash(current + step['data'])

    return current == root
