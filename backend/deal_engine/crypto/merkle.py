"""Hash tree over final allocations for on-chain claim verification.

Uses keccak256 so a Solidity claim contract can check proofs with the
OpenZeppelin MerkleProof library:

- leaf  = keccak256(keccak256(abi.encodePacked(address, uint256 amount)))
- pair  = keccak256(min(a, b) ++ max(a, b)), children sorted bytewise
- an odd node at the end of a layer is promoted unchanged
- the empty tree has a zero root

Amounts are integers in base units (see deal_engine.domain.money.to_base_units).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from eth_utils import is_address, keccak, to_canonical_address

ZERO_ROOT = "0x" + "00" * 32


@dataclass(frozen=True)
class AllocationLeaf:
    """A claimable allocation: wallet and integer amount."""
    address: str
    amount: int


@dataclass
class AllocationTree:
    """A built tree: layers of node hashes plus an address index.

    Usage:
        tree = build_tree([AllocationLeaf("0xabc...", 10**21)])
        root = tree.root
        proof = tree.proof_for("0xabc...")
    """
    layers: list[list[bytes]]
    index: dict[str, int] = field(default_factory=dict)

    @property
    def root(self) -> str:
        if not self.layers or not self.layers[0]:
            return ZERO_ROOT
        return _hex(self.layers[-1][0])

    @property
    def leaf_count(self) -> int:
        return len(self.layers[0]) if self.layers else 0

    def proof_for(self, address: str) -> list[str] | None:
        """Sibling hashes from leaf to root, or None if the address is absent."""
        position = self.index.get(address.lower())
        if position is None:
            return None

        proof: list[str] = []
        for layer in self.layers[:-1]:
            sibling = position - 1 if position % 2 else position + 1
            if sibling < len(layer):
                proof.append(_hex(layer[sibling]))
            position //= 2
        return proof


def build_tree(leaves: list[AllocationLeaf]) -> AllocationTree:
    """Build the tree. Raises ValueError on a duplicate or malformed address."""
    if not leaves:
        return AllocationTree(layers=[[]])

    index: dict[str, int] = {}
    hashed: list[bytes] = []
    for position, leaf in enumerate(leaves):
        key = leaf.address.lower()
        if key in index:
            raise ValueError(f"Duplicate address in allocation tree: {leaf.address}")
        index[key] = position
        hashed.append(hash_leaf(leaf.address, leaf.amount))

    layers = [hashed]
    current = hashed
    while len(current) > 1:
        parent: list[bytes] = []
        for i in range(0, len(current), 2):
            if i + 1 < len(current):
                parent.append(_hash_pair(current[i], current[i + 1]))
            else:
                parent.append(current[i])
        layers.append(parent)
        current = parent

    return AllocationTree(layers=layers, index=index)


def is_claimable_address(address: str) -> bool:
    """True for a 0x-prefixed 20-byte address, in any letter case."""
    return is_address(address.lower())


def hash_leaf(address: str, amount: int) -> bytes:
    """Double keccak of the packed (address, uint256) pair."""
    normalized = address.lower()
    if not is_address(normalized):
        raise ValueError(f"Invalid wallet address: {address}")
    if amount < 0 or amount >= 2**256:
        raise ValueError(f"Amount out of uint256 range: {amount}")
    packed = to_canonical_address(normalized) + amount.to_bytes(32, "big")
    return keccak(keccak(packed))


def verify_proof(root: str, address: str, amount: int, proof: list[str]) -> bool:
    """Recompute the path from a leaf and compare against the root."""
    node = hash_leaf(address, amount)
    for sibling in proof:
        node = _hash_pair(node, bytes.fromhex(sibling.removeprefix("0x")))
    return _hex(node) == root.lower()


def _hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


def _hex(node: bytes) -> str:
    return "0x" + node.hex()
