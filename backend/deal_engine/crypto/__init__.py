"""Cryptographic commitment primitives."""

from deal_engine.crypto.merkle import AllocationTree, build_tree, verify_proof

__all__ = ["AllocationTree", "build_tree", "verify_proof"]
