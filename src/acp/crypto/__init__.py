"""Cryptographic primitives: field hash, commitments, proofs, Merkle trees, admin authority.

Nothing here touches protocol state; every function is deterministic apart
from salt and key generation.
"""

from acp.crypto.authority import AdminAuth, AdminSigner, verify_admin
from acp.crypto.commitments import (
    action_hash,
    bid_commitment,
    commit,
    commitments_equal,
    epoch_nullifier,
    generate_salt,
    identity_commitment,
    signal_commitment,
    vote_commitment,
    vote_nullifier,
)
from acp.crypto.field import FIELD_MODULUS, FieldHasher, Sha256FieldHasher, field_hash
from acp.crypto.merkle import TREE_DEPTH, MerkleProof, MerkleTree
from acp.crypto.proof import Circuit, Groth16Proof, ProofVerifier, PublicInputs

__all__ = [
    "AdminAuth",
    "AdminSigner",
    "Circuit",
    "FIELD_MODULUS",
    "FieldHasher",
    "Groth16Proof",
    "MerkleProof",
    "MerkleTree",
    "ProofVerifier",
    "PublicInputs",
    "Sha256FieldHasher",
    "TREE_DEPTH",
    "action_hash",
    "bid_commitment",
    "commit",
    "commitments_equal",
    "epoch_nullifier",
    "field_hash",
    "generate_salt",
    "identity_commitment",
    "signal_commitment",
    "verify_admin",
    "vote_commitment",
    "vote_nullifier",
]
