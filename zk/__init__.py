"""
Zero-Knowledge Proof Module for the Private Bridge
Poseidon commitments, nullifiers, transfer proofs and Merkle accumulation
"""

from .zk_proofs import (
    # Core classes
    ProofService,
    PoseidonProofSystem,
    ProofArtifact,
    CircomPoseidon,

    # Functions and constants
    poseidon_hash,
    merkle_root,
    encode_digest,
    decode_digest,
    is_digest,
    proof_fingerprint,
    EMPTY_MERKLE_ROOT,

    # Exceptions
    ZKError,
    TrustedSetupError,
    ProofGenerationError,
)

__version__ = "1.0.0"

__all__ = [
    # Classes
    'ProofService',
    'PoseidonProofSystem',
    'ProofArtifact',
    'CircomPoseidon',

    # Functions and constants
    'poseidon_hash',
    'merkle_root',
    'encode_digest',
    'decode_digest',
    'is_digest',
    'proof_fingerprint',
    'EMPTY_MERKLE_ROOT',

    # Exceptions
    'ZKError',
    'TrustedSetupError',
    'ProofGenerationError',
]
