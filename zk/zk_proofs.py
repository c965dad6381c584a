"""
Zero-Knowledge Proof Service for the Private Bridge
Poseidon commitments, nullifiers, transfer proofs and the commitment Merkle accumulator
"""

import hashlib
import hmac
import json
import logging
import os
import secrets
import stat
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

# ============================================================================
# POSEIDON PERMUTATION OVER THE BN254 SCALAR FIELD
# ============================================================================


class CircomPoseidon:
    """Poseidon-style hash (t=3, two inputs) over the BN254 scalar field"""

    # BN254 scalar field prime
    PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

    FULL_ROUNDS = 8
    PARTIAL_ROUNDS = 56
    WIDTH = 3  # t=3 for 2 inputs

    CONSTANTS_DOMAIN = b"zk-private-bridge/poseidon/t3/round-constants"

    # MDS matrix from circomlib for t=3
    MDS_MATRIX = [
        [0x109b7f411ba0e4c9b2b70caf5c36a7b194be7c11ad24378bfedb68592ba8118b,
         0x2969f27eed31a480b9c36c764379dbca2cc8fdd1415c3dded62940bcde0bd771,
         0x16ed41e13bb9c0c66ae119424fddbcbc9314dc9fdbdeea55d6c64543dc4903e0],
        [0x2e2419f9ec02ec394c9871c832963dc1b89d743c8c7b964029b2311687b1fe23,
         0x176cc029695ad02582a70eff08a6fd99d057e12e58e7d7b6b16cdfabc8ee2911,
         0x19a3fc0a56702bf417ba7fee3802593fa644470307043f7773279cd71d25d5e0],
        [0x2b90bba00fca0589f617e7dcbfe82e0df706ab640ceb247b791a93b74e36736d,
         0x101071f0032379b697315876690f053d148d4e109f5fb065c8aacc55a0f89bfa,
         0x0ee972cfc5375bf0dfca69bb79fb73c7a687c3d2f966b3d68a3725f0292e4c5d]
    ]

    @staticmethod
    def derive_round_constants() -> List[int]:
        """Derive one constant per state element per round from a fixed domain string"""
        count = (CircomPoseidon.FULL_ROUNDS +
                 CircomPoseidon.PARTIAL_ROUNDS) * CircomPoseidon.WIDTH
        constants = []
        for i in range(count):
            digest = hashlib.blake2b(
                CircomPoseidon.CONSTANTS_DOMAIN + i.to_bytes(4, 'big'),
                digest_size=32
            ).digest()
            constants.append(int.from_bytes(digest, 'big') %
                             CircomPoseidon.PRIME)
        return constants

    ROUND_CONSTANTS: List[int] = []

    @staticmethod
    def ark(state: List[int], constant_idx: int) -> List[int]:
        """Add round constants"""
        constants = CircomPoseidon.ROUND_CONSTANTS
        return [(state[i] + constants[constant_idx + i]) % CircomPoseidon.PRIME
                for i in range(CircomPoseidon.WIDTH)]

    @staticmethod
    def sbox(state: List[int], full_round: bool) -> List[int]:
        """Apply S-box (x^5 mod p)"""
        if full_round:
            return [pow(x, 5, CircomPoseidon.PRIME) for x in state]
        return [pow(state[0], 5, CircomPoseidon.PRIME), state[1], state[2]]

    @staticmethod
    def mix(state: List[int]) -> List[int]:
        """Apply MDS matrix multiplication"""
        return [
            sum(state[j] * CircomPoseidon.MDS_MATRIX[i][j]
                for j in range(CircomPoseidon.WIDTH)) % CircomPoseidon.PRIME
            for i in range(CircomPoseidon.WIDTH)
        ]

    @staticmethod
    def hash(inputs: Sequence[int]) -> int:
        """Hash exactly two field elements"""
        if len(inputs) != 2:
            raise ValueError("Poseidon expects 2 inputs for t=3")

        state = [0, inputs[0] % CircomPoseidon.PRIME,
                 inputs[1] % CircomPoseidon.PRIME]
        half_full = CircomPoseidon.FULL_ROUNDS // 2
        total_rounds = CircomPoseidon.FULL_ROUNDS + CircomPoseidon.PARTIAL_ROUNDS

        constant_idx = 0
        for round_no in range(total_rounds):
            full_round = round_no < half_full or round_no >= half_full + \
                CircomPoseidon.PARTIAL_ROUNDS
            state = CircomPoseidon.ark(state, constant_idx)
            constant_idx += CircomPoseidon.WIDTH
            state = CircomPoseidon.sbox(state, full_round)
            state = CircomPoseidon.mix(state)

        return state[1]  # Output squeezed from state[1] as per Circom


CircomPoseidon.ROUND_CONSTANTS = CircomPoseidon.derive_round_constants()

poseidon_hash = CircomPoseidon.hash

# ============================================================================
# DIGEST ENCODING
# ============================================================================

DIGEST_HEX_LENGTH = 64

# Domain separation tags (ASCII "COMMITMENT_DOMAIN" / "NULLIFIER_DOMAIN")
COMMITMENT_DOMAIN = 0x434f4d4d49544d454e545f444f4d41494e
NULLIFIER_DOMAIN = 0x4e554c4c49464945525f444f4d41494e

# All ones is above the field prime, so no Poseidon output can collide with it
EMPTY_MERKLE_ROOT = "f" * DIGEST_HEX_LENGTH


def encode_digest(value: int) -> str:
    """Encode a field element as a full-width 64 character hex digest"""
    return format(value, '064x')


def decode_digest(digest: str) -> int:
    """Decode a 64 character hex digest, rejecting anything else"""
    if not isinstance(digest, str) or len(digest) != DIGEST_HEX_LENGTH:
        raise ValueError(f"Digest must be {DIGEST_HEX_LENGTH} hex characters")
    return int(digest, 16)


def is_digest(value: Any) -> bool:
    """True for a well-formed 64 character lowercase hex digest"""
    if not isinstance(value, str) or len(value) != DIGEST_HEX_LENGTH:
        return False
    return all(c in "0123456789abcdef" for c in value)


def merkle_root(leaves: Sequence[str]) -> str:
    """
    Fold digests pairwise, left to right, into a single root.

    An unpaired node at the end of a level is carried to the next level
    unchanged. An empty sequence yields EMPTY_MERKLE_ROOT and a single leaf
    is its own root.
    """
    if not leaves:
        return EMPTY_MERKLE_ROOT

    level = [decode_digest(leaf) for leaf in leaves]
    if len(level) == 1:
        return leaves[0]

    while len(level) > 1:
        next_level = []
        for i in range(0, len(level), 2):
            if i + 1 < len(level):
                next_level.append(poseidon_hash([level[i], level[i + 1]]))
            else:
                next_level.append(level[i])
        level = next_level

    return encode_digest(level[0])

# ============================================================================
# EXCEPTIONS AND ARTIFACTS
# ============================================================================


class ZKError(Exception):
    """Base exception for ZK operations"""
    pass


class TrustedSetupError(ZKError):
    """Proving parameters could not be loaded or created"""
    pass


class ProofGenerationError(ZKError):
    """Proof generation failed"""
    pass


@dataclass
class ProofArtifact:
    """Container for proof and metadata"""
    proof: Dict[str, Any]
    public_signals: List[str]
    generation_time: float
    verification_key_hash: str
    protocol: str = "poseidon-hmac"
    timestamp: float = field(default_factory=time.time)

    @property
    def commitment(self) -> str:
        return self.public_signals[0]

    @property
    def nullifier_hash(self) -> str:
        return self.public_signals[1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'proof': self.proof,
            'public_signals': list(self.public_signals),
            'generation_time': self.generation_time,
            'verification_key_hash': self.verification_key_hash,
            'protocol': self.protocol,
            'timestamp': self.timestamp,
        }

# ============================================================================
# PROOF SERVICE CONTRACT
# ============================================================================


class ProofService(ABC):
    """
    Proving capability consumed by the bridge engine.

    Any backend must keep the positional contract of `prove`: public signal
    index 0 is the commitment and index 1 is the nullifier hash.
    """

    async def initialize(self):
        """One-time parameter setup. Safe to call repeatedly."""

    @abstractmethod
    def commit(self, amount: int, secret: int, nullifier_seed: int) -> str:
        ...

    @abstractmethod
    def nullifier_hash(self, secret: int, nullifier_seed: int) -> str:
        ...

    @abstractmethod
    def prove(self, amount: int, secret: int, nullifier_seed: int, recipient: str,
              source_chain_id: int, destination_chain_id: int) -> ProofArtifact:
        ...

    @abstractmethod
    def verify(self, proof: Any, public_signals: Any) -> bool:
        """
        Check `proof` against its public signals, never raising.

        The bridge engine passes the full route list
        [commitment, nullifier, recipient, source_chain_id, destination_chain_id],
        with chain ids as decimal strings. Backends must accept this five-signal
        form; the first two elements alone are the minimal statement.
        """

    def merkle_root(self, ordered_commitments: Sequence[str]) -> str:
        return merkle_root(ordered_commitments)

# ============================================================================
# POSEIDON / HMAC BACKEND
# ============================================================================


class PoseidonProofSystem(ProofService):
    """
    Designated-verifier proof backend.

    Commitments and nullifiers are Poseidon digests. A proof is a set of
    HMAC-SHA256 tags keyed by the proving key and arranged in the Groth16
    pi_a/pi_b/pi_c layout:

        pi_a  statement tag over (commitment, nullifier)
        pi_b  [route tag over (recipient, source, destination), seal over pi_a + pi_b[0]]
        pi_c  hash of the verification key the proof was made under
    """

    PROTOCOL = "poseidon-hmac"
    CURVE = "bn128"
    KEY_BYTES = 32

    def __init__(self, key_file: Optional[Path] = None, proving_key: Optional[bytes] = None):
        self.key_file = Path(key_file) if key_file else None
        self._proving_key: Optional[bytes] = proving_key
        self._vkey_hash: Optional[str] = None
        if proving_key is not None:
            self._install_key(proving_key)

    @property
    def is_initialized(self) -> bool:
        return self._proving_key is not None

    @property
    def verification_key_hash(self) -> Optional[str]:
        return self._vkey_hash

    async def initialize(self):
        if self.is_initialized:
            return
        self.setup()

    def setup(self):
        """Load the proving key from disk or create a fresh one"""
        if self.key_file is not None and self.key_file.exists():
            key = self._read_key_file(self.key_file)
            logger.info(f"Loaded proving key from {self.key_file}")
        else:
            key = secrets.token_bytes(self.KEY_BYTES)
            if self.key_file is not None:
                self._write_key_file(self.key_file, key)
                logger.info(f"Generated new proving key at {self.key_file}")
            else:
                logger.info("Generated ephemeral proving key")

        self._install_key(key)

    def _install_key(self, key: bytes):
        if len(key) < 16:
            raise TrustedSetupError("Proving key must be at least 16 bytes")
        self._proving_key = key
        self._vkey_hash = hashlib.sha256(
            b"bridge-verification-key" + key).hexdigest()

    @staticmethod
    def _read_key_file(path: Path) -> bytes:
        try:
            return bytes.fromhex(path.read_text().strip())
        except (OSError, ValueError) as e:
            raise TrustedSetupError(
                f"Cannot read proving key {path}: {e}") from e

    @staticmethod
    def _write_key_file(path: Path, key: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                     stat.S_IRUSR | stat.S_IWUSR)
        try:
            os.write(fd, key.hex().encode())
            os.fsync(fd)
        finally:
            os.close(fd)

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    @staticmethod
    def _field_element(name: str, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProofGenerationError(f"{name} must be an integer")
        if value <= 0 or value >= CircomPoseidon.PRIME:
            raise ProofGenerationError(
                f"{name} must be a non-zero field element")
        return value

    def commit(self, amount: int, secret: int, nullifier_seed: int) -> str:
        amount = self._field_element("amount", amount)
        secret = self._field_element("secret", secret)
        nullifier_seed = self._field_element("nullifier seed", nullifier_seed)

        state = poseidon_hash([COMMITMENT_DOMAIN, amount])
        state = poseidon_hash([state, secret])
        return encode_digest(poseidon_hash([state, nullifier_seed]))

    def nullifier_hash(self, secret: int, nullifier_seed: int) -> str:
        secret = self._field_element("secret", secret)
        nullifier_seed = self._field_element("nullifier seed", nullifier_seed)

        state = poseidon_hash([NULLIFIER_DOMAIN, secret])
        return encode_digest(poseidon_hash([state, nullifier_seed]))

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def _tag(self, label: bytes, *parts: str) -> str:
        message = label + b"\x00" + b"\x00".join(p.encode() for p in parts)
        return hmac.new(self._proving_key, message, hashlib.sha256).hexdigest()

    @staticmethod
    def _split(digest: str) -> List[str]:
        return [digest[:32], digest[32:]]

    def prove(self, amount: int, secret: int, nullifier_seed: int, recipient: str,
              source_chain_id: int, destination_chain_id: int) -> ProofArtifact:
        if not self.is_initialized:
            raise ProofGenerationError("Proving key not set up; call initialize() first")
        if not isinstance(recipient, str) or not recipient:
            raise ProofGenerationError("Recipient must be a non-empty string")
        if source_chain_id == destination_chain_id:
            raise ProofGenerationError(
                "Source and destination chains must differ")

        start_time = time.time()

        commitment = self.commit(amount, secret, nullifier_seed)
        nullifier = self.nullifier_hash(secret, nullifier_seed)
        source, destination = str(source_chain_id), str(destination_chain_id)

        statement = self._tag(b"statement", commitment, nullifier)
        route = self._tag(b"route", recipient, source, destination)
        seal = self._tag(b"seal", statement, route)

        proof = {
            'pi_a': self._split(statement),
            'pi_b': [self._split(route), self._split(seal)],
            'pi_c': self._split(self._vkey_hash),
            'protocol': self.PROTOCOL,
            'curve': self.CURVE,
        }

        generation_time = time.time() - start_time
        logger.debug(
            f"Generated transfer proof for commitment {commitment[:16]}... in {generation_time:.3f}s")

        return ProofArtifact(
            proof=proof,
            public_signals=[commitment, nullifier,
                            recipient, source, destination],
            generation_time=generation_time,
            verification_key_hash=self._vkey_hash,
            protocol=self.PROTOCOL,
        )

    @classmethod
    def _is_half_pair(cls, value: Any) -> bool:
        return (isinstance(value, list) and len(value) == 2 and
                all(isinstance(v, str) and len(v) == 32 for v in value))

    def _well_formed(self, proof: Any) -> bool:
        if not isinstance(proof, dict):
            return False
        if proof.get('protocol') != self.PROTOCOL or proof.get('curve') != self.CURVE:
            return False
        pi_b = proof.get('pi_b')
        return (self._is_half_pair(proof.get('pi_a')) and
                isinstance(pi_b, list) and len(pi_b) == 2 and
                all(self._is_half_pair(pair) for pair in pi_b) and
                self._is_half_pair(proof.get('pi_c')))

    def verify(self, proof: Any, public_signals: Any) -> bool:
        """
        Check a proof against [commitment, nullifier, (recipient, source, destination)].

        Returns False for anything malformed instead of raising. When the
        route signals are supplied they are checked as well.
        """
        if not self.is_initialized:
            logger.warning("Verification requested before setup")
            return False

        try:
            if not self._well_formed(proof):
                return False
            if not isinstance(public_signals, (list, tuple)) or len(public_signals) < 2:
                return False
            if not all(isinstance(s, str) for s in public_signals):
                return False

            commitment, nullifier = public_signals[0], public_signals[1]
            if not (is_digest(commitment) and is_digest(nullifier)):
                return False

            if not hmac.compare_digest("".join(proof['pi_c']), self._vkey_hash):
                return False

            statement = "".join(proof['pi_a'])
            route = "".join(proof['pi_b'][0])
            seal = "".join(proof['pi_b'][1])

            if not hmac.compare_digest(statement, self._tag(b"statement", commitment, nullifier)):
                return False
            if not hmac.compare_digest(seal, self._tag(b"seal", statement, route)):
                return False

            if len(public_signals) >= 5:
                expected_route = self._tag(
                    b"route", public_signals[2], public_signals[3], public_signals[4])
                if not hmac.compare_digest(route, expected_route):
                    return False

            return True

        except Exception as e:
            logger.error(f"Verification failed: {e}")
            return False


def proof_fingerprint(proof: Dict[str, Any]) -> str:
    """Short stable identifier of a proof, for logs"""
    return hashlib.sha256(json.dumps(proof, sort_keys=True).encode()).hexdigest()[:16]
