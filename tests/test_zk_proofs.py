"""Proof service: Poseidon digests, proofs and the Merkle accumulator"""

import asyncio
import copy

import pytest

from zk import (
    EMPTY_MERKLE_ROOT,
    CircomPoseidon,
    PoseidonProofSystem,
    ProofGenerationError,
    TrustedSetupError,
    decode_digest,
    encode_digest,
    is_digest,
    merkle_root,
    poseidon_hash,
    proof_fingerprint,
)

SECRET = 123456789
SEED = 987654321


def make_proof(proof_system, amount=1000, recipient="miden_recipient_1", src=0, dst=1):
    return proof_system.prove(amount, SECRET, SEED, recipient, src, dst)


# ============================================================================
# POSEIDON
# ============================================================================


def test_round_constants_cover_every_round():
    expected = (CircomPoseidon.FULL_ROUNDS + CircomPoseidon.PARTIAL_ROUNDS) * CircomPoseidon.WIDTH
    assert len(CircomPoseidon.ROUND_CONSTANTS) == expected
    assert all(0 <= c < CircomPoseidon.PRIME for c in CircomPoseidon.ROUND_CONSTANTS)
    assert CircomPoseidon.derive_round_constants() == CircomPoseidon.ROUND_CONSTANTS


def test_poseidon_is_deterministic_and_in_field():
    a = poseidon_hash([1, 2])
    assert a == poseidon_hash([1, 2])
    assert 0 <= a < CircomPoseidon.PRIME
    assert a != poseidon_hash([2, 1])


def test_poseidon_rejects_wrong_arity():
    with pytest.raises(ValueError):
        poseidon_hash([1, 2, 3])


def test_digest_encoding():
    digest = encode_digest(255)
    assert len(digest) == 64
    assert digest.endswith("ff")
    assert decode_digest(digest) == 255
    assert is_digest(digest)
    assert not is_digest(digest[:-1])
    assert not is_digest("z" * 64)
    with pytest.raises(ValueError):
        decode_digest("abc")


# ============================================================================
# COMMITMENTS AND NULLIFIERS
# ============================================================================


def test_commitment_is_deterministic(proof_system):
    c1 = proof_system.commit(1000, SECRET, SEED)
    c2 = proof_system.commit(1000, SECRET, SEED)
    assert c1 == c2
    assert is_digest(c1)


def test_commitment_depends_on_every_input(proof_system):
    base = proof_system.commit(1000, SECRET, SEED)
    assert proof_system.commit(1001, SECRET, SEED) != base
    assert proof_system.commit(1000, SECRET + 1, SEED) != base
    assert proof_system.commit(1000, SECRET, SEED + 1) != base


def test_nullifier_ignores_amount(proof_system):
    n = proof_system.nullifier_hash(SECRET, SEED)
    assert n == make_proof(proof_system, amount=1).public_signals[1]
    assert n == make_proof(proof_system, amount=5000).public_signals[1]
    assert n != proof_system.commit(1000, SECRET, SEED)


@pytest.mark.parametrize("amount", [0, -5, True, 1.5, "100", CircomPoseidon.PRIME])
def test_commit_rejects_non_field_amounts(proof_system, amount):
    with pytest.raises(ProofGenerationError):
        proof_system.commit(amount, SECRET, SEED)


def test_commit_is_independent_of_proving_key():
    a = PoseidonProofSystem(proving_key=b"a" * 32)
    b = PoseidonProofSystem(proving_key=b"b" * 32)
    assert a.commit(10, SECRET, SEED) == b.commit(10, SECRET, SEED)


# ============================================================================
# PROVE / VERIFY
# ============================================================================


def test_prove_public_signal_layout(proof_system):
    artifact = make_proof(proof_system)

    assert artifact.public_signals == [
        proof_system.commit(1000, SECRET, SEED),
        proof_system.nullifier_hash(SECRET, SEED),
        "miden_recipient_1", "0", "1",
    ]
    assert artifact.commitment == artifact.public_signals[0]
    assert artifact.nullifier_hash == artifact.public_signals[1]
    assert artifact.proof['protocol'] == "poseidon-hmac"
    assert artifact.proof['curve'] == "bn128"
    assert "".join(artifact.proof['pi_c']) == proof_system.verification_key_hash


def test_verify_accepts_genuine_proof(proof_system):
    artifact = make_proof(proof_system)
    assert proof_system.verify(artifact.proof, artifact.public_signals[:2])
    assert proof_system.verify(artifact.proof, artifact.public_signals)


def test_verify_rejects_other_commitment(proof_system):
    artifact = make_proof(proof_system)
    other = proof_system.commit(1001, SECRET, SEED)
    assert not proof_system.verify(artifact.proof, [other, artifact.public_signals[1]])


def test_verify_rejects_tampered_proof(proof_system):
    artifact = make_proof(proof_system)
    tampered = copy.deepcopy(artifact.proof)
    first = tampered['pi_a'][0]
    tampered['pi_a'][0] = ("0" if first[0] != "0" else "1") + first[1:]
    assert not proof_system.verify(tampered, artifact.public_signals)


def test_verify_rejects_changed_route(proof_system):
    artifact = make_proof(proof_system)
    signals = list(artifact.public_signals)
    signals[2] = "someone_else"
    assert not proof_system.verify(artifact.proof, signals)


def test_verify_rejects_foreign_key(proof_system):
    artifact = make_proof(proof_system)
    other = PoseidonProofSystem(proving_key=b"x" * 32)
    assert not other.verify(artifact.proof, artifact.public_signals)


@pytest.mark.parametrize("proof", [None, {}, "proof", [], {'pi_a': [], 'protocol': 'groth16'}])
def test_verify_returns_false_for_malformed_input(proof_system, proof):
    artifact = make_proof(proof_system)
    assert proof_system.verify(proof, artifact.public_signals) is False


def test_verify_rejects_bad_signals(proof_system):
    artifact = make_proof(proof_system)
    assert not proof_system.verify(artifact.proof, None)
    assert not proof_system.verify(artifact.proof, [artifact.public_signals[0]])
    assert not proof_system.verify(artifact.proof, ["nothex", artifact.public_signals[1]])


def test_prove_rejects_same_chain(proof_system):
    with pytest.raises(ProofGenerationError):
        make_proof(proof_system, src=1, dst=1)


def test_prove_rejects_empty_recipient(proof_system):
    with pytest.raises(ProofGenerationError):
        make_proof(proof_system, recipient="")


def test_prove_requires_setup():
    system = PoseidonProofSystem()
    with pytest.raises(ProofGenerationError):
        make_proof(system)
    assert system.verify({}, []) is False


def test_proof_fingerprint_is_stable(proof_system):
    artifact = make_proof(proof_system)
    assert proof_fingerprint(artifact.proof) == proof_fingerprint(copy.deepcopy(artifact.proof))
    assert len(proof_fingerprint(artifact.proof)) == 16


# ============================================================================
# SETUP
# ============================================================================


def test_setup_persists_key(tmp_path):
    key_file = tmp_path / "keys" / "proving.key"
    first = PoseidonProofSystem(key_file=key_file)
    asyncio.run(first.initialize())
    assert key_file.exists()
    assert (key_file.stat().st_mode & 0o777) == 0o600

    second = PoseidonProofSystem(key_file=key_file)
    asyncio.run(second.initialize())
    assert second.verification_key_hash == first.verification_key_hash

    artifact = make_proof(first)
    assert second.verify(artifact.proof, artifact.public_signals)


def test_setup_rejects_corrupt_key_file(tmp_path):
    key_file = tmp_path / "proving.key"
    key_file.write_text("not hex")
    with pytest.raises(TrustedSetupError):
        PoseidonProofSystem(key_file=key_file).setup()


def test_short_key_rejected():
    with pytest.raises(TrustedSetupError):
        PoseidonProofSystem(proving_key=b"short")


# ============================================================================
# MERKLE ROOT
# ============================================================================


def test_merkle_root_empty_and_single(proof_system):
    assert merkle_root([]) == EMPTY_MERKLE_ROOT
    assert proof_system.merkle_root([]) == EMPTY_MERKLE_ROOT

    leaf = proof_system.commit(1, SECRET, SEED)
    assert merkle_root([leaf]) == leaf


def test_merkle_root_folds_pairs_and_carries_odd_leaf(proof_system):
    leaves = [proof_system.commit(i, SECRET, SEED) for i in range(1, 4)]
    a, b, c = (decode_digest(leaf) for leaf in leaves)

    assert merkle_root(leaves[:2]) == encode_digest(poseidon_hash([a, b]))
    assert merkle_root(leaves) == encode_digest(poseidon_hash([poseidon_hash([a, b]), c]))


def test_merkle_root_depends_on_order(proof_system):
    leaves = [proof_system.commit(i, SECRET, SEED) for i in range(1, 5)]
    assert merkle_root(leaves) == merkle_root(list(leaves))
    assert merkle_root(leaves) != merkle_root(list(reversed(leaves)))
