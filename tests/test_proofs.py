import hashlib

import pytest

from truthchain.models.attestation import ProofRecord
from truthchain.services.proofs import (
    DIGEST_ALGORITHM,
    MERKLE_ALGORITHM,
    DigestProofStrategy,
    MerkleProofStrategy,
    chunk_data,
    create_proof_strategy,
    merkle_root,
    verify_proof,
)


def sha(data):
    return hashlib.sha256(data).digest()


def test_single_chunk_root_is_plain_digest():
    data = b"x" * 100
    assert merkle_root(data, 1024) == hashlib.sha256(data).hexdigest()


def test_odd_level_duplicates_last_node():
    data = b"a" * 4 + b"b" * 4 + b"c" * 2
    h1, h2, h3 = sha(b"aaaa"), sha(b"bbbb"), sha(b"cc")
    expected = sha(sha(h1 + h2) + sha(h3 + h3)).hex()
    assert merkle_root(data, 4) == expected


def test_empty_data():
    proof = MerkleProofStrategy().generate(b"")
    assert proof.root == hashlib.sha256(b"").hexdigest()
    assert proof.chunk_count == 0
    assert verify_proof(b"", proof)


@pytest.mark.parametrize("size", [1, 1023, 1024, 1025, 5000])
@pytest.mark.parametrize("chunk_size", [1, 64, 1024])
def test_generated_proofs_verify(size, chunk_size):
    data = bytes(i % 251 for i in range(size))
    proof = MerkleProofStrategy(chunk_size).generate(data)

    assert proof.chunk_count == len(chunk_data(data, chunk_size))
    assert proof.chunk_size == chunk_size
    assert proof.algorithm == MERKLE_ALGORITHM
    assert verify_proof(data, proof)


@pytest.mark.parametrize("position", [0, 1500, 2999])
def test_single_byte_flip_fails(position):
    data = bytearray(b"\x00" * 3000)
    proof = MerkleProofStrategy(1024).generate(bytes(data))
    data[position] ^= 0x01
    assert not verify_proof(bytes(data), proof)


def test_verify_uses_proof_chunk_size():
    data = b"z" * 3000
    proof = MerkleProofStrategy(256).generate(data)
    assert MerkleProofStrategy(1024).verify(data, proof)


def test_digest_strategy_matches_legacy_format():
    data = b"f" * 64
    proof = DigestProofStrategy().generate(data)
    assert proof.root == hashlib.sha256(data).hexdigest()
    assert proof.chunk_count == 1
    assert proof.chunk_size == 64
    assert proof.algorithm == DIGEST_ALGORITHM

    # either strategy verifies the other's proofs
    assert MerkleProofStrategy().verify(data, proof)
    assert DigestProofStrategy().verify(data, MerkleProofStrategy().generate(data))


def test_legacy_wire_names_round_trip():
    data = b"legacy"
    legacy = {
        "merkleRoot": hashlib.sha256(data).hexdigest(),
        "chunks": 1,
        "chunkSize": len(data),
        "algorithm": "SHA-256",
        "timestamp": 1700000000000,
    }
    proof = ProofRecord.model_validate(legacy)
    assert verify_proof(data, proof)
    assert proof.model_dump(by_alias=True) == legacy


def test_fails_closed():
    data = b"data"
    assert not verify_proof(data, ProofRecord(root=None))
    assert not verify_proof(data, ProofRecord(root=hashlib.sha256(data).hexdigest(), algorithm="Seal-IBE"))
    assert not verify_proof(data, ProofRecord(root="00" * 32, algorithm=MERKLE_ALGORITHM, chunk_size=0))


def test_invalid_chunk_size():
    with pytest.raises(ValueError):
        MerkleProofStrategy(0)
    with pytest.raises(ValueError):
        merkle_root(b"data", -1)


def test_create_proof_strategy():
    assert isinstance(create_proof_strategy("merkle", 512), MerkleProofStrategy)
    assert create_proof_strategy("merkle", 512).chunk_size == 512
    assert isinstance(create_proof_strategy("DIGEST"), DigestProofStrategy)
    with pytest.raises(ValueError):
        create_proof_strategy("seal")
