"""
Signed randomness proofs for the in-process oracle.

Ed25519 signatures are deterministic, so signing a request seed yields a value
the key holder cannot bias after the fact, and anyone holding the public key
can check the proof and re-derive the random words from it.
"""

import hashlib
from typing import List, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

UINT256_MASK = (1 << 256) - 1


class RandomnessProofError(Exception):
    """Raised when a randomness proof does not verify."""


def expand_words(proof: bytes, num_words: int) -> List[int]:
    """Derive ``num_words`` uint256 values from a proof."""
    words = []
    for index in range(num_words):
        digest = hashlib.sha256(proof + index.to_bytes(4, "big")).digest()
        words.append(int.from_bytes(digest, "big") & UINT256_MASK)
    return words


def request_seed(request_id: int, key_hash: str, consumer: str) -> bytes:
    """Seed bound to one request so a proof cannot be reused for another."""
    material = f"{request_id}:{key_hash}:{consumer.lower()}".encode()
    return hashlib.sha256(material).digest()


class RandomnessProver:
    """Holds the oracle signing key and produces proof-backed random words."""

    def __init__(self, private_key: Ed25519PrivateKey | None = None):
        self.private_key = private_key or Ed25519PrivateKey.generate()
        self.public_key = self.private_key.public_key()

    @classmethod
    def from_seed_hex(cls, seed_hex: str) -> "RandomnessProver":
        """Load a prover from a 32-byte hex private key (for reproducible local runs)."""
        raw = bytes.fromhex(seed_hex[2:] if seed_hex.startswith("0x") else seed_hex)
        return cls(Ed25519PrivateKey.from_private_bytes(raw))

    def public_key_hex(self) -> str:
        raw = self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return raw.hex()

    def prove(self, seed: bytes, num_words: int = 1) -> Tuple[bytes, List[int]]:
        proof = self.private_key.sign(seed)
        return proof, expand_words(proof, num_words)


def verify_randomness(public_key_hex: str, seed: bytes, proof: bytes, num_words: int = 1) -> List[int]:
    """Check ``proof`` against ``seed`` and return the words it commits to."""
    public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
    try:
        public_key.verify(proof, seed)
    except InvalidSignature as exc:
        logger.warning("Randomness proof rejected for seed %s", seed.hex())
        raise RandomnessProofError("randomness proof does not match seed") from exc
    return expand_words(proof, num_words)
