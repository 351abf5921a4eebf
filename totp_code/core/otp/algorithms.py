from __future__ import annotations

from enum import Enum


class DigestAlgorithm(str, Enum):
    SHA1 = "sha1"
    SHA224 = "sha224"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @property
    def digest_size(self) -> int:
        return _DIGEST_SIZES[self]

    @property
    def hashlib_name(self) -> str:
        return self.value


_DIGEST_SIZES: dict[DigestAlgorithm, int] = {
    DigestAlgorithm.SHA1: 20,
    DigestAlgorithm.SHA224: 28,
    DigestAlgorithm.SHA256: 32,
    DigestAlgorithm.SHA384: 48,
    DigestAlgorithm.SHA512: 64,
}


def parse_algorithm(name: str | None) -> DigestAlgorithm | None:
    """Map an operator-supplied name to a DigestAlgorithm.

    Matching is case-insensitive and tolerates an ``HMAC`` prefix, so
    ``sha256``, ``HMACSHA256`` and ``hmac-sha256`` all resolve to SHA256.
    Returns None for unknown names.
    """
    if name is None:
        return None
    normalized = name.strip().lower()
    if normalized.startswith("hmac"):
        normalized = normalized[4:].lstrip("-_")
    normalized = normalized.replace("-", "")
    for algorithm in DigestAlgorithm:
        if algorithm.value == normalized:
            return algorithm
    return None


def algorithm_name(algorithm: DigestAlgorithm | None) -> str:
    if algorithm is None:
        return "unknown"
    return algorithm.value
