"""Digest helpers for content addressing.

Digests use the ``<algorithm>:<hex>`` form.  Only algorithms that hashlib
provides and the OCI image spec registers are accepted for computing and
validating content; the reference grammar is looser and accepts any
``algorithm:hex`` with at least 32 hex characters.
"""

from __future__ import annotations

import hashlib
import re
from typing import BinaryIO

from ocilayout.core.errors import DigestMismatchError, InvalidDigestError

CANONICAL_ALGORITHM = "sha256"

# algorithm -> length of the hex encoded digest
_ALGORITHMS: dict[str, int] = {
    "sha256": 64,
    "sha512": 128,
}

_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+\Z")
_HEX_RE = re.compile(r"^[a-f0-9]+\Z")

_CHUNK = 1024 * 1024


def parse_digest(digest: str) -> tuple[str, str]:
    """Split and validate a digest, returning ``(algorithm, hex)``.

    Raises InvalidDigestError for malformed digests, unknown algorithms,
    or a hex portion of the wrong length.
    """
    if not digest or not _DIGEST_RE.match(digest):
        raise InvalidDigestError(f"invalid digest format: {digest!r}")
    algorithm, encoded = digest.split(":", 1)
    length = _ALGORITHMS.get(algorithm)
    if length is None:
        raise InvalidDigestError(f"unsupported digest algorithm {algorithm!r} in {digest!r}")
    if len(encoded) != length or not _HEX_RE.match(encoded):
        raise InvalidDigestError(
            f"invalid {algorithm} digest {digest!r}: expected {length} lowercase hex characters"
        )
    return algorithm, encoded


def is_valid_digest(digest: str) -> bool:
    """Return True when *digest* parses with a supported algorithm."""
    try:
        parse_digest(digest)
    except InvalidDigestError:
        return False
    return True


def new_hasher(algorithm: str = CANONICAL_ALGORITHM) -> "hashlib._Hash":
    if algorithm not in _ALGORITHMS:
        raise InvalidDigestError(f"unsupported digest algorithm {algorithm!r}")
    return hashlib.new(algorithm)


def digest_bytes(data: bytes, algorithm: str = CANONICAL_ALGORITHM) -> str:
    """Return the ``algorithm:hex`` digest of raw bytes."""
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def digest_stream(stream: BinaryIO, algorithm: str = CANONICAL_ALGORITHM) -> tuple[str, int]:
    """Hash a stream to its end, returning ``(digest, size)``."""
    hasher = new_hasher(algorithm)
    size = 0
    while True:
        chunk = stream.read(_CHUNK)
        if not chunk:
            break
        hasher.update(chunk)
        size += len(chunk)
    return f"{algorithm}:{hasher.hexdigest()}", size


def algorithm_of(digest: str, default: str = CANONICAL_ALGORITHM) -> str:
    """Return the algorithm of a valid digest, or *default* when unset/invalid."""
    if digest and is_valid_digest(digest):
        return digest.split(":", 1)[0]
    return default


def verify_bytes(data: bytes, digest: str) -> None:
    """Raise DigestMismatchError unless *data* hashes to *digest*."""
    algorithm, _ = parse_digest(digest)
    computed = digest_bytes(data, algorithm)
    if computed != digest:
        raise DigestMismatchError(f"digest mismatch, expected {digest}, computed {computed}")
