"""Error taxonomy for the layout store.

Parsing errors are surfaced to the caller and never retried.  ``NotFoundError``
is kept distinct from other I/O failures so callers can implement
"create if absent" semantics.  Digest and size mismatches are data-integrity
failures and always fail closed.
"""

from __future__ import annotations


class OciLayoutError(Exception):
    """Base class for all ocilayout errors."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class InvalidReferenceError(OciLayoutError, ValueError):
    """Raised when a reference string does not match the grammar."""


class InvalidDigestError(OciLayoutError, ValueError):
    """Raised when a digest is malformed or uses an unknown algorithm."""


class ManifestParseError(OciLayoutError, ValueError):
    """Raised when manifest bytes cannot be decoded into their declared variant."""


# ---------------------------------------------------------------------------
# Lookup and capability
# ---------------------------------------------------------------------------


class NotFoundError(OciLayoutError, LookupError):
    """Raised when a manifest, blob, or tag does not exist."""


class UnsupportedMediaTypeError(OciLayoutError):
    """Raised when a media type is unknown or lacks a requested capability."""


class UnsupportedError(OciLayoutError):
    """Raised when a backend does not support an operation (e.g. tag deletion)."""


class ManifestNotSetError(OciLayoutError):
    """Raised when a manifest body is needed but only the descriptor is known."""


# ---------------------------------------------------------------------------
# Data integrity
# ---------------------------------------------------------------------------


class DigestMismatchError(OciLayoutError):
    """Raised when content does not hash to its expected digest."""


class SizeMismatchError(OciLayoutError):
    """Raised when content length does not match its descriptor."""


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class CancelledError(OciLayoutError):
    """Raised when a blocking acquire is cancelled before admission."""


class TransactionError(OciLayoutError):
    """Raised when a multi-queue transaction is misused."""
