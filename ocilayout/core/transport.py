"""Narrow interfaces the core consumes from its storage backends.

:class:`~ocilayout.core.ocidir.OCIDir` implements all three.  A registry
client would provide the same methods over HTTP.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, BinaryIO, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ocilayout.core.manifest import Manifest
    from ocilayout.models.descriptor import Descriptor
    from ocilayout.models.reference import Ref


@runtime_checkable
class BlobTransport(Protocol):
    """Byte stream access to content addressed blobs."""

    def blob_get(self, ref: Ref, desc: Descriptor) -> BinaryIO:
        """Open the blob for reading.  Raises NotFoundError when absent."""
        ...

    def blob_put(self, ref: Ref, desc: Descriptor, reader: BinaryIO) -> Descriptor:
        """Store the blob and return its verified descriptor."""
        ...


@runtime_checkable
class ManifestTransport(Protocol):
    """Manifest access, shared by registry and local layout backends."""

    def manifest_get(self, ref: Ref) -> Manifest:
        """Fetch and decode a manifest.  Raises NotFoundError when absent."""
        ...

    def manifest_head(self, ref: Ref) -> Manifest:
        """Resolve a manifest's descriptor without its body."""
        ...

    def manifest_put(self, ref: Ref, m: Manifest, *, child: bool = False) -> None:
        ...


@runtime_checkable
class TagDeleter(Protocol):
    """Optional tag deletion.  Backends may raise UnsupportedError."""

    def tag_delete(self, ref: Ref) -> None: ...
