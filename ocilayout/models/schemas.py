"""Flat records for each manifest schema.

One record per wire format.  Records only describe the JSON shape; digest
handling, capabilities and byte stability live in
:mod:`ocilayout.core.manifest`.  Unknown fields are preserved so a
modified manifest re-serializes without losing data.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ocilayout.models import mediatype
from ocilayout.models.descriptor import Descriptor

ANNOTATION_REF_NAME = "org.opencontainers.image.ref.name"
ANNOTATION_CREATED = "org.opencontainers.image.created"
IMAGE_LAYOUT_VERSION = "1.0.0"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    def to_json(self) -> bytes:
        """Serialize compactly with camelCase keys and unset fields dropped."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


# ---------------------------------------------------------------------------
# Docker schema1
# ---------------------------------------------------------------------------


class FSLayer(_Record):
    blob_sum: str = Field(alias="blobSum")


class History(_Record):
    v1_compatibility: str = Field(alias="v1Compatibility")


class Schema1Manifest(_Record):
    """Docker schema1 image manifest (deprecated)."""

    schema_version: int = Field(default=1, alias="schemaVersion")
    media_type: str | None = Field(default=None, alias="mediaType")
    name: str = ""
    tag: str = ""
    architecture: str = ""
    fs_layers: list[FSLayer] = Field(default_factory=list, alias="fsLayers")
    history: list[History] = Field(default_factory=list)


class Schema1SignedManifest(Schema1Manifest):
    """Docker schema1 manifest wrapped in a JWS envelope."""

    signatures: list[dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Docker schema2
# ---------------------------------------------------------------------------


class Schema2Manifest(_Record):
    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=mediatype.DOCKER2_MANIFEST, alias="mediaType")
    config: Descriptor = Field(default_factory=Descriptor)
    layers: list[Descriptor] = Field(default_factory=list)
    annotations: dict[str, str] | None = None


class Schema2ManifestList(_Record):
    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=mediatype.DOCKER2_MANIFEST_LIST, alias="mediaType")
    manifests: list[Descriptor] = Field(default_factory=list)
    annotations: dict[str, str] | None = None


# ---------------------------------------------------------------------------
# OCI
# ---------------------------------------------------------------------------


class OCIManifest(_Record):
    """OCI image manifest, optionally carrying an artifact type and subject."""

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str | None = Field(default=mediatype.OCI1_MANIFEST, alias="mediaType")
    artifact_type: str | None = Field(default=None, alias="artifactType")
    config: Descriptor = Field(default_factory=Descriptor)
    layers: list[Descriptor] = Field(default_factory=list)
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None


class OCIIndex(_Record):
    """OCI image index.  Also used as the layout's ``index.json``."""

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str | None = Field(default=mediatype.OCI1_MANIFEST_LIST, alias="mediaType")
    artifact_type: str | None = Field(default=None, alias="artifactType")
    manifests: list[Descriptor] = Field(default_factory=list)
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None


class OCIArtifact(_Record):
    """OCI artifact manifest (withdrawn before OCI image 1.1, still read and written)."""

    media_type: str = Field(default=mediatype.OCI1_ARTIFACT, alias="mediaType")
    artifact_type: str | None = Field(default=None, alias="artifactType")
    blobs: list[Descriptor] | None = None
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None


class ImageLayout(_Record):
    """Contents of the ``oci-layout`` marker file."""

    image_layout_version: str = Field(default=IMAGE_LAYOUT_VERSION, alias="imageLayoutVersion")
