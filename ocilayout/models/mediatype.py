"""Well known media types and the Docker to OCI equivalence table."""

from __future__ import annotations

import re

# Docker schema1 (deprecated)
DOCKER1_MANIFEST = "application/vnd.docker.distribution.manifest.v1+json"
DOCKER1_MANIFEST_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"

# Docker schema2
DOCKER2_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER2_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER2_IMAGE_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER2_LAYER = "application/vnd.docker.image.rootfs.diff.tar"
DOCKER2_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"
DOCKER2_LAYER_ZSTD = "application/vnd.docker.image.rootfs.diff.tar.zstd"
DOCKER2_FOREIGN_LAYER = "application/vnd.docker.image.rootfs.foreign.diff.tar.gzip"

# OCI v1
OCI1_ARTIFACT = "application/vnd.oci.artifact.manifest.v1+json"
OCI1_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI1_MANIFEST_LIST = "application/vnd.oci.image.index.v1+json"
OCI1_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI1_LAYER = "application/vnd.oci.image.layer.v1.tar"
OCI1_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI1_LAYER_ZSTD = "application/vnd.oci.image.layer.v1.tar+zstd"
OCI1_FOREIGN_LAYER = "application/vnd.oci.image.layer.nondistributable.v1.tar"
OCI1_FOREIGN_LAYER_GZIP = "application/vnd.oci.image.layer.nondistributable.v1.tar+gzip"
OCI1_FOREIGN_LAYER_ZSTD = "application/vnd.oci.image.layer.nondistributable.v1.tar+zstd"
OCI1_EMPTY = "application/vnd.oci.empty.v1+json"

BUILDKIT_CACHE_CONFIG = "application/vnd.buildkit.cacheconfig.v0"

# Historical media types mapped onto their OCI equivalents.  Types missing
# from this table are only compatible with themselves.
TO_OCI: dict[str, str] = {
    DOCKER2_MANIFEST_LIST: OCI1_MANIFEST_LIST,
    DOCKER2_MANIFEST: OCI1_MANIFEST,
    DOCKER2_IMAGE_CONFIG: OCI1_IMAGE_CONFIG,
    DOCKER2_LAYER: OCI1_LAYER,
    DOCKER2_LAYER_GZIP: OCI1_LAYER_GZIP,
    DOCKER2_LAYER_ZSTD: OCI1_LAYER_ZSTD,
    OCI1_MANIFEST_LIST: OCI1_MANIFEST_LIST,
    OCI1_MANIFEST: OCI1_MANIFEST,
    OCI1_IMAGE_CONFIG: OCI1_IMAGE_CONFIG,
    OCI1_LAYER: OCI1_LAYER,
    OCI1_LAYER_GZIP: OCI1_LAYER_GZIP,
    OCI1_LAYER_ZSTD: OCI1_LAYER_ZSTD,
}

MANIFEST_TYPES: frozenset[str] = frozenset(
    {
        DOCKER1_MANIFEST,
        DOCKER1_MANIFEST_SIGNED,
        DOCKER2_MANIFEST,
        DOCKER2_MANIFEST_LIST,
        OCI1_ARTIFACT,
        OCI1_MANIFEST,
        OCI1_MANIFEST_LIST,
    }
)

_VALID_RE = re.compile(
    r"^[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]{0,126}/[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]{0,126}\Z"
)


def base(orig: str) -> str:
    """Strip parameters from a Content-Type style value, lowercased."""
    return orig.split(";", 1)[0].strip().lower()


def valid(media_type: str) -> bool:
    """Return True if the media type follows the RFC 6838 naming rules."""
    return bool(_VALID_RE.match(media_type))


def compatible(a: str, b: str) -> bool:
    """Return True if two media types are equal or share an OCI equivalent."""
    if a == b:
        return True
    oci_a = TO_OCI.get(a, "")
    return oci_a != "" and oci_a == TO_OCI.get(b, "")
