"""ocilayout data models: references, descriptors, platforms and schema records."""

from ocilayout.models.descriptor import (
    EMPTY_DATA,
    EMPTY_DIGEST,
    Descriptor,
    MatchOpts,
    descriptor_list_filter,
    descriptor_list_search,
)
from ocilayout.models.platform import Platform
from ocilayout.models.reference import Ref, equal_registry, equal_repository, parse, parse_host
from ocilayout.models.schemas import (
    ANNOTATION_REF_NAME,
    ImageLayout,
    OCIArtifact,
    OCIIndex,
    OCIManifest,
    Schema1Manifest,
    Schema1SignedManifest,
    Schema2Manifest,
    Schema2ManifestList,
)

__all__ = [
    # descriptors
    "EMPTY_DATA",
    "EMPTY_DIGEST",
    "Descriptor",
    "MatchOpts",
    "descriptor_list_filter",
    "descriptor_list_search",
    # platform
    "Platform",
    # references
    "Ref",
    "parse",
    "parse_host",
    "equal_registry",
    "equal_repository",
    # schemas
    "ANNOTATION_REF_NAME",
    "ImageLayout",
    "OCIArtifact",
    "OCIIndex",
    "OCIManifest",
    "Schema1Manifest",
    "Schema1SignedManifest",
    "Schema2Manifest",
    "Schema2ManifestList",
]
