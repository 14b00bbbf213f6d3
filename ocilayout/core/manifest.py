"""Manifest variants and their capabilities.

Each variant wraps one schema record from :mod:`ocilayout.models.schemas`
together with the raw bytes it was read from and the descriptor of those
bytes.  Capabilities are expressed as Protocols:

- :class:`Subjecter`: optional subject back-link (OCI manifest, index, artifact)
- :class:`Indexer`: list of child manifests (Docker manifest list, OCI index)
- :class:`Imager`: config and layers (Docker schema1/2, OCI manifest, OCI artifact)
- :class:`Annotator`: annotation map (OCI variants, Docker schema2)

Probe with :func:`as_subjecter`, :func:`as_indexer`, :func:`as_imager` and
:func:`as_annotator`, which return ``None`` when a variant lacks the
capability.

An unmodified manifest returns the exact bytes it was parsed from.  Setters
rebuild the bytes from the record and recompute the descriptor, so the
descriptor digest always matches :meth:`raw_body` (for signed schema1 it
matches the canonical payload inside the JWS envelope).
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, ClassVar, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ValidationError

from ocilayout.core.errors import (
    DigestMismatchError,
    ManifestNotSetError,
    ManifestParseError,
    NotFoundError,
    UnsupportedError,
    UnsupportedMediaTypeError,
)
from ocilayout.core.hasher import algorithm_of, digest_bytes
from ocilayout.models import mediatype
from ocilayout.models.descriptor import Descriptor, MatchOpts, descriptor_list_search
from ocilayout.models.platform import Platform
from ocilayout.models.reference import Ref
from ocilayout.models.schemas import (
    FSLayer,
    OCIArtifact,
    OCIIndex,
    OCIManifest,
    Schema1Manifest,
    Schema1SignedManifest,
    Schema2Manifest,
    Schema2ManifestList,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class Subjecter(Protocol):
    def get_subject(self) -> Descriptor | None: ...

    def set_subject(self, subject: Descriptor | None) -> None: ...


@runtime_checkable
class Indexer(Protocol):
    def get_manifest_list(self) -> list[Descriptor]: ...

    def set_manifest_list(self, descriptors: list[Descriptor]) -> None: ...


@runtime_checkable
class Imager(Protocol):
    def get_config(self) -> Descriptor: ...

    def get_layers(self) -> list[Descriptor]: ...

    def set_config(self, config: Descriptor) -> None: ...

    def set_layers(self, layers: list[Descriptor]) -> None: ...

    def get_size(self) -> int: ...


@runtime_checkable
class Annotator(Protocol):
    def get_annotations(self) -> dict[str, str]: ...

    def set_annotation(self, key: str, value: str) -> None: ...


# ---------------------------------------------------------------------------
# Shared state
# ---------------------------------------------------------------------------


class _Common:
    """Raw bytes, descriptor, and schema record shared by every variant."""

    media_type: ClassVar[str]
    schema: ClassVar[type[BaseModel]]

    def __init__(
        self,
        orig: Any,
        *,
        raw: bytes,
        desc: Descriptor,
        ref: Ref | None = None,
        manifest_set: bool = True,
    ) -> None:
        self._orig = orig
        self._raw = raw
        self._desc = desc
        self._set = manifest_set
        self.ref = ref

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._desc.digest or 'unset'})"

    @property
    def descriptor(self) -> Descriptor:
        """Media type, digest and size of this manifest."""
        return self._desc

    @property
    def orig(self) -> Any:
        """The schema record."""
        return self._orig

    def raw_body(self) -> bytes:
        self._require_set()
        return self._raw

    def is_list(self) -> bool:
        return False

    def is_set(self) -> bool:
        """False for head-only manifests that carry just a descriptor."""
        return self._set

    def _require_set(self) -> None:
        if not self._set:
            raise ManifestNotSetError(f"manifest {self._desc.digest} has no body")

    def set_orig(self, orig: Any) -> None:
        """Replace the schema record and reserialize."""
        if type(orig) is not self.schema:
            raise UnsupportedMediaTypeError(
                f"cannot set {type(orig).__name__} on a {self.media_type} manifest"
            )
        if "media_type" in type(orig).model_fields and getattr(orig, "media_type") != self.media_type:
            orig = orig.model_copy(update={"media_type": self.media_type})
        self._set = True
        self._update(orig)

    def _update(self, orig: Any) -> None:
        raw = orig.to_json()
        self._orig = orig
        self._raw = raw
        self._desc = Descriptor(
            media_type=self.media_type,
            digest=digest_bytes(raw, algorithm_of(self._desc.digest)),
            size=len(raw),
        )

    def _modify(self, **update: Any) -> None:
        self._require_set()
        self._update(self._orig.model_copy(update=update))


class _AnnotationsMixin:
    def get_annotations(self) -> dict[str, str]:
        self._require_set()  # type: ignore[attr-defined]
        return dict(self._orig.annotations or {})  # type: ignore[attr-defined]

    def set_annotation(self, key: str, value: str) -> None:
        self._require_set()  # type: ignore[attr-defined]
        annotations = dict(self._orig.annotations or {})  # type: ignore[attr-defined]
        annotations[key] = value
        self._modify(annotations=annotations)  # type: ignore[attr-defined]


class _SubjectMixin:
    def get_subject(self) -> Descriptor | None:
        self._require_set()  # type: ignore[attr-defined]
        return self._orig.subject  # type: ignore[attr-defined]

    def set_subject(self, subject: Descriptor | None) -> None:
        self._modify(subject=subject)  # type: ignore[attr-defined]


def _unsupported(m: _Common, action: str) -> UnsupportedMediaTypeError:
    return UnsupportedMediaTypeError(f"{action} not available for media type {m.media_type}")


# ---------------------------------------------------------------------------
# Docker schema1
# ---------------------------------------------------------------------------


class Docker1Manifest(_Common):
    media_type = mediatype.DOCKER1_MANIFEST
    schema = Schema1Manifest

    def get_config(self) -> Descriptor:
        raise _unsupported(self, "config")

    def get_layers(self) -> list[Descriptor]:
        self._require_set()
        return [Descriptor(digest=layer.blob_sum) for layer in self._orig.fs_layers]

    def set_config(self, config: Descriptor) -> None:
        raise _unsupported(self, "set config")

    def set_layers(self, layers: list[Descriptor]) -> None:
        self._modify(fs_layers=[FSLayer(blob_sum=d.digest) for d in layers])

    def get_size(self) -> int:
        raise _unsupported(self, "size")


class Docker1SignedManifest(Docker1Manifest):
    """Signed schema1.  The digest covers the canonical (unsigned) payload."""

    media_type = mediatype.DOCKER1_MANIFEST_SIGNED
    schema = Schema1SignedManifest

    def set_orig(self, orig: Any) -> None:
        raise UnsupportedError("signed schema1 manifests cannot be modified")

    def set_layers(self, layers: list[Descriptor]) -> None:
        raise UnsupportedError("signed schema1 manifests cannot be modified")


# ---------------------------------------------------------------------------
# Docker schema2
# ---------------------------------------------------------------------------


class Docker2Manifest(_AnnotationsMixin, _Common):
    media_type = mediatype.DOCKER2_MANIFEST
    schema = Schema2Manifest

    def get_config(self) -> Descriptor:
        self._require_set()
        return self._orig.config

    def get_layers(self) -> list[Descriptor]:
        self._require_set()
        return list(self._orig.layers)

    def set_config(self, config: Descriptor) -> None:
        self._modify(config=config)

    def set_layers(self, layers: list[Descriptor]) -> None:
        self._modify(layers=list(layers))

    def get_size(self) -> int:
        self._require_set()
        return self._orig.config.size + sum(d.size for d in self._orig.layers)


class Docker2ManifestList(_AnnotationsMixin, _Common):
    media_type = mediatype.DOCKER2_MANIFEST_LIST
    schema = Schema2ManifestList

    def is_list(self) -> bool:
        return True

    def get_manifest_list(self) -> list[Descriptor]:
        self._require_set()
        return list(self._orig.manifests)

    def set_manifest_list(self, descriptors: list[Descriptor]) -> None:
        self._modify(manifests=list(descriptors))


# ---------------------------------------------------------------------------
# OCI
# ---------------------------------------------------------------------------


class OCI1Manifest(_SubjectMixin, _AnnotationsMixin, _Common):
    media_type = mediatype.OCI1_MANIFEST
    schema = OCIManifest

    def get_config(self) -> Descriptor:
        self._require_set()
        return self._orig.config

    def get_layers(self) -> list[Descriptor]:
        self._require_set()
        return list(self._orig.layers)

    def set_config(self, config: Descriptor) -> None:
        self._modify(config=config)

    def set_layers(self, layers: list[Descriptor]) -> None:
        self._modify(layers=list(layers))

    def get_size(self) -> int:
        self._require_set()
        return self._orig.config.size + sum(d.size for d in self._orig.layers)


class OCI1Index(_SubjectMixin, _AnnotationsMixin, _Common):
    media_type = mediatype.OCI1_MANIFEST_LIST
    schema = OCIIndex

    def is_list(self) -> bool:
        return True

    def get_manifest_list(self) -> list[Descriptor]:
        self._require_set()
        return list(self._orig.manifests)

    def set_manifest_list(self, descriptors: list[Descriptor]) -> None:
        self._modify(manifests=list(descriptors))


class OCI1Artifact(_SubjectMixin, _AnnotationsMixin, _Common):
    media_type = mediatype.OCI1_ARTIFACT
    schema = OCIArtifact

    def get_config(self) -> Descriptor:
        raise _unsupported(self, "config")

    def get_layers(self) -> list[Descriptor]:
        self._require_set()
        return list(self._orig.blobs or [])

    def set_config(self, config: Descriptor) -> None:
        raise _unsupported(self, "set config")

    def set_layers(self, layers: list[Descriptor]) -> None:
        self._modify(blobs=list(layers))

    def get_size(self) -> int:
        self._require_set()
        return sum(d.size for d in self._orig.blobs or [])


Manifest = Union[
    Docker1Manifest,
    Docker1SignedManifest,
    Docker2Manifest,
    Docker2ManifestList,
    OCI1Manifest,
    OCI1Index,
    OCI1Artifact,
]

_VARIANTS: dict[str, type[_Common]] = {
    cls.media_type: cls
    for cls in (
        Docker1Manifest,
        Docker1SignedManifest,
        Docker2Manifest,
        Docker2ManifestList,
        OCI1Manifest,
        OCI1Index,
        OCI1Artifact,
    )
}

# signed first, it subclasses the unsigned schema1 record
_RECORDS: list[tuple[type[BaseModel], type[_Common]]] = [
    (Schema1SignedManifest, Docker1SignedManifest),
    (Schema1Manifest, Docker1Manifest),
    (Schema2Manifest, Docker2Manifest),
    (Schema2ManifestList, Docker2ManifestList),
    (OCIManifest, OCI1Manifest),
    (OCIIndex, OCI1Index),
    (OCIArtifact, OCI1Artifact),
]


# ---------------------------------------------------------------------------
# Capability probes
# ---------------------------------------------------------------------------


def as_subjecter(m: Any) -> Subjecter | None:
    return m if isinstance(m, Subjecter) else None


def as_indexer(m: Any) -> Indexer | None:
    return m if isinstance(m, Indexer) else None


def as_imager(m: Any) -> Imager | None:
    return m if isinstance(m, Imager) else None


def as_annotator(m: Any) -> Annotator | None:
    return m if isinstance(m, Annotator) else None


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def detect_media_type(body: dict[str, Any]) -> str:
    """Guess the media type of a manifest body lacking a declared one."""
    declared = body.get("mediaType")
    if isinstance(declared, str) and declared:
        return declared
    if body.get("schemaVersion") == 1:
        if body.get("signatures"):
            return mediatype.DOCKER1_MANIFEST_SIGNED
        return mediatype.DOCKER1_MANIFEST
    for key, docker_type, oci_type in (
        ("manifests", mediatype.DOCKER2_MANIFEST_LIST, mediatype.OCI1_MANIFEST_LIST),
        ("layers", mediatype.DOCKER2_MANIFEST, mediatype.OCI1_MANIFEST),
    ):
        entries = body.get(key)
        if isinstance(entries, list) and entries:
            first = entries[0] if isinstance(entries[0], dict) else {}
            if str(first.get("mediaType", "")).startswith("application/vnd.docker."):
                return docker_type
            return oci_type
    return ""


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def canonical_payload(raw: bytes, signatures: list[Any]) -> bytes:
    """Extract the signed payload from a pretty JWS schema1 manifest.

    Every signature's protected header carries ``formatLength`` and
    ``formatTail``; the payload is ``raw[:formatLength] + formatTail`` and
    must agree across signatures.
    """
    if not signatures:
        raise ManifestParseError("signed manifest has no signatures")
    payloads: list[bytes] = []
    for sig in signatures:
        try:
            header = json.loads(_b64url_decode(sig["protected"]))
            length = int(header["formatLength"])
            tail = _b64url_decode(header["formatTail"])
        except (KeyError, TypeError, ValueError) as err:
            raise ManifestParseError(f"malformed JWS signature envelope: {err}") from err
        if length < 0 or length > len(raw):
            raise ManifestParseError(f"JWS formatLength {length} outside manifest of {len(raw)} bytes")
        payloads.append(raw[:length] + tail)
    if any(p != payloads[0] for p in payloads[1:]):
        raise ManifestParseError("JWS signatures disagree on the signed payload")
    return payloads[0]


def from_bytes(
    raw: bytes,
    media_type: str | None = None,
    *,
    ref: Ref | None = None,
    desc: Descriptor | None = None,
) -> Manifest:
    """Decode *raw* into the variant named by *media_type*.

    Parameters
    ----------
    raw:
        Manifest bytes, kept verbatim for :meth:`raw_body`.
    media_type:
        Declared media type.  Falls back to ``desc.media_type`` and then to
        duck typing the body.
    ref:
        Reference the manifest was read from; its digest, if any, is
        enforced.
    desc:
        Expected descriptor; its digest, if any, is enforced and its other
        fields are carried over.

    Raises
    ------
    ManifestParseError
        Malformed JSON, a body that does not decode into the declared
        variant, a media type mismatch, or a malformed JWS envelope.
    UnsupportedMediaTypeError
        The media type is unknown.
    DigestMismatchError
        The bytes do not hash to the expected digest.
    """
    desc = desc or Descriptor()
    if media_type:
        desc = desc.model_copy(update={"media_type": mediatype.base(media_type)})
    if ref is not None and ref.digest and not desc.digest:
        desc = desc.model_copy(update={"digest": ref.digest})
    expected = desc.digest
    name = ref.common_name() if ref is not None else "manifest"

    try:
        body = json.loads(raw)
    except ValueError as err:
        raise ManifestParseError(f"error unmarshaling manifest for {name}: {err}") from err
    if not isinstance(body, dict):
        raise ManifestParseError(f"error unmarshaling manifest for {name}: expected a JSON object")

    mt = desc.media_type or detect_media_type(body)
    cls = _VARIANTS.get(mt)
    if cls is None:
        raise UnsupportedMediaTypeError(f'unsupported media type "{mt}" for {name}')
    try:
        orig = cls.schema.model_validate(body)
    except ValidationError as err:
        raise ManifestParseError(f"error unmarshaling manifest for {name}: {err}") from err
    body_mt = body.get("mediaType")
    if body_mt and body_mt != mt:
        raise ManifestParseError(
            f"manifest contains an unexpected media type: expected {mt}, received {body_mt}"
        )

    content = raw
    if cls is Docker1SignedManifest:
        content = canonical_payload(raw, orig.signatures)
    digest = digest_bytes(content, algorithm_of(expected))
    if expected and expected != digest:
        raise DigestMismatchError(f"manifest digest mismatch, expected {expected}, computed {digest}")
    desc = desc.model_copy(update={"media_type": mt, "digest": digest, "size": len(content)})
    return cls(orig, raw=raw, desc=desc, ref=ref)  # type: ignore[return-value]


def from_orig(orig: BaseModel, *, ref: Ref | None = None) -> Manifest:
    """Build a new manifest from a schema record."""
    for record_type, cls in _RECORDS:
        if type(orig) is record_type:
            break
    else:
        raise UnsupportedMediaTypeError(f"unsupported manifest record {type(orig).__name__}")
    if cls is Docker1SignedManifest:
        raise UnsupportedError("signed schema1 manifests can only be read from their original bytes")
    m = cls(orig, raw=b"", desc=Descriptor(), ref=ref)
    m.set_orig(orig)
    return m  # type: ignore[return-value]


def from_descriptor(desc: Descriptor, *, ref: Ref | None = None) -> Manifest:
    """Build a head-only manifest that knows its descriptor but not its body."""
    cls = _VARIANTS.get(desc.media_type)
    if cls is None:
        raise UnsupportedMediaTypeError(f'unsupported media type "{desc.media_type}"')
    return cls(cls.schema(), raw=b"", desc=desc, ref=ref, manifest_set=False)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Platform helpers
# ---------------------------------------------------------------------------


def get_platform_desc(m: Any, platform: Platform | None) -> Descriptor:
    """Return the child descriptor of an index that best matches *platform*."""
    if platform is None:
        raise NotFoundError("invalid input, platform is not set")
    indexer = as_indexer(m)
    if indexer is None:
        raise UnsupportedMediaTypeError(f"unsupported manifest type: {m.descriptor.media_type}")
    try:
        return descriptor_list_search(indexer.get_manifest_list(), MatchOpts(platform=platform))
    except NotFoundError as err:
        raise NotFoundError(f"platform not found: {platform}") from err


def get_platform_list(m: Any) -> list[Platform]:
    indexer = as_indexer(m)
    if indexer is None:
        raise UnsupportedMediaTypeError(f"unsupported manifest type: {m.descriptor.media_type}")
    return [d.platform for d in indexer.get_manifest_list() if d.platform is not None]
