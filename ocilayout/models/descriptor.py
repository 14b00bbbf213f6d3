"""OCI content descriptors.

A descriptor points at content by media type, size, and digest without
embedding it.  ``same()`` answers "is this the same CAS object" and tolerates
Docker/OCI media type aliases; ``equal()`` is a full field comparison.
"""

from __future__ import annotations

import base64
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ocilayout.core.errors import DigestMismatchError, NotFoundError, SizeMismatchError
from ocilayout.core.hasher import digest_bytes, parse_digest
from ocilayout.models import mediatype
from ocilayout.models import platform as plat
from ocilayout.models.platform import Platform

EMPTY_DATA = b"{}"
EMPTY_DIGEST = digest_bytes(EMPTY_DATA)


class Descriptor(BaseModel):
    """Reference to content addressed data."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    media_type: str = Field(default="", alias="mediaType")
    digest: str = ""
    size: int = 0
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    data: bytes | None = None
    platform: Platform | None = None
    artifact_type: str | None = Field(default=None, alias="artifactType")

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, value: Any) -> Any:
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value

    @field_serializer("data")
    def _encode_data(self, value: bytes | None) -> str | None:
        if value is None:
            return None
        return base64.b64encode(value).decode("ascii")

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def same(self, other: Descriptor) -> bool:
        """Return True if both descriptors point at the same content."""
        if self.digest != other.digest or self.size != other.size:
            return False
        return mediatype.compatible(self.media_type, other.media_type)

    def equal(self, other: Descriptor) -> bool:
        """Return True if the descriptors are identical in every field that matters."""
        if not self.same(other):
            return False
        if self.media_type != other.media_type:
            return False
        if (self.artifact_type or "") != (other.artifact_type or ""):
            return False
        if self.platform is None or other.platform is None:
            if self.platform is not None or other.platform is not None:
                return False
        elif not plat.match(self.platform, other.platform):
            return False
        if self.urls != other.urls:
            return False
        return self.annotations == other.annotations

    # ------------------------------------------------------------------
    # Inline data
    # ------------------------------------------------------------------

    def get_data(self) -> bytes:
        """Return the inline data after verifying its length and digest.

        Raises NotFoundError when there is no inline data, and a
        data-integrity error when the content does not match the descriptor.
        """
        if self.data is None:
            raise NotFoundError(f"descriptor {self.digest} has no inline data")
        if len(self.data) != self.size:
            raise SizeMismatchError(
                f"inline data length {len(self.data)} does not match size {self.size}"
            )
        algorithm, _ = parse_digest(self.digest)
        computed = digest_bytes(self.data, algorithm)
        if computed != self.digest:
            raise DigestMismatchError(
                f"inline data digest mismatch, expected {self.digest}, computed {computed}"
            )
        return self.data

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match(self, opts: MatchOpts) -> bool:
        """Return True if the descriptor satisfies every condition in *opts*."""
        if opts.artifact_type and self.artifact_type != opts.artifact_type:
            return False
        if opts.annotations:
            if self.annotations is None:
                return False
            for key, value in opts.annotations.items():
                if key not in self.annotations:
                    return False
                if value and self.annotations[key] != value:
                    return False
        if opts.platform is not None:
            if self.platform is None:
                return False
            if not plat.compatible(opts.platform, self.platform):
                return False
        return True

    def to_json_dict(self) -> dict[str, Any]:
        """Return the OCI JSON form (camelCase, empty fields omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MatchOpts(BaseModel):
    """Conditions for filtering descriptor lists."""

    model_config = ConfigDict(frozen=True)

    platform: Platform | None = None
    artifact_type: str = ""
    annotations: dict[str, str] = {}
    sort_annotation: str = ""
    sort_desc: bool = False


def descriptor_list_filter(descriptors: list[Descriptor], opts: MatchOpts) -> list[Descriptor]:
    """Return the descriptors that match *opts*, sorted when requested.

    Descriptors missing the sort annotation are placed last.
    """
    result = [d for d in descriptors if d.match(opts)]
    if opts.sort_annotation:
        key = opts.sort_annotation
        present = [d for d in result if d.annotations and key in d.annotations]
        missing = [d for d in result if not (d.annotations and key in d.annotations)]
        present.sort(key=lambda d: d.annotations[key], reverse=opts.sort_desc)  # type: ignore[index]
        result = present + missing
    return result


def descriptor_list_search(descriptors: list[Descriptor], opts: MatchOpts) -> Descriptor:
    """Return the first match, or the best platform match when a platform is set."""
    if opts.artifact_type or opts.sort_annotation or opts.annotations:
        descriptors = descriptor_list_filter(descriptors, opts.model_copy(update={"platform": None}))
    if not descriptors:
        raise NotFoundError("no matching descriptor found")
    if opts.platform is None:
        return descriptors[0]
    best: Descriptor | None = None
    for d in descriptors:
        if d.platform is None:
            continue
        if plat.better(opts.platform, d.platform, best.platform if best else None):
            best = d
    if best is None:
        raise NotFoundError(f"platform not found: {opts.platform}")
    return best
