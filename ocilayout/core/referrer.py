"""Referrer tracking through a synthetic OCI index.

Stores without a native referrers API keep, per subject digest, an OCI index
under a *fallback tag* derived from that digest.  Each entry is the
descriptor of a manifest whose ``subject`` points at the digest, with its
artifact type and annotations copied in so listing never fetches the
referrers themselves.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ocilayout.core import manifest as manifest_mod
from ocilayout.core.errors import NotFoundError, UnsupportedError, UnsupportedMediaTypeError
from ocilayout.core.hasher import parse_digest
from ocilayout.core.manifest import Manifest, as_subjecter, get_platform_desc
from ocilayout.core.muset import KeyedLocks
from ocilayout.core.transport import ManifestTransport, TagDeleter
from ocilayout.models import platform as plat
from ocilayout.models.descriptor import Descriptor, MatchOpts, descriptor_list_filter
from ocilayout.models.platform import Platform
from ocilayout.models.reference import Ref
from ocilayout.models.schemas import OCIArtifact, OCIIndex, OCIManifest

logger = logging.getLogger(__name__)

_TAG_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9._-]")


def fallback_tag(ref: Ref) -> Ref:
    """Return *ref* retagged with the referrers fallback tag of its digest.

    The tag is ``algorithm[:32] + "-" + hex[:64]`` with characters outside
    ``[a-zA-Z0-9._-]`` replaced by ``-``.
    """
    algorithm, encoded = parse_digest(ref.digest)
    algo = _TAG_SANITIZE_RE.sub("-", algorithm)[:32]
    hex_part = _TAG_SANITIZE_RE.sub("-", encoded)[:64]
    return ref.set_tag(f"{algo}-{hex_part}")


class ReferrerList:
    """Referrers of one subject, backed by an OCI index manifest."""

    def __init__(
        self,
        subject: Ref,
        *,
        manifest: Manifest | None = None,
        source: Ref | None = None,
        tags: list[str] | None = None,
    ) -> None:
        self.subject = subject
        self.source = source
        self.manifest: Manifest = manifest if manifest is not None else manifest_mod.from_orig(OCIIndex())
        self.tags: list[str] = list(tags or [])
        index = self._index()
        self.descriptors: list[Descriptor] = list(index.manifests)
        self.annotations: dict[str, str] = dict(index.annotations or {})

    def _index(self) -> OCIIndex:
        orig = self.manifest.orig
        if not isinstance(orig, OCIIndex):
            raise UnsupportedMediaTypeError(
                f"referrer list manifest is not an OCI index for {self.subject.common_name()}"
            )
        return orig

    def add(self, m: Manifest) -> None:
        """Append *m*, copying its artifact type and annotations.  Idempotent."""
        index = self._index()
        desc = m.descriptor
        if any(d.digest == desc.digest for d in index.manifests):
            return
        orig: Any = m.orig
        if isinstance(orig, OCIArtifact):
            artifact_type = orig.artifact_type
        elif isinstance(orig, OCIManifest):
            artifact_type = orig.artifact_type or orig.config.media_type
        elif isinstance(orig, OCIIndex):
            artifact_type = orig.artifact_type
        else:
            raise UnsupportedMediaTypeError(f"invalid manifest for referrer: {desc.media_type}")
        entry = Descriptor(
            media_type=desc.media_type,
            digest=desc.digest,
            size=desc.size,
            annotations=orig.annotations,
            artifact_type=artifact_type or None,
        )
        manifests = [*index.manifests, entry]
        self.manifest.set_orig(index.model_copy(update={"manifests": manifests}))
        self.descriptors = manifests

    def delete(self, m: Manifest) -> None:
        """Remove every entry with *m*'s digest.  Raises NotFoundError if none."""
        index = self._index()
        digest = m.descriptor.digest
        manifests = [d for d in index.manifests if d.digest != digest]
        if len(manifests) == len(index.manifests):
            raise NotFoundError(f"subject not found in referrer list: {digest}")
        self.manifest.set_orig(index.model_copy(update={"manifests": manifests}))
        self.descriptors = manifests

    def is_empty(self) -> bool:
        orig = self.manifest.orig
        return not isinstance(orig, OCIIndex) or not orig.manifests

    def filter(self, *, artifact_type: str = "", annotations: dict[str, str] | None = None) -> ReferrerList:
        """Narrow :attr:`descriptors` in place and return self."""
        if artifact_type or annotations:
            opts = MatchOpts(artifact_type=artifact_type, annotations=annotations or {})
            self.descriptors = descriptor_list_filter(self.descriptors, opts)
        return self


class ReferrerManager:
    """List, add and delete referrers against a manifest transport.

    Read-modify-write of a subject's list is serialized within one manager
    by a lock keyed on the subject digest.  Writers going through separate
    managers must coordinate externally.

    Parameters
    ----------
    transport:
        Backend used to read and write the fallback tag index.
    tag_deleter:
        Backend used to drop an emptied list.  Defaults to *transport* when
        it supports tag deletion.
    """

    def __init__(self, transport: ManifestTransport, *, tag_deleter: TagDeleter | None = None) -> None:
        self._transport = transport
        if tag_deleter is None and isinstance(transport, TagDeleter):
            tag_deleter = transport
        self._tag_deleter = tag_deleter
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list(
        self,
        subject: Ref,
        *,
        platform: str | Platform | None = None,
        artifact_type: str = "",
        annotations: dict[str, str] | None = None,
    ) -> ReferrerList:
        """Return the referrers of *subject*.

        A platform selects the matching child when the subject is an index.
        A tag is resolved to its digest first.  A subject without referrers
        yields an empty list.
        """
        if platform is not None:
            m = self._transport.manifest_get(subject)
            if m.is_list():
                p = plat.parse(platform) if isinstance(platform, str) else platform
                subject = subject.add_digest(get_platform_desc(m, p).digest)
            else:
                subject = subject.add_digest(m.descriptor.digest)
        if not subject.digest:
            subject = subject.add_digest(self._transport.manifest_head(subject).descriptor.digest)

        tag_ref = fallback_tag(subject)
        try:
            m = self._transport.manifest_get(tag_ref)
        except NotFoundError:
            logger.debug("no referrers found for %s", subject.common_name())
            return ReferrerList(subject)
        rl = ReferrerList(subject, manifest=m, tags=[tag_ref.tag])
        return rl.filter(artifact_type=artifact_type, annotations=annotations)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    @staticmethod
    def _subject_ref(ref: Ref, m: Manifest) -> Ref:
        subjecter = as_subjecter(m)
        if subjecter is None:
            raise UnsupportedMediaTypeError(
                f"manifest does not support subject: {m.descriptor.media_type}"
            )
        subject = subjecter.get_subject()
        if subject is None or not subject.media_type or not subject.digest or subject.size <= 0:
            raise NotFoundError("subject is not set")
        return ref.set_digest(subject.digest)

    def add(self, ref: Ref, m: Manifest) -> None:
        """Record *m* as a referrer of its subject in the repository of *ref*."""
        subject = self._subject_ref(ref, m)
        with self._locks.hold(subject.digest):
            rl = self.list(subject)
            rl.add(m)
            self._transport.manifest_put(fallback_tag(subject), rl.manifest)
        logger.debug("added referrer %s to %s", m.descriptor.digest, subject.common_name())

    def delete(self, ref: Ref, m: Manifest) -> None:
        """Remove *m* from its subject's referrers.

        An emptied list is removed by deleting the fallback tag; backends
        without tag deletion get an empty index pushed instead.
        """
        subject = self._subject_ref(ref, m)
        with self._locks.hold(subject.digest):
            rl = self.list(subject)
            rl.delete(m)
            tag_ref = fallback_tag(subject)
            if rl.is_empty() and self._tag_deleter is not None:
                try:
                    self._tag_deleter.tag_delete(tag_ref)
                    logger.debug("deleted empty referrer list %s", tag_ref.common_name())
                    return
                except UnsupportedError:
                    logger.debug("tag delete unsupported, pushing empty referrer list")
            self._transport.manifest_put(tag_ref, rl.manifest)
