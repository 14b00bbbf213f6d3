"""Content addressed store over an OCI image layout directory.

Layout on disk::

    <path>/oci-layout                 {"imageLayoutVersion":"1.0.0"}
    <path>/index.json                 OCI index, tags in org.opencontainers.image.ref.name
    <path>/blobs/<algorithm>/<hex>    manifests and blobs

Every write marks the layout path as modified.  :meth:`OCIDir.close` runs a
mark-and-sweep garbage collection on a modified path unless GC is disabled
or another operation holds a GC lock on it.

Two locks guard the store: ``_state_mu`` protects the per-path bookkeeping
(modified flag, GC lock count, write throttles) and ``_mu`` serializes
index read-modify-write, manifest writes and GC.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

from pydantic import ValidationError

from ocilayout.config import StoreConfig
from ocilayout.config import config as default_config
from ocilayout.core import manifest as manifest_mod
from ocilayout.core.errors import (
    DigestMismatchError,
    InvalidReferenceError,
    ManifestParseError,
    NotFoundError,
    SizeMismatchError,
    UnsupportedError,
    UnsupportedMediaTypeError,
)
from ocilayout.core.hasher import CANONICAL_ALGORITHM, algorithm_of, new_hasher, parse_digest
from ocilayout.core.manifest import Manifest, as_imager, as_indexer, as_subjecter
from ocilayout.core.pqueue import Queue
from ocilayout.core.referrer import ReferrerList, ReferrerManager
from ocilayout.core.reqmeta import Data, data_next
from ocilayout.models import mediatype
from ocilayout.models.descriptor import Descriptor
from ocilayout.models.platform import Platform
from ocilayout.models.reference import DEFAULT_TAG, Ref
from ocilayout.models.schemas import ANNOTATION_REF_NAME, IMAGE_LAYOUT_VERSION, ImageLayout, OCIIndex

logger = logging.getLogger(__name__)

IMAGE_LAYOUT_FILE = "oci-layout"
INDEX_FILE = "index.json"
BLOBS_DIR = "blobs"

_CHUNK = 1024 * 1024


class _PathState:
    __slots__ = ("modified", "locks", "ingest")

    def __init__(self) -> None:
        self.modified = False
        self.locks = 0
        self.ingest: set[str] = set()  # temp file names of in-flight blob writes


# ---------------------------------------------------------------------------
# Index helpers
# ---------------------------------------------------------------------------


def _ref_name(desc: Descriptor) -> str:
    return (desc.annotations or {}).get(ANNOTATION_REF_NAME, "")


def index_get(index: OCIIndex, ref: Ref) -> Descriptor:
    """Find the index entry for *ref* by digest, else by tag."""
    if not ref.digest and not ref.tag:
        ref = ref.set_tag(DEFAULT_TAG)
    if ref.digest:
        for desc in index.manifests:
            if desc.digest == ref.digest:
                return desc
    elif ref.tag:
        for desc in index.manifests:
            if _ref_name(desc) == ref.tag:
                return desc
        # full image names such as "registry/repo:tag" in the annotation
        for desc in index.manifests:
            if _ref_name(desc).endswith(":" + ref.tag):
                return desc
    raise NotFoundError(f"{ref.common_name()} not found in index")


def index_set(index: OCIIndex, ref: Ref, desc: Descriptor) -> OCIIndex:
    """Return *index* with *desc* recorded under *ref*'s tag.

    Replaces the entry with the same tag, or the untagged entry with the
    same digest, and prunes duplicates of the replaced entry.
    """
    if ref.tag:
        annotations = dict(desc.annotations or {})
        annotations[ANNOTATION_REF_NAME] = ref.tag
        desc = desc.model_copy(update={"annotations": annotations})

    def replaces(entry: Descriptor) -> bool:
        name = _ref_name(entry)
        return (name == "" and entry.digest == desc.digest) or (ref.tag != "" and name == ref.tag)

    manifests: list[Descriptor] = []
    replaced = False
    for entry in index.manifests:
        if not replaces(entry):
            manifests.append(entry)
        elif not replaced:
            manifests.append(desc)
            replaced = True
    if not replaced:
        manifests.append(desc)
    return index.model_copy(update={"manifests": manifests})


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class OCIDir:
    """Read and write OCI image layouts on the local filesystem.

    Parameters
    ----------
    settings:
        Store configuration, defaults to the module level ``config``.
    gc:
        Override ``settings.gc``.
    throttle:
        Override ``settings.throttle``.
    """

    def __init__(
        self,
        settings: StoreConfig | None = None,
        *,
        gc: bool | None = None,
        throttle: int | None = None,
    ) -> None:
        settings = settings or default_config
        self.gc = settings.gc if gc is None else gc
        self.throttle_default = settings.throttle if throttle is None else throttle
        self._state_mu = threading.Lock()
        self._mu = threading.RLock()
        self._paths: dict[str, _PathState] = {}
        self._throttles: dict[str, Queue[Data]] = {}
        self.referrers = ReferrerManager(self)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _state(self, ref: Ref) -> _PathState:
        state = self._paths.get(ref.path)
        if state is None:
            state = self._paths[ref.path] = _PathState()
        return state

    def _ref_mod(self, ref: Ref) -> None:
        with self._state_mu:
            self._state(ref).modified = True

    def is_modified(self, ref: Ref) -> bool:
        with self._state_mu:
            state = self._paths.get(ref.path)
            return state is not None and state.modified

    def gc_lock(self, ref: Ref) -> None:
        """Hold off garbage collection of *ref*'s layout until gc_unlock."""
        with self._state_mu:
            self._state(ref).locks += 1

    def gc_unlock(self, ref: Ref) -> None:
        with self._state_mu:
            state = self._paths.get(ref.path)
            if state is not None and state.locks > 0:
                state.locks -= 1

    @contextlib.contextmanager
    def gc_hold(self, ref: Ref) -> Iterator[None]:
        self.gc_lock(ref)
        try:
            yield
        finally:
            self.gc_unlock(ref)

    def throttle(self, ref: Ref, put: bool) -> list[Queue[Data]]:
        """Return the admission queues a transfer against *ref* must pass.

        Only writes are throttled, one queue per layout path.
        """
        if not put or self.throttle_default <= 0:
            return []
        with self._state_mu:
            queue = self._throttles.get(ref.path)
            if queue is None:
                queue = self._throttles[ref.path] = Queue(self.throttle_default, next_fn=data_next)
            return [queue]

    # ------------------------------------------------------------------
    # Layout files
    # ------------------------------------------------------------------

    @staticmethod
    def _write_atomic(directory: Path, name: str, data: bytes) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f"{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            target = directory / name
            os.replace(tmp_name, target)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
        return target

    def _blob_path(self, ref: Ref, digest: str) -> Path:
        algorithm, encoded = parse_digest(digest)
        return Path(ref.path) / BLOBS_DIR / algorithm / encoded

    def _init_layout(self, ref: Ref) -> None:
        root = Path(ref.path)
        if (root / IMAGE_LAYOUT_FILE).exists():
            return
        root.mkdir(parents=True, exist_ok=True)
        (root / IMAGE_LAYOUT_FILE).write_bytes(ImageLayout().to_json())

    def _validate_layout(self, ref: Ref) -> None:
        layout_file = Path(ref.path) / IMAGE_LAYOUT_FILE
        try:
            layout = ImageLayout.model_validate_json(layout_file.read_bytes())
        except FileNotFoundError as err:
            raise NotFoundError(f"no OCI layout at {ref.path}") from err
        except ValidationError as err:
            raise ManifestParseError(f"{layout_file} cannot be parsed: {err}") from err
        if layout.image_layout_version != IMAGE_LAYOUT_VERSION:
            raise UnsupportedError(
                f"unsupported oci layout version, expected {IMAGE_LAYOUT_VERSION}, "
                f"received {layout.image_layout_version}"
            )

    def _read_index(self, ref: Ref) -> OCIIndex:
        with self._mu:
            self._validate_layout(ref)
            index_file = Path(ref.path) / INDEX_FILE
            try:
                return OCIIndex.model_validate_json(index_file.read_bytes())
            except FileNotFoundError as err:
                raise NotFoundError(f"{index_file} not found") from err
            except ValidationError as err:
                raise ManifestParseError(f"{index_file} cannot be parsed: {err}") from err

    def _write_index(self, ref: Ref, index: OCIIndex) -> None:
        with self._mu:
            root = Path(ref.path)
            root.mkdir(parents=True, exist_ok=True)
            (root / IMAGE_LAYOUT_FILE).write_bytes(ImageLayout().to_json())
            self._write_atomic(root, INDEX_FILE, index.to_json())

    def _update_index(self, ref: Ref, desc: Descriptor, child: bool) -> None:
        with self._mu:
            changed = False
            try:
                index = self._read_index(ref)
            except NotFoundError:
                index = OCIIndex(annotations={})
                changed = True
            if not child:
                index = index_set(index, ref, desc)
                changed = True
            if changed:
                self._write_index(ref, index)

    def read_index(self, ref: Ref) -> OCIIndex:
        """Return the layout's ``index.json``."""
        return self._read_index(ref)

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def blob_get(self, ref: Ref, desc: Descriptor) -> BinaryIO:
        """Open a blob for reading.  The caller closes the returned file."""
        path = self._blob_path(ref, desc.digest)
        try:
            fh = path.open("rb")
        except FileNotFoundError as err:
            raise NotFoundError(f"blob {desc.digest} not found in {ref.path}") from err
        logger.debug("retrieved blob %s from %s", desc.digest, ref.path)
        return fh

    def blob_head(self, ref: Ref, desc: Descriptor) -> Descriptor:
        """Confirm a blob exists, filling in its size when unknown."""
        path = self._blob_path(ref, desc.digest)
        if not path.is_file():
            raise NotFoundError(f"blob {desc.digest} not found in {ref.path}")
        if desc.size <= 0:
            desc = desc.model_copy(update={"size": path.stat().st_size})
        return desc

    def blob_put(self, ref: Ref, desc: Descriptor, reader: BinaryIO) -> Descriptor:
        """Store a blob, verifying it against *desc*.

        An empty digest is computed with the canonical algorithm and a
        non-positive size is taken from the stream.  Content that does not
        match raises a data-integrity error and nothing is stored.
        """
        algorithm = algorithm_of(desc.digest, CANONICAL_ALGORITHM)
        if desc.digest:
            parse_digest(desc.digest)
        directory = Path(ref.path) / BLOBS_DIR / algorithm
        directory.mkdir(parents=True, exist_ok=True)
        hasher = new_hasher(algorithm)
        size = 0
        with self._state_mu:
            fd, tmp_name = tempfile.mkstemp(dir=directory, suffix=".tmp")
            self._state(ref).ingest.add(os.path.basename(tmp_name))
        try:
            with os.fdopen(fd, "wb") as fh:
                while True:
                    chunk = reader.read(_CHUNK)
                    if not chunk:
                        break
                    hasher.update(chunk)
                    fh.write(chunk)
                    size += len(chunk)
            digest = f"{algorithm}:{hasher.hexdigest()}"
            if desc.digest and desc.digest != digest:
                raise DigestMismatchError(f"unexpected digest, expected {desc.digest}, computed {digest}")
            if desc.size > 0 and desc.size != size:
                raise SizeMismatchError(f"unexpected blob length, expected {desc.size}, received {size}")
            target = directory / hasher.hexdigest()
            with self._mu:
                os.replace(tmp_name, target)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
        finally:
            with self._state_mu:
                self._state(ref).ingest.discard(os.path.basename(tmp_name))
        self._ref_mod(ref)
        logger.debug("pushed blob %s to %s", digest, ref.path)
        return desc.model_copy(update={"digest": digest, "size": size})

    def blob_delete(self, ref: Ref, desc: Descriptor) -> None:
        path = self._blob_path(ref, desc.digest)
        try:
            path.unlink()
        except FileNotFoundError as err:
            raise NotFoundError(f"blob {desc.digest} not found in {ref.path}") from err
        self._ref_mod(ref)
        logger.debug("deleted blob %s from %s", desc.digest, ref.path)

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def _resolve(self, ref: Ref) -> tuple[Ref, Descriptor]:
        index = self._read_index(ref)
        if not ref.digest and not ref.tag:
            ref = ref.set_tag(DEFAULT_TAG)
        try:
            desc = index_get(index, ref)
        except NotFoundError:
            if not ref.digest:
                raise
            desc = Descriptor(digest=ref.digest)
        parse_digest(desc.digest)
        return ref, desc

    def manifest_get(self, ref: Ref) -> Manifest:
        """Read a manifest by tag or digest.  Raises NotFoundError when absent."""
        with self._mu:
            ref, desc = self._resolve(ref)
            path = self._blob_path(ref, desc.digest)
            try:
                raw = path.read_bytes()
            except FileNotFoundError as err:
                raise NotFoundError(f"manifest {desc.digest} not found in {ref.path}") from err
        logger.debug("retrieved manifest %s from %s", ref.common_name(), path)
        return manifest_mod.from_bytes(raw, ref=ref, desc=desc)

    def manifest_head(self, ref: Ref) -> Manifest:
        """Resolve the descriptor of a manifest without decoding its body."""
        with self._mu:
            ref, desc = self._resolve(ref)
            path = self._blob_path(ref, desc.digest)
            if not path.is_file():
                raise NotFoundError(f"manifest {desc.digest} not found in {ref.path}")
            if not desc.media_type:
                try:
                    body = json.loads(path.read_bytes())
                except ValueError as err:
                    raise ManifestParseError(f"manifest {desc.digest} cannot be parsed: {err}") from err
                media_type = manifest_mod.detect_media_type(body if isinstance(body, dict) else {})
                desc = desc.model_copy(update={"media_type": media_type})
                if media_type != mediatype.DOCKER1_MANIFEST_SIGNED:
                    desc = desc.model_copy(update={"size": path.stat().st_size})
            elif desc.size <= 0:
                desc = desc.model_copy(update={"size": path.stat().st_size})
        return manifest_mod.from_descriptor(desc, ref=ref)

    def manifest_put(self, ref: Ref, m: Manifest, *, child: bool = False) -> None:
        """Write a manifest and record it in the index.

        ``child`` manifests (entries of an index being copied) are stored
        without an index entry.  A manifest with a subject is also added to
        its subject's referrer list.
        """
        if not child and not ref.digest and not ref.tag:
            ref = ref.set_tag(DEFAULT_TAG)
        with self._mu:
            self._init_layout(ref)
            desc = m.descriptor
            parse_digest(desc.digest)
            raw = m.raw_body()
            if ref.digest and desc.digest != ref.digest:
                # the ref may use another digest algorithm, fails if the content differs
                m = manifest_mod.from_bytes(raw, desc.media_type, ref=ref)
                desc = m.descriptor
            entry = Descriptor(
                media_type=desc.media_type,
                digest=desc.digest,
                size=desc.size,
                annotations={ANNOTATION_REF_NAME: ref.tag} if ref.tag else None,
            )
            _, encoded = parse_digest(desc.digest)
            path = self._write_atomic(self._blob_path(ref, desc.digest).parent, encoded, raw)
            self._update_index(ref, entry, child)
            self._ref_mod(ref)
        logger.debug("pushed manifest %s to %s", ref.common_name(), path)

        subjecter = as_subjecter(m)
        if subjecter is not None:
            subject = subjecter.get_subject()
            if subject is not None and subject.digest:
                self.referrers.add(ref, m)

    def manifest_delete(self, ref: Ref, m: Manifest | None = None) -> None:
        """Delete a manifest by digest, its index entries and its referrer entry."""
        if not ref.digest:
            raise InvalidReferenceError(
                f"digest required to delete manifest, reference {ref.common_name()}"
            )
        if m is None:
            m = self.manifest_get(ref)
        subjecter = as_subjecter(m)
        if subjecter is not None:
            subject = subjecter.get_subject()
            if subject is not None and subject.digest:
                try:
                    self.referrers.delete(ref, m)
                except NotFoundError:
                    logger.debug("referrer entry for %s already absent", ref.digest)

        with self._mu:
            index = self._read_index(ref)
            manifests = [d for d in index.manifests if d.digest != ref.digest]
            if len(manifests) != len(index.manifests):
                self._write_index(ref, index.model_copy(update={"manifests": manifests}))
            path = self._blob_path(ref, ref.digest)
            try:
                path.unlink()
            except FileNotFoundError as err:
                raise NotFoundError(f"manifest {ref.digest} not found in {ref.path}") from err
            self._ref_mod(ref)
        logger.debug("deleted manifest %s", ref.common_name())

    # ------------------------------------------------------------------
    # Tags and referrers
    # ------------------------------------------------------------------

    def tag_list(self, ref: Ref) -> list[str]:
        """Return the sorted tags recorded in the layout index."""
        index = self._read_index(ref)
        tags: set[str] = set()
        for desc in index.manifests:
            name = _ref_name(desc)
            if name:
                tags.add(name.rsplit(":", 1)[-1])
        return sorted(tags)

    def tag_delete(self, ref: Ref) -> None:
        if not ref.tag:
            raise InvalidReferenceError(f"tag required to delete, reference {ref.common_name()}")
        with self._mu:
            index = self._read_index(ref)
            manifests = [d for d in index.manifests if _ref_name(d) != ref.tag]
            if len(manifests) == len(index.manifests):
                raise NotFoundError(f"failed deleting {ref.common_name()}: tag not found")
            self._write_index(ref, index.model_copy(update={"manifests": manifests}))
            self._ref_mod(ref)
        logger.debug("deleted tag %s", ref.common_name())

    def referrer_list(
        self,
        ref: Ref,
        *,
        platform: str | Platform | None = None,
        artifact_type: str = "",
        annotations: dict[str, str] | None = None,
    ) -> ReferrerList:
        return self.referrers.list(
            ref, platform=platform, artifact_type=artifact_type, annotations=annotations
        )

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def close(self, ref: Ref) -> None:
        """Garbage collect *ref*'s layout if it was modified.

        No-op when GC is disabled, the path is unmodified, or a GC lock is
        held.  Errors leave the path marked modified so the next close
        retries.
        """
        if not self.gc:
            return
        with self._mu:
            with self._state_mu:
                state = self._paths.get(ref.path)
                if state is None or not state.modified:
                    return
                if state.locks > 0:
                    logger.debug("skipping gc of %s, %d locks held", ref.path, state.locks)
                    return
            self.collect(ref)

    def collect(self, ref: Ref) -> int:
        """Mark and sweep *ref*'s layout now, returning the number of blobs removed.

        Ignores the GC setting and the modified flag, used for maintenance
        of layouts written by other processes.
        """
        with self._mu:
            logger.debug("running gc on %s", ref.common_name())
            index = self._read_index(ref)
            reachable: set[str] = set()
            self._gc_mark(ref, manifest_mod.from_orig(index), reachable, set())
            removed = self._gc_sweep(ref, reachable)
            with self._state_mu:
                self._state(ref).modified = False
        logger.info("garbage collected %d blobs from %s", removed, ref.path)
        return removed

    def _gc_mark(self, ref: Ref, m: Manifest, reachable: set[str], visited: set[str]) -> None:
        indexer = as_indexer(m)
        if indexer is not None:
            for desc in indexer.get_manifest_list():
                reachable.add(desc.digest)
                if desc.digest in visited:
                    continue
                visited.add(desc.digest)
                child_ref = ref.set_digest(desc.digest)
                try:
                    child = self.manifest_get(child_ref)
                except NotFoundError:
                    logger.debug("could not retrieve manifest %s", child_ref.common_name())
                    continue
                self._gc_mark(child_ref, child, reachable, visited)
        imager = as_imager(m)
        if imager is not None:
            with contextlib.suppress(UnsupportedMediaTypeError):
                reachable.add(imager.get_config().digest)
            for layer in imager.get_layers():
                reachable.add(layer.digest)

    def _gc_sweep(self, ref: Ref, reachable: set[str]) -> int:
        blobs = Path(ref.path) / BLOBS_DIR
        if not blobs.is_dir():
            return 0
        removed = 0
        for algo_dir in sorted(blobs.iterdir()):
            if not algo_dir.is_dir():
                continue
            for blob_file in sorted(algo_dir.iterdir()):
                if not blob_file.is_file():
                    continue
                digest = f"{algo_dir.name}:{blob_file.name}"
                if digest in reachable:
                    continue
                with self._state_mu:
                    if blob_file.name in self._state(ref).ingest:
                        continue
                logger.debug("garbage collect %s", digest)
                try:
                    blob_file.unlink()
                except FileNotFoundError:
                    continue
                removed += 1
        return removed
