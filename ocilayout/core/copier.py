"""Copy images between OCI layouts.

Copies a manifest, the child manifests of an index, every config and layer
blob, and optionally the referrers of each manifest.  The target layout is
GC locked for the duration of the copy, and blob transfers pass the source
and target write throttles together through :func:`acquire_multi`.
"""

from __future__ import annotations

import logging
import threading

from ocilayout.config import config
from ocilayout.core.errors import NotFoundError, UnsupportedMediaTypeError
from ocilayout.core.manifest import Manifest, as_imager, as_indexer
from ocilayout.core.ocidir import OCIDir
from ocilayout.core.pqueue import CancelToken, acquire_multi
from ocilayout.core.reqmeta import Data, Kind
from ocilayout.models.descriptor import Descriptor
from ocilayout.models.reference import Ref

logger = logging.getLogger(__name__)


class ImageCopier:
    """One copy run between two stores.

    Parameters
    ----------
    src_store, tgt_store:
        Source and target stores, may be the same instance.
    referrers:
        Also copy the referrers of every copied manifest.
    artifact_type:
        Restrict copied referrers to this artifact type.
    workers:
        Parallel blob transfers, defaults to ``config.copy_workers``.
    cancel:
        Token checked while waiting on a write throttle.
    """

    def __init__(
        self,
        src_store: OCIDir,
        tgt_store: OCIDir,
        *,
        referrers: bool = False,
        artifact_type: str = "",
        workers: int | None = None,
        cancel: CancelToken | None = None,
    ) -> None:
        self.src_store = src_store
        self.tgt_store = tgt_store
        self.referrers = referrers
        self.artifact_type = artifact_type
        self.workers = max(1, workers if workers is not None else config.copy_workers)
        self.cancel = cancel

    def copy(self, src: Ref, tgt: Ref) -> Descriptor:
        """Copy *src* to *tgt* and return the descriptor of the copied manifest."""
        with self.tgt_store.gc_hold(tgt):
            m = self._copy_manifest(src, tgt, child=False, parents=())
        logger.info("copied %s to %s", src.common_name(), tgt.common_name())
        return m.descriptor

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def _copy_manifest(self, src: Ref, tgt: Ref, *, child: bool, parents: tuple[str, ...]) -> Manifest:
        m = self.src_store.manifest_get(src)
        digest = m.descriptor.digest
        if digest in parents:
            logger.warning("loop detected copying %s, skipping", src.common_name())
            return m
        lineage = (*parents, digest)

        indexer = as_indexer(m)
        if indexer is not None:
            for desc in indexer.get_manifest_list():
                try:
                    self._copy_manifest(
                        src.set_digest(desc.digest), tgt.set_digest(desc.digest), child=True, parents=lineage
                    )
                except NotFoundError:
                    # sparse source layouts may omit platforms
                    logger.debug("child manifest %s missing from source, skipping", desc.digest)

        imager = as_imager(m)
        if imager is not None:
            blobs: list[Descriptor] = []
            try:
                blobs.append(imager.get_config())
            except UnsupportedMediaTypeError:
                pass
            blobs.extend(imager.get_layers())
            self._copy_blobs(src, tgt, [b for b in blobs if b.digest])

        if self.referrers:
            rl = self.src_store.referrer_list(src.set_digest(digest), artifact_type=self.artifact_type)
            for desc in rl.descriptors:
                if desc.digest in lineage:
                    continue
                self._copy_manifest(
                    src.set_digest(desc.digest), tgt.set_digest(desc.digest), child=True, parents=lineage
                )

        entry = Data(kind=Kind.MANIFEST, size=m.descriptor.size)
        with acquire_multi(entry, *self.tgt_store.throttle(tgt, True), cancel=self.cancel):
            self.tgt_store.manifest_put(tgt, m, child=child)
        return m

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def _copy_blobs(self, src: Ref, tgt: Ref, blobs: list[Descriptor]) -> None:
        pending: list[Descriptor] = []
        for desc in blobs:
            if not any(p.digest == desc.digest for p in pending):
                pending.append(desc)
        pending.reverse()
        mu = threading.Lock()
        errors: list[Exception] = []

        def _worker() -> None:
            while True:
                with mu:
                    if not pending or errors:
                        return
                    desc = pending.pop()
                try:
                    self._copy_blob(src, tgt, desc)
                except Exception as err:
                    with mu:
                        errors.append(err)
                    return

        threads = [
            threading.Thread(target=_worker, daemon=True) for _ in range(min(self.workers, len(pending)))
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        # first failure wins, the remaining transfers are abandoned
        if errors:
            raise errors[0]

    def _copy_blob(self, src: Ref, tgt: Ref, desc: Descriptor) -> None:
        try:
            self.tgt_store.blob_head(tgt, desc)
            logger.debug("blob %s already present in %s", desc.digest, tgt.path)
            return
        except NotFoundError:
            pass
        entry = Data(kind=Kind.BLOB, size=desc.size)
        queues = [*self.src_store.throttle(src, False), *self.tgt_store.throttle(tgt, True)]
        with acquire_multi(entry, *queues, cancel=self.cancel):
            with self.src_store.blob_get(src, desc) as fh:
                self.tgt_store.blob_put(tgt, desc, fh)
        logger.debug("copied blob %s", desc.digest)


def copy_image(
    src_store: OCIDir,
    src: Ref,
    tgt_store: OCIDir,
    tgt: Ref,
    *,
    referrers: bool = False,
    artifact_type: str = "",
    workers: int | None = None,
    cancel: CancelToken | None = None,
) -> Descriptor:
    """Copy an image, index or artifact from one layout to another."""
    copier = ImageCopier(
        src_store,
        tgt_store,
        referrers=referrers,
        artifact_type=artifact_type,
        workers=workers,
        cancel=cancel,
    )
    return copier.copy(src, tgt)
