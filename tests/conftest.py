"""Shared test fixtures for ocilayout."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest

from ocilayout.core import manifest as manifest_mod
from ocilayout.core.hasher import digest_bytes
from ocilayout.core.manifest import Manifest
from ocilayout.core.ocidir import OCIDir
from ocilayout.models import mediatype
from ocilayout.models.descriptor import EMPTY_DATA, EMPTY_DIGEST, Descriptor
from ocilayout.models.platform import Platform
from ocilayout.models.reference import Ref, parse
from ocilayout.models.schemas import OCIIndex, OCIManifest


@pytest.fixture
def layout_ref(tmp_path: Path) -> Ref:
    """Provide an ocidir:// reference to an empty layout directory."""
    return parse(f"ocidir://{tmp_path / 'layout'}")


@pytest.fixture
def store() -> OCIDir:
    """Provide a store with GC enabled and the default write throttle."""
    return OCIDir(gc=True, throttle=3)


@pytest.fixture
def push_blob(store: OCIDir) -> Callable[..., Descriptor]:
    """Factory fixture: push bytes as a blob and return its descriptor."""

    def _push(ref: Ref, data: bytes, media_type: str = mediatype.OCI1_LAYER_GZIP) -> Descriptor:
        desc = Descriptor(media_type=media_type, digest=digest_bytes(data), size=len(data))
        return store.blob_put(ref, desc, io.BytesIO(data))

    return _push


@pytest.fixture
def make_image(store: OCIDir, push_blob: Callable[..., Descriptor]) -> Callable[..., Manifest]:
    """Factory fixture: push a config, layers and an OCI manifest.

    The manifest is tagged when *ref* carries a tag and stored untagged by
    digest otherwise.
    """

    def _factory(
        ref: Ref,
        layers: tuple[bytes, ...] = (b"layer-one",),
        config: bytes = b'{"architecture":"amd64","os":"linux"}',
        annotations: dict[str, str] | None = None,
        child: bool = False,
    ) -> Manifest:
        cfg = push_blob(ref, config, mediatype.OCI1_IMAGE_CONFIG)
        layer_descs = [push_blob(ref, data) for data in layers]
        m = manifest_mod.from_orig(OCIManifest(config=cfg, layers=layer_descs, annotations=annotations))
        target = ref if ref.tag or child else ref.set_digest(m.descriptor.digest)
        store.manifest_put(target, m, child=child)
        return m

    return _factory


@pytest.fixture
def make_referrer(store: OCIDir, push_blob: Callable[..., Descriptor]) -> Callable[..., Manifest]:
    """Factory fixture: push an artifact manifest whose subject is *subject*."""

    def _factory(
        ref: Ref,
        subject: Manifest,
        artifact_type: str = "application/example.sbom",
        annotations: dict[str, str] | None = None,
        payload: bytes = b"sbom-content",
    ) -> Manifest:
        push_blob(ref, EMPTY_DATA, mediatype.OCI1_EMPTY)
        layer = push_blob(ref, payload, "application/example.sbom.v1+json")
        m = manifest_mod.from_orig(
            OCIManifest(
                artifact_type=artifact_type,
                config=Descriptor(media_type=mediatype.OCI1_EMPTY, digest=EMPTY_DIGEST, size=len(EMPTY_DATA)),
                layers=[layer],
                subject=subject.descriptor,
                annotations=annotations,
            )
        )
        store.manifest_put(ref.set_digest(m.descriptor.digest), m)
        return m

    return _factory


@pytest.fixture
def make_index(store: OCIDir, make_image: Callable[..., Manifest]) -> Callable[..., Manifest]:
    """Factory fixture: push a two platform OCI index (linux/amd64, linux/arm64)."""

    def _factory(ref: Ref) -> Manifest:
        children = []
        for arch in ("amd64", "arm64"):
            child = make_image(
                ref,
                layers=(f"layer-{arch}".encode(),),
                config=f'{{"architecture":"{arch}","os":"linux"}}'.encode(),
                child=True,
            )
            children.append(
                child.descriptor.model_copy(update={"platform": Platform(os="linux", architecture=arch)})
            )
        index = manifest_mod.from_orig(OCIIndex(manifests=children))
        store.manifest_put(ref, index)
        return index

    return _factory
