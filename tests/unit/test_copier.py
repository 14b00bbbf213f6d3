"""Tests for copying images between layouts."""

from __future__ import annotations

from pathlib import Path

import pytest

from ocilayout.core.copier import copy_image
from ocilayout.core.errors import CancelledError, NotFoundError
from ocilayout.core.hasher import digest_bytes
from ocilayout.core.pqueue import CancelToken
from ocilayout.models.descriptor import Descriptor
from ocilayout.models.reference import parse


@pytest.fixture
def target_ref(tmp_path: Path):
    return parse(f"ocidir://{tmp_path / 'target'}")


class TestCopyImage:
    def test_copy_tagged_image(self, store, layout_ref, target_ref, make_image):
        image = make_image(layout_ref.set_tag("v1"), layers=(b"l1", b"l2", b"l3"))
        desc = copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"))
        assert desc.digest == image.descriptor.digest
        assert store.tag_list(target_ref) == ["v1"]
        copied = store.manifest_get(target_ref.set_tag("v1"))
        assert copied.raw_body() == image.raw_body()
        for blob in [image.get_config(), *image.get_layers()]:
            store.blob_head(target_ref, Descriptor(digest=blob.digest))

    def test_copy_index_with_children(self, store, layout_ref, target_ref, make_index):
        index = make_index(layout_ref.set_tag("multi"))
        copy_image(store, layout_ref.set_tag("multi"), store, target_ref.set_tag("multi"))
        assert store.tag_list(target_ref) == ["multi"]
        # children are stored without their own index.json entries
        assert len(store.read_index(target_ref).manifests) == 1
        for child in index.get_manifest_list():
            store.manifest_get(target_ref.set_digest(child.digest))
        store.blob_head(target_ref, Descriptor(digest=digest_bytes(b"layer-amd64")))

    def test_copy_survives_gc(self, store, layout_ref, target_ref, make_index):
        make_index(layout_ref.set_tag("multi"))
        copy_image(store, layout_ref.set_tag("multi"), store, target_ref.set_tag("multi"))
        store.close(target_ref)
        store.blob_head(target_ref, Descriptor(digest=digest_bytes(b"layer-arm64")))

    def test_target_gc_locked_during_copy(self, store, layout_ref, target_ref, make_image):
        make_image(layout_ref.set_tag("v1"))
        seen: list[bool] = []
        original = store.blob_put

        def blob_put(ref, desc, reader):
            result = original(ref, desc, reader)
            store.close(ref)
            seen.append(store.is_modified(ref))
            return result

        store.blob_put = blob_put  # type: ignore[method-assign]
        copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"), workers=1)
        assert seen and all(seen)

    def test_existing_blobs_skipped(self, store, layout_ref, target_ref, make_image):
        make_image(layout_ref.set_tag("v1"))
        copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"))
        calls: list[str] = []
        original = store.blob_put

        def blob_put(ref, desc, reader):
            calls.append(desc.digest)
            return original(ref, desc, reader)

        store.blob_put = blob_put  # type: ignore[method-assign]
        copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v2"))
        assert calls == []
        assert store.tag_list(target_ref) == ["v1", "v2"]

    def test_referrers_copied(self, store, layout_ref, target_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        sbom = make_referrer(layout_ref, image)
        copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"), referrers=True)
        rl = store.referrer_list(target_ref.set_tag("v1"))
        assert [d.digest for d in rl.descriptors] == [sbom.descriptor.digest]

    def test_referrers_filtered_by_type(self, store, layout_ref, target_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        make_referrer(layout_ref, image, artifact_type="application/example.sbom", payload=b"a")
        sig = make_referrer(layout_ref, image, artifact_type="application/example.sig", payload=b"b")
        copy_image(
            store,
            layout_ref.set_tag("v1"),
            store,
            target_ref.set_tag("v1"),
            referrers=True,
            artifact_type="application/example.sig",
        )
        rl = store.referrer_list(target_ref.set_tag("v1"))
        assert [d.digest for d in rl.descriptors] == [sig.descriptor.digest]

    def test_referrers_not_copied_by_default(self, store, layout_ref, target_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        make_referrer(layout_ref, image)
        copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"))
        assert store.referrer_list(target_ref.set_tag("v1")).is_empty()

    def test_missing_source(self, store, layout_ref, target_ref, make_image):
        make_image(layout_ref.set_tag("v1"))
        with pytest.raises(NotFoundError):
            copy_image(store, layout_ref.set_tag("missing"), store, target_ref.set_tag("v1"))

    def test_missing_blob_fails_copy(self, store, layout_ref, target_ref, make_image):
        image = make_image(layout_ref.set_tag("v1"))
        layer = image.get_layers()[0]
        store.blob_delete(layout_ref, layer)
        with pytest.raises(NotFoundError):
            copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"))
        assert not (Path(target_ref.path) / "index.json").exists()

    def test_cancelled_copy(self, store, layout_ref, target_ref, make_image):
        make_image(layout_ref.set_tag("v1"))
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            copy_image(store, layout_ref.set_tag("v1"), store, target_ref.set_tag("v1"), cancel=token)
