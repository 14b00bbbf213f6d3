"""Tests for referrer tracking through the fallback tag index."""

from __future__ import annotations

import pytest

from ocilayout.core import manifest as manifest_mod
from ocilayout.core.errors import NotFoundError, UnsupportedError, UnsupportedMediaTypeError
from ocilayout.core.hasher import digest_bytes
from ocilayout.core.ocidir import OCIDir
from ocilayout.core.referrer import ReferrerList, fallback_tag
from ocilayout.models import mediatype
from ocilayout.models.descriptor import Descriptor
from ocilayout.models.schemas import OCIManifest, Schema2Manifest

CONFIG = Descriptor(media_type=mediatype.OCI1_IMAGE_CONFIG, digest=digest_bytes(b"{}"), size=2)


class _NoTagDeleteStore(OCIDir):
    """Store whose backend cannot delete tags."""

    def tag_delete(self, ref) -> None:
        raise UnsupportedError("tag delete not supported")


class TestFallbackTag:
    def test_tag_from_digest(self, layout_ref):
        digest = "sha256:" + "0123456789abcdef" * 4
        ref = fallback_tag(layout_ref.set_digest(digest))
        assert ref.tag == "sha256-" + "0123456789abcdef" * 4
        assert ref.digest == ""

    def test_sha512_truncated(self, layout_ref):
        digest = digest_bytes(b"x", "sha512")
        tag = fallback_tag(layout_ref.set_digest(digest)).tag
        assert tag == "sha512-" + digest.split(":", 1)[1][:64]

    def test_same_digest_same_tag(self, store, layout_ref, make_image):
        image = make_image(layout_ref.set_tag("v1"))
        store.manifest_put(layout_ref.set_tag("v2"), image)
        subjects = [store.referrer_list(layout_ref.set_tag(tag)).subject for tag in ("v1", "v2")]
        assert subjects[0].tag != subjects[1].tag
        assert subjects[0].digest == subjects[1].digest
        assert fallback_tag(subjects[0]) == fallback_tag(subjects[1])
        assert fallback_tag(subjects[0]).tag == "sha256-" + image.descriptor.digest.split(":", 1)[1]


class TestReferrerList:
    def _artifact(self, subject, artifact_type="application/example.sig", annotations=None):
        return manifest_mod.from_orig(
            OCIManifest(
                artifact_type=artifact_type,
                config=CONFIG,
                subject=subject.descriptor,
                annotations=annotations,
            )
        )

    def test_add_copies_metadata(self, layout_ref):
        subject = manifest_mod.from_orig(OCIManifest(config=CONFIG))
        rl = ReferrerList(layout_ref.set_digest(subject.descriptor.digest))
        assert rl.is_empty()
        sig = self._artifact(subject, annotations={"org.example.signer": "ci"})
        rl.add(sig)
        rl.add(sig)
        assert len(rl.descriptors) == 1
        entry = rl.descriptors[0]
        assert entry.digest == sig.descriptor.digest
        assert entry.artifact_type == "application/example.sig"
        assert entry.annotations == {"org.example.signer": "ci"}
        assert not rl.is_empty()

    def test_artifact_type_falls_back_to_config(self, layout_ref):
        subject = manifest_mod.from_orig(OCIManifest(config=CONFIG))
        rl = ReferrerList(layout_ref)
        rl.add(self._artifact(subject, artifact_type=None))
        assert rl.descriptors[0].artifact_type == mediatype.OCI1_IMAGE_CONFIG

    def test_delete_missing(self, layout_ref):
        subject = manifest_mod.from_orig(OCIManifest(config=CONFIG))
        rl = ReferrerList(layout_ref)
        with pytest.raises(NotFoundError):
            rl.delete(self._artifact(subject))

    def test_docker_manifest_rejected(self, layout_ref):
        rl = ReferrerList(layout_ref)
        with pytest.raises(UnsupportedMediaTypeError):
            rl.add(manifest_mod.from_orig(Schema2Manifest(config=CONFIG)))

    def test_filter(self, layout_ref):
        subject = manifest_mod.from_orig(OCIManifest(config=CONFIG))
        rl = ReferrerList(layout_ref)
        rl.add(self._artifact(subject, "application/example.sig", {"k": "a"}))
        rl.add(self._artifact(subject, "application/example.sbom", {"k": "b"}))
        assert len(rl.filter(artifact_type="application/example.sbom").descriptors) == 1
        rl2 = ReferrerList(layout_ref, manifest=rl.manifest)
        assert [d.annotations for d in rl2.filter(annotations={"k": "a"}).descriptors] == [{"k": "a"}]


class TestReferrerManager:
    def test_put_registers_referrer(self, store, layout_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        sbom = make_referrer(layout_ref, image, annotations={"org.example.kind": "spdx"})
        rl = store.referrer_list(layout_ref.set_tag("v1"))
        assert rl.subject.digest == image.descriptor.digest
        assert [d.digest for d in rl.descriptors] == [sbom.descriptor.digest]
        assert rl.descriptors[0].artifact_type == "application/example.sbom"
        assert fallback_tag(rl.subject).tag in store.tag_list(layout_ref)

    def test_filters(self, store, layout_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        make_referrer(layout_ref, image, artifact_type="application/example.sbom", payload=b"a")
        sig = make_referrer(
            layout_ref, image, artifact_type="application/example.sig", annotations={"signer": "ci"}, payload=b"b"
        )
        subject = layout_ref.set_digest(image.descriptor.digest)
        assert len(store.referrer_list(subject).descriptors) == 2
        by_type = store.referrer_list(subject, artifact_type="application/example.sig")
        assert [d.digest for d in by_type.descriptors] == [sig.descriptor.digest]
        by_annotation = store.referrer_list(subject, annotations={"signer": "ci"})
        assert [d.digest for d in by_annotation.descriptors] == [sig.descriptor.digest]
        assert store.referrer_list(subject, artifact_type="application/example.none").descriptors == []

    def test_no_referrers(self, store, layout_ref, make_image):
        make_image(layout_ref.set_tag("v1"))
        rl = store.referrer_list(layout_ref.set_tag("v1"))
        assert rl.is_empty()
        assert rl.descriptors == []

    def test_platform_selects_child(self, store, layout_ref, make_index, make_referrer):
        index = make_index(layout_ref.set_tag("multi"))
        arm = next(d for d in index.get_manifest_list() if d.platform.architecture == "arm64")
        arm_manifest = store.manifest_get(layout_ref.set_digest(arm.digest))
        sig = make_referrer(layout_ref, arm_manifest)
        rl = store.referrer_list(layout_ref.set_tag("multi"), platform="linux/arm64")
        assert rl.subject.digest == arm.digest
        assert [d.digest for d in rl.descriptors] == [sig.descriptor.digest]
        assert store.referrer_list(layout_ref.set_tag("multi"), platform="linux/amd64").is_empty()

    def test_delete_removes_fallback_tag(self, store, layout_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        sbom = make_referrer(layout_ref, image)
        store.manifest_delete(layout_ref.set_digest(sbom.descriptor.digest))
        assert store.referrer_list(layout_ref.set_tag("v1")).is_empty()
        assert store.tag_list(layout_ref) == ["v1"]

    def test_delete_keeps_other_referrers(self, store, layout_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        first = make_referrer(layout_ref, image, payload=b"one")
        second = make_referrer(layout_ref, image, payload=b"two")
        store.manifest_delete(layout_ref.set_digest(first.descriptor.digest))
        rl = store.referrer_list(layout_ref.set_tag("v1"))
        assert [d.digest for d in rl.descriptors] == [second.descriptor.digest]

    def test_empty_list_pushed_without_tag_delete(self, layout_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        sbom = make_referrer(layout_ref, image)
        store = _NoTagDeleteStore()
        store.manifest_delete(layout_ref.set_digest(sbom.descriptor.digest))
        rl = store.referrer_list(layout_ref.set_tag("v1"))
        assert rl.is_empty()
        assert fallback_tag(rl.subject).tag in store.tag_list(layout_ref)

    def test_referrers_survive_gc(self, store, layout_ref, make_image, make_referrer):
        image = make_image(layout_ref.set_tag("v1"))
        sbom = make_referrer(layout_ref, image)
        store.close(layout_ref)
        rl = store.referrer_list(layout_ref.set_tag("v1"))
        assert [d.digest for d in rl.descriptors] == [sbom.descriptor.digest]
        assert store.manifest_get(layout_ref.set_digest(sbom.descriptor.digest)).get_layers()

    def test_subject_required(self, store, layout_ref):
        m = manifest_mod.from_orig(OCIManifest(config=CONFIG))
        with pytest.raises(NotFoundError, match="subject is not set"):
            store.referrers.add(layout_ref, m)

    def test_subject_unsupported(self, store, layout_ref):
        m = manifest_mod.from_orig(Schema2Manifest(config=CONFIG))
        with pytest.raises(UnsupportedMediaTypeError):
            store.referrers.add(layout_ref, m)
