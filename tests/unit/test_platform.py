"""Tests for platform parsing, normalization and compatibility."""

from __future__ import annotations

import pytest

from ocilayout.models import platform as plat
from ocilayout.models.platform import Platform


class TestPlatformParse:
    def test_os_arch(self):
        p = plat.parse("linux/amd64")
        assert p.os == "linux"
        assert p.architecture == "amd64"
        assert p.variant is None

    def test_arm64_v8_normalized(self):
        assert plat.parse("linux/arm64/v8").variant is None

    def test_arm_defaults_to_v7(self):
        assert plat.parse("linux/arm").variant == "v7"

    def test_windows_version(self):
        p = plat.parse("windows/amd64/10.0.17763.1234")
        assert p.os_version == "10.0.17763.1234"
        assert str(p) == "windows/amd64/10.0.17763.1234"

    def test_invalid_component(self):
        with pytest.raises(ValueError):
            plat.parse("linux/amd 64")

    def test_str_normalizes_aliases(self):
        assert str(Platform(os="linux", architecture="aarch64")) == "linux/arm64"
        assert str(Platform(os="linux", architecture="armhf")) == "linux/arm/v7"
        assert str(Platform()) == "unknown"

    def test_json_aliases(self):
        p = Platform.model_validate({"os": "windows", "architecture": "amd64", "os.version": "10.0.1"})
        assert p.os_version == "10.0.1"
        assert p.model_dump(by_alias=True, exclude_none=True)["os.version"] == "10.0.1"


class TestPlatformCompare:
    def test_match_linux_variant(self):
        assert plat.match(Platform(os="linux", architecture="x86_64"), Platform(os="linux", architecture="amd64"))
        assert not plat.match(
            Platform(os="linux", architecture="arm", variant="v6"), Platform(os="linux", architecture="arm")
        )

    def test_windows_version_prefix(self):
        a = Platform(os="windows", architecture="amd64", os_version="10.0.17763.1")
        b = Platform(os="windows", architecture="amd64", os_version="10.0.17763.999")
        c = Platform(os="windows", architecture="amd64", os_version="10.0.20348.1")
        assert plat.match(a, b)
        assert not plat.match(a, c)

    def test_darwin_runs_linux(self):
        host = Platform(os="darwin", architecture="arm64")
        assert plat.compatible(host, Platform(os="linux", architecture="arm64"))
        assert not plat.compatible(host, Platform(os="linux", architecture="amd64"))

    def test_linux_does_not_run_windows(self):
        assert not plat.compatible(
            Platform(os="linux", architecture="amd64"), Platform(os="windows", architecture="amd64")
        )

    def test_better_prefers_same_os(self):
        host = Platform(os="darwin", architecture="arm64")
        linux = Platform(os="linux", architecture="arm64")
        darwin = Platform(os="darwin", architecture="arm64")
        assert plat.better(host, darwin, linux)
        assert not plat.better(host, linux, darwin)
        assert plat.better(host, linux, None)
