"""Platform descriptions used to select an image from a manifest list."""

from __future__ import annotations

import platform as _host
import re
import sys

from pydantic import BaseModel, ConfigDict, Field

_PART_RE = re.compile(r"^[A-Za-z0-9_-]+\Z")
_VER_RE = re.compile(r"^[A-Za-z0-9._-]+\Z")


class Platform(BaseModel):
    """OS, architecture, and variant of an image."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    architecture: str = ""
    os: str = ""
    os_version: str | None = Field(default=None, alias="os.version")
    os_features: list[str] | None = Field(default=None, alias="os.features")
    variant: str | None = None
    features: list[str] | None = None

    def __str__(self) -> str:
        p = self.normalized()
        if not p.os:
            return "unknown"
        if p.os == "windows":
            parts = [p.os, p.architecture, p.os_version or ""]
        else:
            parts = [p.os, p.architecture, p.variant or ""]
        return "/".join(part for part in parts if part)

    def normalized(self) -> "Platform":
        """Return the platform with architecture aliases and default variants applied."""
        arch = self.architecture
        variant = self.variant or ""
        if arch in ("i386",):
            arch = "386"
        elif arch in ("x86_64", "x86-64"):
            arch = "amd64"
        elif arch == "aarch64":
            arch = "arm64"
        elif arch == "armhf":
            arch, variant = "arm", "v7"
        elif arch == "armel":
            arch, variant = "arm", "v6"
        if arch == "arm64" and variant == "v8":
            variant = ""
        elif arch == "arm" and variant == "":
            variant = "v7"
        elif arch == "amd64" and variant == "v1":
            variant = ""
        os_name = "darwin" if self.os == "macos" else self.os
        return self.model_copy(update={"architecture": arch, "os": os_name, "variant": variant or None})


def local() -> Platform:
    """Return the platform of the running host."""
    os_name = sys.platform
    if os_name.startswith("linux"):
        os_name = "linux"
    elif os_name == "win32":
        os_name = "windows"
    return Platform(os=os_name, architecture=_host.machine().lower()).normalized()


def parse(value: str) -> Platform:
    """Parse ``os[/arch[/variant]]`` (``os/arch/osversion`` on windows)."""
    parts = value.split("/")
    for i, part in enumerate(parts):
        if i == 2 and parts[0] == "windows":
            if not _VER_RE.match(part):
                raise ValueError(f"invalid platform component {part} in {value}")
        elif not _PART_RE.match(part):
            raise ValueError(f"invalid platform component {part} in {value}")
        parts[i] = part.lower()
    os_name = parts[0]
    host = local()
    if os_name in ("", "local"):
        os_name = host.os
    fields: dict[str, str] = {"os": os_name}
    if len(parts) >= 2:
        fields["architecture"] = parts[1]
    elif os_name == host.os:
        fields["architecture"] = host.architecture
    if len(parts) >= 3:
        if os_name == "windows":
            fields["os_version"] = parts[2]
        else:
            fields["variant"] = parts[2]
    return Platform(**fields).normalized()


def _os_version_prefix(version: str | None) -> str:
    return ".".join((version or "").split(".")[:3])


def match(a: Platform, b: Platform) -> bool:
    """Return True if both platforms describe the same target."""
    a, b = a.normalized(), b.normalized()
    if a.os != b.os:
        return False
    if a.os == "linux":
        return a.architecture == b.architecture and a.variant == b.variant
    if a.os == "windows":
        return a.architecture == b.architecture and _os_version_prefix(a.os_version) == _os_version_prefix(
            b.os_version
        )
    return (
        a.architecture == b.architecture
        and a.os_version == b.os_version
        and (a.os_features or []) == (b.os_features or [])
        and a.variant == b.variant
        and (a.features or []) == (b.features or [])
    )


def compatible(host: Platform, target: Platform) -> bool:
    """Return True if an image for *target* runs on *host*."""
    host, target = host.normalized(), target.normalized()
    same_arch = host.architecture == target.architecture and host.variant == target.variant
    if host.os == "linux":
        return host.os == target.os and same_arch
    if host.os == "windows":
        if target.os == "windows":
            return same_arch and _os_version_prefix(host.os_version) == _os_version_prefix(target.os_version)
        return target.os == "linux" and same_arch
    if host.os == "darwin":
        return target.os in ("darwin", "linux") and same_arch
    return match(host, target)


def better(host: Platform, target: Platform, prev: Platform | None) -> bool:
    """Return True if *target* is a closer fit for *host* than *prev*."""
    if not compatible(host, target):
        return False
    if prev is None:
        return True
    host, target, prev = host.normalized(), target.normalized(), prev.normalized()
    for field in ("os", "architecture", "variant", "os_version"):
        t, p, h = getattr(target, field), getattr(prev, field), getattr(host, field)
        if t != p:
            if t == h:
                return True
            if p == h:
                return False
    return False
