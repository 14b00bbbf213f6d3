"""Reference parsing and normalization.

References default to registry locators (``registry:port/repo:tag@digest``).
A ``scheme://`` prefix selects another addressing mode; ``ocidir://`` points
at an OCI layout on the local filesystem.

Registry references are normalized on parse: Docker Hub aliases collapse to
``docker.io``, single segment Hub repositories gain the ``library/`` prefix,
and a missing tag and digest defaults the tag to ``latest``.
"""

from __future__ import annotations

import posixpath
import re

from pydantic import BaseModel, ConfigDict

from ocilayout.core.errors import InvalidReferenceError

SCHEME_REG = "reg"
SCHEME_OCIDIR = "ocidir"

DEFAULT_TAG = "latest"
DOCKER_LIBRARY = "library"
DOCKER_REGISTRY = "docker.io"
DOCKER_REGISTRY_LEGACY = "index.docker.io"
DOCKER_REGISTRY_DNS = "registry-1.docker.io"

_HOST_PART = r"(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)"
_HOST_PORT = rf"(?:{_HOST_PART}(?:\.{_HOST_PART})*\.?:[0-9]+)"
_HOST_DOMAIN = rf"(?:{_HOST_PART}(?:(?:\.{_HOST_PART})+\.?|\.))"
_HOST_UPPER = r"(?:[a-zA-Z0-9]*[A-Z][a-zA-Z0-9-]*[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[A-Z][a-zA-Z0-9]*)"
_REGISTRY = rf"(?:{_HOST_DOMAIN}|{_HOST_PORT}|{_HOST_UPPER}|localhost(?::[0-9]+))"
_REPO_PART = r"[a-z0-9]+(?:(?:[_.]|__|[-]*)[a-z0-9]+)*"
_PATH = r"[/a-zA-Z0-9_\-. ]+"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"

_REF_RE = re.compile(
    rf"^(?:({_REGISTRY})/)?({_REPO_PART}(?:/{_REPO_PART})*)(?::({_TAG}))?(?:@({_DIGEST}))?\Z"
)
_SCHEME_RE = re.compile(r"^([a-z]+)://(.+)\Z")
_PATH_RE = re.compile(rf"^({_PATH})(?::({_TAG}))?(?:@({_DIGEST}))?\Z")
_HOST_RE = re.compile(rf"^(?:{_REGISTRY}|localhost)\Z")
_TAG_RE = re.compile(rf"^{_TAG}\Z")
_DIGEST_RE = re.compile(rf"^{_DIGEST}\Z")
_SANITIZE_RE = re.compile(r"[^/a-z0-9]+")


class Ref(BaseModel):
    """A parsed registry or local layout reference.

    Treat instances as values: ``set_tag``, ``set_digest``, and
    ``add_digest`` return modified copies.
    """

    model_config = ConfigDict(frozen=True)

    scheme: str = ""
    reference: str = ""  # unparsed input
    registry: str = ""
    repository: str = ""
    tag: str = ""
    digest: str = ""
    path: str = ""

    def common_name(self) -> str:
        """Return a parsable name for the reference."""
        if self.scheme == SCHEME_REG:
            if not self.repository:
                return ""
            name = f"{self.registry}/{self.repository}" if self.registry else self.repository
        elif self.scheme == SCHEME_OCIDIR:
            name = f"ocidir://{self.path}"
        else:
            return ""
        if self.tag:
            name += f":{self.tag}"
        if self.digest:
            name += f"@{self.digest}"
        return name

    def __str__(self) -> str:
        return self.common_name()

    def is_zero(self) -> bool:
        return not any(
            (self.scheme, self.registry, self.repository, self.path, self.tag, self.digest)
        )

    def is_set(self) -> bool:
        """Return True when the reference locates a repository or layout."""
        if self.scheme == SCHEME_REG:
            return self.repository != ""
        if self.scheme == SCHEME_OCIDIR:
            return self.path != ""
        return False

    # ------------------------------------------------------------------
    # Mutators (return new values)
    # ------------------------------------------------------------------

    def set_tag(self, tag: str) -> Ref:
        """Return a copy pointing at *tag*, with the digest cleared."""
        if tag and not _TAG_RE.match(tag):
            raise InvalidReferenceError(f"invalid tag {tag!r}")
        updated = self.model_copy(update={"tag": tag, "digest": ""})
        return updated.model_copy(update={"reference": updated.common_name()})

    def set_digest(self, digest: str) -> Ref:
        """Return a copy pointing at *digest*, with the tag cleared."""
        if digest and not _DIGEST_RE.match(digest):
            raise InvalidReferenceError(f"invalid digest {digest!r}")
        updated = self.model_copy(update={"tag": "", "digest": digest})
        return updated.model_copy(update={"reference": updated.common_name()})

    def add_digest(self, digest: str) -> Ref:
        """Return a copy with *digest* set and the tag preserved."""
        if digest and not _DIGEST_RE.match(digest):
            raise InvalidReferenceError(f"invalid digest {digest!r}")
        updated = self.model_copy(update={"digest": digest})
        return updated.model_copy(update={"reference": updated.common_name()})

    def to_reg(self) -> Ref:
        """Project a local layout reference into a registry shaped reference.

        The path is cleaned, lowercased, and any run of characters outside
        ``[/a-z0-9]`` becomes ``-`` to produce a synthetic repository on
        ``localhost``.  Registry references are returned unchanged.
        """
        if self.scheme != SCHEME_OCIDIR:
            return self
        repo = posixpath.normpath("/" + self.path).lstrip("/").lower()
        repo = _SANITIZE_RE.sub("-", repo)
        return self.model_copy(
            update={"scheme": SCHEME_REG, "registry": "localhost", "repository": repo, "path": ""}
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _split_scheme(value: str) -> tuple[str, str]:
    m = _SCHEME_RE.match(value)
    if m:
        return m.group(1), m.group(2)
    return "", value


def parse(value: str) -> Ref:
    """Parse a reference string.

    Raises InvalidReferenceError when the string does not match the grammar.
    Uppercase repository names get a dedicated "must be lowercase" message.
    """
    scheme, rest = _split_scheme(value)
    if scheme == "":
        m = _REF_RE.match(rest)
        if m is None:
            if _REF_RE.match(rest.lower()):
                raise InvalidReferenceError(f'invalid reference "{rest}", repo must be lowercase')
            raise InvalidReferenceError(f'invalid reference "{rest}"')
        registry, repository, tag, digest = (g or "" for g in m.groups())
        # "localhost" matches the repository grammar, promote it to the registry
        segments = repository.split("/")
        if registry == "" and segments[0] == "localhost":
            registry = segments[0]
            repository = "/".join(segments[1:])
        if registry in ("", DOCKER_REGISTRY_DNS, DOCKER_REGISTRY_LEGACY):
            registry = DOCKER_REGISTRY
        if registry == DOCKER_REGISTRY and repository and "/" not in repository:
            repository = f"{DOCKER_LIBRARY}/{repository}"
        if tag == "" and digest == "":
            tag = DEFAULT_TAG
        if repository == "":
            raise InvalidReferenceError(f'invalid reference "{rest}"')
        return Ref(
            scheme=SCHEME_REG,
            reference=value,
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest,
        )
    if scheme == SCHEME_OCIDIR:
        m = _PATH_RE.match(rest)
        if m is None or not m.group(1):
            raise InvalidReferenceError(f'invalid path for scheme "{scheme}": {rest}')
        return Ref(
            scheme=SCHEME_OCIDIR,
            reference=value,
            path=m.group(1),
            tag=m.group(2) or "",
            digest=m.group(3) or "",
        )
    raise InvalidReferenceError(f'unhandled reference scheme "{scheme}" in "{value}"')


def parse_host(value: str) -> Ref:
    """Parse a registry host or layout path without repository parts.

    Used for registry level operations.  ``ocidir://path`` is accepted when
    it carries no tag or digest.
    """
    scheme, rest = _split_scheme(value)
    if scheme == "":
        if not _HOST_RE.match(rest):
            raise InvalidReferenceError(f'invalid host "{rest}"')
        registry = rest
        if registry in (DOCKER_REGISTRY_DNS, DOCKER_REGISTRY_LEGACY):
            registry = DOCKER_REGISTRY
        return Ref(scheme=SCHEME_REG, reference=value, registry=registry)
    if scheme == SCHEME_OCIDIR:
        m = _PATH_RE.match(rest)
        if m is None or m.group(2) or m.group(3):
            raise InvalidReferenceError(f'invalid path for scheme "{scheme}": {rest}')
        return Ref(scheme=SCHEME_OCIDIR, reference=value, path=m.group(1))
    raise InvalidReferenceError(f'unhandled reference scheme "{scheme}" in "{value}"')


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def equal_registry(a: Ref, b: Ref) -> bool:
    """Compare the registry (or the layout path) of two references."""
    if a.scheme != b.scheme:
        return False
    if a.scheme == SCHEME_REG:
        return a.registry == b.registry
    if a.scheme == SCHEME_OCIDIR:
        return a.path == b.path
    return a.scheme == ""


def equal_repository(a: Ref, b: Ref) -> bool:
    """Compare the repository (or the layout path) of two references."""
    if a.scheme != b.scheme:
        return False
    if a.scheme == SCHEME_REG:
        return a.registry == b.registry and a.repository == b.repository
    if a.scheme == SCHEME_OCIDIR:
        return a.path == b.path
    return a.scheme == ""
