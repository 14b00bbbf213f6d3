"""Request metadata used to prioritize transfers in an admission queue."""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict

SMALL_LIMIT = 4 * 1024 * 1024
LARGE_PCT = 0.9  # above 90% of the largest queued blob counts as large


class Kind(IntEnum):
    """Request kinds, ordered by preference for small requests."""

    UNKNOWN = 0
    HEAD = 1
    MANIFEST = 2
    QUERY = 3
    BLOB = 4


class Data(BaseModel):
    """Kind and expected size of one request."""

    model_config = ConfigDict(frozen=True)

    kind: Kind = Kind.UNKNOWN
    size: int = 0


def data_next(queued: list[Data], active: list[Data]) -> int:
    """Pick the next queued request to promote.

    Keeps one small request (head, manifest, query) running when possible,
    then splits the remaining slots between the largest blob and the oldest
    entry so large transfers start early without starving anything.
    """
    if not queued:
        return -1
    large_goal = len(active) // 2
    large_i = 0
    large_size = 0
    if large_goal > 0:
        for i, cur in enumerate(queued):
            if cur.kind == Kind.BLOB and cur.size > large_size:
                large_i = i
                large_size = cur.size
    large_cutoff = int(large_size * LARGE_PCT)

    small = large = 0
    for cur in active:
        if cur.kind != Kind.BLOB and cur.size <= SMALL_LIMIT:
            small += 1
        elif cur.kind == Kind.BLOB and large_size > 0 and cur.size >= large_cutoff:
            large += 1

    if active and small == 0:
        best_i = -1
        best_kind = Kind.UNKNOWN
        best_size = 0
        for i, cur in enumerate(queued):
            if cur.kind == Kind.BLOB or cur.size > SMALL_LIMIT:
                continue
            if (
                best_i < 0
                or (cur.kind != Kind.UNKNOWN and (best_kind == Kind.UNKNOWN or cur.kind < best_kind))
                or (cur.kind == best_kind and cur.size > 0 and (cur.size < best_size or best_size <= 0))
            ):
                best_i, best_kind, best_size = i, cur.kind, cur.size
        if best_i >= 0:
            return best_i

    if large_goal > 0 and large < large_goal and large_size > 0:
        return large_i
    return 0
