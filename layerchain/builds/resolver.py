"""Deciding whether a build produced a new blob.

The report's blob list is an append-only log for the whole image, so only
its tail can be new. Resolution compares the tail with the last blob ID
seen by the previous call; it never does set membership.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from layerchain.types import BlobStatus


@dataclass(frozen=True)
class BlobResolution:
    """Result of resolving a report's blob list.

    Attributes:
        status: Whether the tail is absent, unchanged or new.
        blob_id: The new blob ID when status is NEW, else None.
        last_blob_id: Value to carry into the next resolution.
    """

    status: BlobStatus
    blob_id: str | None
    last_blob_id: str


def resolve_blob(last_blob_id: str, blob_ids: Sequence[str]) -> BlobResolution:
    """Resolve the blob produced by the latest build.

    Args:
        last_blob_id: Tail observed by the previous call ("" if none yet).
        blob_ids: Blob IDs from the current report, most recent last.

    Returns:
        BlobResolution describing the outcome.
    """
    if not blob_ids:
        return BlobResolution(BlobStatus.NONE, None, last_blob_id)

    tail = blob_ids[-1]
    if tail == last_blob_id:
        return BlobResolution(BlobStatus.UNCHANGED, None, last_blob_id)

    return BlobResolution(BlobStatus.NEW, tail, tail)


__all__ = ["BlobResolution", "resolve_blob"]
