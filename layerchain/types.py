"""Shared type definitions for layerchain.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class BlobStatus(str, Enum):
    """Outcome of comparing a build report's blob list with prior state."""

    NONE = "none"
    UNCHANGED = "unchanged"
    NEW = "new"


class LayerBuildStatus(str, Enum):
    """Outcome of one layer build."""

    PUBLISHED = "published"
    DUPLICATE = "duplicate"
    UNCHANGED = "unchanged"
    EMPTY = "empty"


@dataclass
class BlobInfo:
    """Information about a published blob."""

    blob_id: str
    path: str
    size_bytes: int


__all__ = [
    "BlobInfo",
    "BlobStatus",
    "LayerBuildStatus",
]
