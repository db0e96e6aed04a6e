"""Blob inventory and build manifest generation.

This module handles:
- Listing the published blobs of a build
- Computing and verifying blob checksums
- Generating and writing the image build manifest
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from layerchain.types import BlobInfo

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

BLOB_ID_PATTERN = re.compile(r"^[0-9a-f]{64}$")

MANIFEST_VERSION = "1.0"


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def is_blob_id(name: str) -> bool:
    """Check whether a name is a lowercase sha256 hex digest."""
    return bool(BLOB_ID_PATTERN.match(name))


def discover_blobs(blobs_dir: Path) -> list[BlobInfo]:
    """List published blobs in a blob directory.

    Files whose name is not a digest (e.g. staging files) are skipped.

    Args:
        blobs_dir: Directory holding published blobs.

    Returns:
        BlobInfo list sorted by blob ID.
    """
    if not blobs_dir.exists():
        logger.warning("Blob directory does not exist: %s", blobs_dir)
        return []

    blobs: list[BlobInfo] = []
    for path in sorted(blobs_dir.iterdir()):
        if not path.is_file():
            continue
        if not is_blob_id(path.name):
            logger.debug("Skipping non-blob file: %s", path.name)
            continue
        blobs.append(
            BlobInfo(
                blob_id=path.name,
                path=str(path),
                size_bytes=path.stat().st_size,
            )
        )

    logger.info("Discovered %d blobs in %s", len(blobs), blobs_dir)
    return blobs


def verify_blob(blob: BlobInfo) -> bool:
    """Check that a blob's content digest matches its name.

    Args:
        blob: Blob to verify.

    Returns:
        True if the sha256 of the file equals its blob ID.
    """
    actual = compute_file_hash(Path(blob.path))
    if actual != blob.blob_id:
        logger.warning("Blob %s has digest %s", blob.blob_id, actual)
        return False
    return True


def generate_manifest(
    layers: list[dict[str, Any]],
    blobs: list[BlobInfo],
    builder_version: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate an image build manifest.

    The manifest contains:
    - Per-layer bootstrap and blob
    - The published blob inventory
    - Builder version and timestamps
    - Optional extra metadata

    Args:
        layers: Per-layer result dictionaries, bottom layer first.
        blobs: Published blobs.
        builder_version: Version reported by the builder.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)

    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "generated_at": now.isoformat(),
        "layers": layers,
        "blobs": [asdict(b) for b in blobs],
    }

    if builder_version:
        manifest["builder_version"] = builder_version
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    manifest["summary"] = {
        "total_layers": len(layers),
        "total_blobs": len(blobs),
        "total_size_bytes": sum(b.size_bytes for b in blobs),
    }

    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "BLOB_ID_PATTERN",
    "HASH_CHUNK_SIZE",
    "compute_file_hash",
    "discover_blobs",
    "generate_manifest",
    "is_blob_id",
    "verify_blob",
    "write_manifest",
]
