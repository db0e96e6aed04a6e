"""Image build service.

This module provides the high-level build API:
- build_image(): build every layer of an image bottom to top
- Per-layer bootstrap path allocation
- Build manifest persistence

Builds fail fast: the first layer error propagates and later layers are
not attempted. Retrying is left to the caller.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field

from layerchain.builds.artifacts import discover_blobs, generate_manifest, write_manifest
from layerchain.builds.runner import BuilderInvoker
from layerchain.builds.workflow import Workflow, WorkflowOption, WorkflowSetupError
from layerchain.types import BlobInfo, LayerBuildStatus

logger = logging.getLogger(__name__)

BOOTSTRAPS_DIR_NAME = "bootstraps"
MANIFEST_FILENAME = "manifest.json"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


@dataclass
class LayerSpec:
    """One layer of an image, as handed to build_image()."""

    source_dir: Path
    name: str | None = None
    whiteout_spec: str = "oci"
    aligned_chunk: bool = False


class LayerResult(BaseModel):
    """Outcome of building one layer."""

    index: int
    name: str
    source_dir: str
    bootstrap_path: str
    blob_path: str | None = None
    status: LayerBuildStatus


class ImageBuildResult(BaseModel):
    """Outcome of building a whole image."""

    target_dir: str
    layers: list[LayerResult] = Field(default_factory=list)
    blobs: list[BlobInfo] = Field(default_factory=list)
    builder_version: str = ""
    manifest_path: str | None = None

    @property
    def published(self) -> int:
        """Number of layers that published a new blob."""
        return sum(
            1 for layer in self.layers if layer.status == LayerBuildStatus.PUBLISHED
        )

    @property
    def bootstrap_path(self) -> str | None:
        """Bootstrap of the top layer, which describes the whole image."""
        return self.layers[-1].bootstrap_path if self.layers else None


def layer_name(index: int, spec: LayerSpec) -> str:
    """Return the filesystem-safe name used for a layer's bootstrap."""
    base = spec.name or Path(spec.source_dir).name or "layer"
    return f"{index}-{_UNSAFE_NAME_CHARS.sub('_', base)}"


def build_image(
    layers: list[LayerSpec],
    option: WorkflowOption,
    builder: BuilderInvoker | None = None,
    parent_bootstrap: Path | str | None = None,
    write_manifest_file: bool = True,
) -> ImageBuildResult:
    """Build all layers of an image, bottom layer first.

    Args:
        layers: Layers ordered bottom to top.
        option: Image build configuration.
        builder: Optional layer builder (defaults to the external binary).
        parent_bootstrap: Optional bootstrap the bottom layer is built on.
        write_manifest_file: Write ``manifest.json`` into the target dir.

    Returns:
        ImageBuildResult with per-layer outcomes and the blob inventory.

    Raises:
        WorkflowSetupError: If the bootstrap or blob directory cannot be
            prepared.
        LayerBuildError: If any layer fails to build.
    """
    if not layers:
        raise ValueError("An image needs at least one layer")

    target_dir = Path(option.target_dir)
    bootstraps_dir = target_dir / BOOTSTRAPS_DIR_NAME
    try:
        bootstraps_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkflowSetupError(
            f"Create bootstrap directory {bootstraps_dir}: {e}"
        ) from e

    workflow = Workflow(option, builder=builder)
    result = ImageBuildResult(target_dir=str(target_dir))

    for index, spec in enumerate(layers):
        name = layer_name(index, spec)
        bootstrap_path = bootstraps_dir / name
        logger.info("Building layer %d/%d: %s", index + 1, len(layers), spec.source_dir)

        blob_path = workflow.build(
            spec.source_dir,
            spec.whiteout_spec,
            parent_bootstrap if index == 0 else None,
            bootstrap_path,
            spec.aligned_chunk,
        )
        result.layers.append(
            LayerResult(
                index=index,
                name=name,
                source_dir=str(spec.source_dir),
                bootstrap_path=str(bootstrap_path),
                blob_path=str(blob_path) if blob_path else None,
                status=workflow.last_status,
            )
        )

    result.builder_version = workflow.builder_version
    result.blobs = discover_blobs(workflow.blobs_dir)

    if write_manifest_file:
        manifest = generate_manifest(
            layers=[layer.model_dump(mode="json") for layer in result.layers],
            blobs=result.blobs,
            builder_version=result.builder_version,
        )
        manifest_path = write_manifest(manifest, target_dir / MANIFEST_FILENAME)
        result.manifest_path = str(manifest_path)

    logger.info(
        "Built %d layer(s), %d blob(s) in %s",
        len(result.layers),
        len(result.blobs),
        workflow.blobs_dir,
    )
    return result


__all__ = [
    "BOOTSTRAPS_DIR_NAME",
    "MANIFEST_FILENAME",
    "ImageBuildResult",
    "LayerResult",
    "LayerSpec",
    "build_image",
    "layer_name",
]
