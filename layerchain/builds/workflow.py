"""Layered build workflow.

This module handles:
- Preparing a fresh blob directory for one image build
- Threading each layer's bootstrap into the next layer as its parent
- Resolving the content digest of the blob each layer produced
- Publishing blobs under their digest with an atomic rename

A Workflow holds mutable chain state (parent bootstrap, last blob ID) and
must be driven by a single caller, one layer at a time, bottom to top.
Distinct images get distinct Workflow instances and target directories
and can be built in parallel.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from layerchain.builds.artifacts import is_blob_id
from layerchain.builds.report import BuildReportError, read_build_report
from layerchain.builds.resolver import resolve_blob
from layerchain.builds.runner import (
    Builder,
    BuilderExecutionError,
    BuilderInvoker,
    BuilderOption,
)
from layerchain.types import BlobStatus, LayerBuildStatus

if TYPE_CHECKING:
    from layerchain.config import Settings

logger = logging.getLogger(__name__)

BLOBS_DIR_NAME = "blobs"
OUTPUT_JSON_SUFFIX = "-output.json"


class WorkflowSetupError(Exception):
    """Raised when the blob directory cannot be prepared."""

    def __init__(self, message: str, code: str = "directory_setup_failure") -> None:
        super().__init__(message)
        self.code = code


class LayerBuildError(Exception):
    """Raised when building a single layer fails."""

    def __init__(self, message: str, layer_dir: str, code: str) -> None:
        super().__init__(message)
        self.layer_dir = layer_dir
        self.code = code


@dataclass(frozen=True)
class WorkflowOption:
    """Configuration of one image build, fixed for its whole lifetime."""

    target_dir: Path
    builder_path: Path = Path("nydus-image")
    chunk_dict: str = ""
    prefetch_patterns: str = "/"
    image_version: str = "6"

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkflowOption:
        return cls(
            target_dir=settings.target_dir,
            builder_path=settings.builder_path,
            chunk_dict=settings.chunk_dict or "",
            prefetch_patterns=settings.prefetch_patterns,
            image_version=settings.image_version,
        )


class Workflow:
    """Sequences layer builds for one image.

    Creating a Workflow wipes and recreates ``<target_dir>/blobs``. Each
    call to :meth:`build` mutates the chain state used by the next call,
    so an instance must not be shared across threads.

    Args:
        option: Image build configuration.
        builder: Layer builder; defaults to running ``option.builder_path``.

    Raises:
        WorkflowSetupError: If the blob directory cannot be recreated.
    """

    def __init__(
        self,
        option: WorkflowOption,
        builder: BuilderInvoker | None = None,
    ) -> None:
        self.option = option
        self.blobs_dir = Path(option.target_dir) / BLOBS_DIR_NAME

        try:
            if self.blobs_dir.is_symlink() or not self.blobs_dir.is_dir():
                self.blobs_dir.unlink()
            else:
                shutil.rmtree(self.blobs_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise WorkflowSetupError(
                f"Remove blob directory {self.blobs_dir}: {e}"
            ) from e
        try:
            self.blobs_dir.mkdir(mode=0o755, parents=True)
        except OSError as e:
            raise WorkflowSetupError(
                f"Create blob directory {self.blobs_dir}: {e}"
            ) from e

        self.backend_config = json.dumps({"dir": str(self.blobs_dir)})
        self.builder: BuilderInvoker = builder or Builder(option.builder_path)

        self.bootstrap_path = ""
        self.parent_bootstrap_path = ""
        self.last_blob_id = ""
        self.builder_version = ""
        self.last_status: LayerBuildStatus | None = None

    def output_json_path(self) -> Path:
        """Report path for the current layer, kept beside its bootstrap."""
        return Path(self.bootstrap_path + OUTPUT_JSON_SUFFIX)

    def build(
        self,
        layer_dir: Path | str,
        whiteout_spec: str,
        parent_bootstrap_path: Path | str | None,
        bootstrap_path: Path | str,
        aligned_chunk: bool = False,
    ) -> Path | None:
        """Build one layer on top of the previous one.

        Args:
            layer_dir: Directory holding the layer's content.
            whiteout_spec: Whiteout convention of the layer.
            parent_bootstrap_path: Overrides the tracked parent for this call
                only; empty or None uses the previous layer's bootstrap.
            bootstrap_path: Where to write this layer's bootstrap.
            aligned_chunk: Align uncompressed chunks to 4K.

        Returns:
            Path of the published blob, whose basename is its sha256 hex
            digest, or None when the layer produced no new blob.

        Raises:
            LayerBuildError: If the builder, report or publish step fails.
        """
        layer_dir = str(layer_dir)
        self.bootstrap_path = str(bootstrap_path)
        parent = (
            str(parent_bootstrap_path)
            if parent_bootstrap_path
            else self.parent_bootstrap_path
        )

        staged_path = self.blobs_dir / str(uuid.uuid4())
        output_json_path = self.output_json_path()

        # A report left by an earlier build must not be mistaken for this one
        try:
            output_json_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LayerBuildError(
                f"remove stale report {output_json_path} of layer {layer_dir}: {e}",
                layer_dir,
                code="report_failure",
            ) from e

        try:
            self.builder.run(
                BuilderOption(
                    parent_bootstrap_path=parent,
                    bootstrap_path=self.bootstrap_path,
                    rootfs_path=layer_dir,
                    prefetch_patterns=self.option.prefetch_patterns,
                    whiteout_spec=whiteout_spec,
                    output_json_path=str(output_json_path),
                    blob_path=str(staged_path),
                    aligned_chunk=aligned_chunk,
                    chunk_dict=self.option.chunk_dict,
                    image_version=self.option.image_version,
                )
            )
        except BuilderExecutionError as e:
            raise LayerBuildError(
                f"build layer {layer_dir}: {e}",
                layer_dir,
                code="invocation_failure",
            ) from e

        self.parent_bootstrap_path = self.bootstrap_path

        try:
            report = read_build_report(output_json_path)
        except BuildReportError as e:
            raise LayerBuildError(
                f"get latest blob of layer {layer_dir}: {e}",
                layer_dir,
                code="report_failure",
            ) from e

        # Recorded for troubleshooting the build environment afterwards
        self.builder_version = report.version

        resolution = resolve_blob(self.last_blob_id, report.blobs)
        if resolution.blob_id is not None and not is_blob_id(resolution.blob_id):
            raise LayerBuildError(
                f"get latest blob of layer {layer_dir}: "
                f"invalid blob ID {resolution.blob_id!r} in {output_json_path}",
                layer_dir,
                code="report_failure",
            )
        self.last_blob_id = resolution.last_blob_id
        digested_path = (
            self.blobs_dir / resolution.blob_id
            if resolution.status is BlobStatus.NEW and resolution.blob_id
            else None
        )
        logger.debug("staged: %s. digested: %s", staged_path, digested_path)

        try:
            size = staged_path.stat().st_size
        except FileNotFoundError:
            self._finish(LayerBuildStatus.EMPTY, layer_dir)
            return None
        except OSError as e:
            raise LayerBuildError(
                f"stat blob {staged_path} of layer {layer_dir}: {e}",
                layer_dir,
                code="publish_failure",
            ) from e

        if size == 0:
            self._discard(staged_path, layer_dir)
            self._finish(LayerBuildStatus.EMPTY, layer_dir)
            return None

        if digested_path is None:
            self._discard(staged_path, layer_dir)
            self._finish(
                LayerBuildStatus.EMPTY
                if resolution.status is BlobStatus.NONE
                else LayerBuildStatus.UNCHANGED,
                layer_dir,
            )
            return None

        # The blob directory is owned by this workflow, so nothing can
        # create the digest name between the check and the rename.
        if digested_path.exists():
            logger.warning("Same blob %s are generated", digested_path)
            self._discard(staged_path, layer_dir)
            self._finish(LayerBuildStatus.DUPLICATE, layer_dir)
            return None

        try:
            os.rename(staged_path, digested_path)
        except OSError as e:
            raise LayerBuildError(
                f"publish blob {digested_path} of layer {layer_dir}: {e}",
                layer_dir,
                code="publish_failure",
            ) from e

        logger.info("Published blob %s for layer %s", digested_path.name, layer_dir)
        self._finish(LayerBuildStatus.PUBLISHED, layer_dir)
        return digested_path

    def _discard(self, staged_path: Path, layer_dir: str) -> None:
        try:
            staged_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LayerBuildError(
                f"remove staged blob {staged_path} of layer {layer_dir}: {e}",
                layer_dir,
                code="publish_failure",
            ) from e

    def _finish(self, status: LayerBuildStatus, layer_dir: str) -> None:
        self.last_status = status
        if status is not LayerBuildStatus.PUBLISHED:
            logger.info("Layer %s produced no new blob (%s)", layer_dir, status.value)


__all__ = [
    "BLOBS_DIR_NAME",
    "LayerBuildError",
    "Workflow",
    "WorkflowOption",
    "WorkflowSetupError",
]
