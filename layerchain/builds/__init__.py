"""Layered build module.

This module handles:
- Running the external builder for one layer
- Reading build reports
- Resolving and publishing content-addressed blobs
- Sequencing whole-image builds and writing manifests
"""

from layerchain.builds.workflow import (
    LayerBuildError,
    Workflow,
    WorkflowOption,
    WorkflowSetupError,
)

__all__ = ["LayerBuildError", "Workflow", "WorkflowOption", "WorkflowSetupError"]
