"""Image build plans.

A plan is a YAML or JSON file listing the layers of an image, bottom
layer first:

    parent_bootstrap: /path/to/base/bootstrap   # optional
    layers:
      - path: layers/base
      - path: layers/app
        name: app
        whiteout_spec: overlayfs
        aligned_chunk: true

Relative layer paths are resolved against the plan file's directory.
"""

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from layerchain.builds.service import LayerSpec


class PlanError(Exception):
    """Raised when a build plan cannot be loaded."""

    def __init__(self, message: str, path: Path, code: str = "invalid_plan") -> None:
        super().__init__(message)
        self.path = path
        self.code = code


class LayerSchema(BaseModel):
    """Schema for one layer entry.

    Attributes:
        path: Directory holding the layer content.
        name: Optional name used for the layer's bootstrap file.
        whiteout_spec: Whiteout convention (defaults to the configured one).
        aligned_chunk: Align uncompressed chunks (defaults to the configured value).
    """

    model_config = ConfigDict(extra="forbid")

    path: str = Field(description="Layer content directory")
    name: str | None = Field(default=None)
    whiteout_spec: Literal["oci", "overlayfs", "none"] | None = Field(default=None)
    aligned_chunk: bool | None = Field(default=None)

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate path is not blank."""
        if not v.strip():
            raise ValueError("path must not be empty")
        return v


class ImagePlanSchema(BaseModel):
    """Schema for an image build plan."""

    model_config = ConfigDict(extra="forbid")

    layers: list[LayerSchema] = Field(min_length=1)
    parent_bootstrap: str | None = Field(default=None)

    def to_layer_specs(
        self,
        base_dir: Path | None = None,
        whiteout_spec: str = "oci",
        aligned_chunk: bool = False,
    ) -> list[LayerSpec]:
        """Convert plan entries to LayerSpec objects.

        Args:
            base_dir: Directory relative layer paths are resolved against.
            whiteout_spec: Default whiteout convention.
            aligned_chunk: Default chunk alignment.

        Returns:
            LayerSpec list, bottom layer first.
        """
        specs: list[LayerSpec] = []
        for layer in self.layers:
            source = Path(layer.path)
            if base_dir is not None and not source.is_absolute():
                source = base_dir / source
            specs.append(
                LayerSpec(
                    source_dir=source,
                    name=layer.name,
                    whiteout_spec=layer.whiteout_spec or whiteout_spec,
                    aligned_chunk=(
                        aligned_chunk
                        if layer.aligned_chunk is None
                        else layer.aligned_chunk
                    ),
                )
            )
        return specs


def _load_data(path: Path) -> Any:
    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        return json.load(f)


def load_plan(path: Path) -> ImagePlanSchema:
    """Load and validate a build plan (YAML or JSON).

    File format is determined by extension.

    Args:
        path: Path to the plan file.

    Returns:
        Validated ImagePlanSchema instance.

    Raises:
        PlanError: If the file is missing, unparsable or invalid.
    """
    if path.suffix.lower() not in (".yaml", ".yml", ".json"):
        raise PlanError(
            f"Unsupported plan format: {path.suffix}. Use .yaml, .yml, or .json",
            path,
            code="unsupported_format",
        )

    try:
        data = _load_data(path)
    except OSError as e:
        raise PlanError(f"Cannot read plan {path}: {e}", path, code="not_found") from e
    except (yaml.YAMLError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PlanError(f"Cannot parse plan {path}: {e}", path, code="parse_error") from e

    if not isinstance(data, dict):
        raise PlanError(
            f"Expected a mapping in {path}, got {type(data).__name__}",
            path,
            code="parse_error",
        )

    try:
        return ImagePlanSchema.model_validate(data)
    except ValidationError as e:
        raise PlanError(f"Invalid plan {path}: {e}", path) from e


__all__ = ["ImagePlanSchema", "LayerSchema", "PlanError", "load_plan"]
