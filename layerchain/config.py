"""Configuration settings for layerchain.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_target_dir() -> Path:
    """Return the default build target directory."""
    return Path.home() / ".local" / "share" / "layerchain" / "build"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LAYERCHAIN_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAYERCHAIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Builder
    builder_path: Path = Field(
        default=Path("nydus-image"),
        description="Path to the external builder executable",
    )
    builder_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout in seconds for one layer build (no timeout if not set)",
    )

    # Paths
    target_dir: Path = Field(
        default_factory=_default_target_dir,
        description="Output directory holding bootstraps/ and blobs/",
    )
    chunk_dict: str | None = Field(
        default=None,
        description="Chunk dictionary reference passed to the builder",
    )

    # Image build options
    prefetch_patterns: str = Field(
        default="/",
        description="Prefetch patterns written to the builder's stdin",
    )
    image_version: Literal["5", "6"] = Field(
        default="6",
        description="RAFS format version of the built image",
    )
    whiteout_spec: Literal["oci", "overlayfs", "none"] = Field(
        default="oci",
        description="Default whiteout convention for layers",
    )
    aligned_chunk: bool = Field(
        default=False,
        description="Align uncompressed chunks to 4K by default",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
