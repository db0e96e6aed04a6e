"""Reading the report the builder leaves after each layer build.

The builder writes a JSON object describing its own version and the
cumulative, append-only list of blob IDs produced so far for the image
(most recent last). Extra keys such as ``bootstrap`` or ``trace`` are
ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class BuildReportError(Exception):
    """Base error for build report reading."""

    def __init__(self, message: str, path: Path, code: str = "report_error") -> None:
        super().__init__(message)
        self.path = path
        self.code = code


class ReportUnavailableError(BuildReportError):
    """Raised when the report file is missing or cannot be read."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(
            f"Build report unavailable: {path}: {reason}",
            path,
            code="report_unavailable",
        )


class MalformedReportError(BuildReportError):
    """Raised when the report file cannot be decoded."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(
            f"Malformed build report {path}: {reason}",
            path,
            code="malformed_report",
        )


class BuildReport(BaseModel):
    """Structured report emitted by the builder.

    Attributes:
        version: Builder version string.
        blobs: Blob IDs produced so far for the image, most recent last.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    version: str = Field(
        default="",
        validation_alias=AliasChoices("version", "Version"),
    )
    blobs: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("blobs", "Blobs"),
    )


def read_build_report(path: Path) -> BuildReport:
    """Load and decode a build report.

    Args:
        path: Path to the report JSON file.

    Returns:
        Parsed BuildReport.

    Raises:
        ReportUnavailableError: If the file does not exist or cannot be read.
        MalformedReportError: If the content is not a valid report.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ReportUnavailableError(path, e.strerror or str(e)) from e

    try:
        report = BuildReport.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedReportError(path, str(e)) from e

    logger.debug(
        "Read build report %s: version=%s, %d blob(s)",
        path,
        report.version,
        len(report.blobs),
    )
    return report


__all__ = [
    "BuildReport",
    "BuildReportError",
    "MalformedReportError",
    "ReportUnavailableError",
    "read_build_report",
]
