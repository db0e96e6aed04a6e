"""Shared fixtures for layerchain tests.

FakeBuilder stands in for the external builder binary: it writes a
bootstrap, an optional staged blob and a report, the same files the real
builder leaves behind.
"""

import hashlib
import json
from pathlib import Path

import pytest

from layerchain.builds.runner import BuilderExecutionError, BuilderOption
from layerchain.builds.workflow import WorkflowOption


class FakeBuilder:
    """In-process builder keyed by layer directory.

    Args:
        outputs: Blob bytes to stage per layer directory. Missing or None
            stages nothing; b"" stages an empty file.
        version: Version string written to every report.
        dedup: Do not re-append a digest already present in the report,
            like the real builder does.
    """

    def __init__(
        self,
        outputs: dict[str, bytes | None] | None = None,
        version: str = "v1",
        dedup: bool = True,
    ) -> None:
        self.outputs = outputs or {}
        self.version = version
        self.dedup = dedup
        self.blobs: list[str] = []
        self.calls: list[BuilderOption] = []
        self.fail_layers: set[str] = set()
        self.skip_report_layers: set[str] = set()
        self.raw_reports: dict[str, str] = {}

    def run(self, option: BuilderOption) -> None:
        self.calls.append(option)
        if option.rootfs_path in self.fail_layers:
            raise BuilderExecutionError("exit status 1", exit_code=1)

        Path(option.bootstrap_path).write_text(
            f"bootstrap {option.rootfs_path} parent={option.parent_bootstrap_path}"
        )

        data = self.outputs.get(option.rootfs_path)
        if data is not None:
            Path(option.blob_path).write_bytes(data)
            if data:
                digest = hashlib.sha256(data).hexdigest()
                if not (self.dedup and digest in self.blobs):
                    self.blobs.append(digest)

        if option.rootfs_path in self.skip_report_layers:
            return
        report = self.raw_reports.get(option.rootfs_path)
        if report is None:
            report = json.dumps({"version": self.version, "blobs": self.blobs})
        Path(option.output_json_path).write_text(report)


def sha256_hex(data: bytes) -> str:
    """Return the sha256 hex digest of data."""
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def fake_builder() -> FakeBuilder:
    """Create a FakeBuilder with no outputs configured."""
    return FakeBuilder()


@pytest.fixture
def workflow_option(tmp_path: Path) -> WorkflowOption:
    """Create a WorkflowOption targeting a temporary directory."""
    return WorkflowOption(
        target_dir=tmp_path / "target",
        builder_path=Path("/usr/bin/nydus-image"),
        chunk_dict="bootstrap=/tmp/dict.boot",
        prefetch_patterns="/usr\n/etc",
        image_version="6",
    )


@pytest.fixture
def layers_dir(tmp_path: Path) -> Path:
    """Create a directory for layer bootstraps."""
    path = tmp_path / "bootstraps"
    path.mkdir()
    return path
