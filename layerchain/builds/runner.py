"""Builder runner for executing the external RAFS builder.

This module handles:
- Composing `create` commands from a per-layer build descriptor
- Executing the builder with subprocess, feeding prefetch patterns on stdin
- Capturing stdout/stderr to log files
- Enforcing build timeouts
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

# Log level handed to the builder itself
BUILDER_LOG_LEVEL = "warn"


class BuilderExecutionError(Exception):
    """Raised when a builder invocation fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "builder_failed",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass(frozen=True)
class BuilderOption:
    """Descriptor of one layer build.

    Attributes:
        parent_bootstrap_path: Bootstrap of the layer below ("" for the base layer).
        bootstrap_path: Where the builder writes this layer's bootstrap.
        rootfs_path: Directory holding the layer's content.
        prefetch_patterns: Newline separated prefetch patterns.
        whiteout_spec: Whiteout convention of the layer.
        output_json_path: Where the builder writes its report.
        blob_path: Where the builder stages the data blob.
        aligned_chunk: Align uncompressed chunks to 4K.
        chunk_dict: Chunk dictionary reference ("" for none).
        image_version: RAFS format version.
    """

    parent_bootstrap_path: str
    bootstrap_path: str
    rootfs_path: str
    prefetch_patterns: str
    whiteout_spec: str
    output_json_path: str
    blob_path: str
    aligned_chunk: bool = False
    chunk_dict: str = ""
    image_version: str = "6"


class BuilderInvoker(Protocol):
    """Anything able to run one layer build synchronously."""

    def run(self, option: BuilderOption) -> None: ...


def compose_builder_command(binary_path: Path | str, option: BuilderOption) -> list[str]:
    """Compose the builder `create` command for one layer.

    Args:
        binary_path: Path to the builder executable.
        option: Layer build descriptor.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        str(binary_path),
        "create",
        "--log-level",
        BUILDER_LOG_LEVEL,
        "--prefetch-policy",
        "fs",
        "--blob",
        option.blob_path,
        "--source-type",
        "directory",
        "--whiteout-spec",
        option.whiteout_spec,
        "--fs-version",
        option.image_version,
    ]

    if option.aligned_chunk:
        cmd.append("--aligned-chunk")

    if option.chunk_dict:
        cmd.extend(["--chunk-dict", option.chunk_dict])

    if option.parent_bootstrap_path:
        cmd.extend(["--parent-bootstrap", option.parent_bootstrap_path])

    cmd.extend(
        [
            "--bootstrap",
            option.bootstrap_path,
            "--output-json",
            option.output_json_path,
            option.rootfs_path,
        ]
    )
    return cmd


class Builder:
    """Runs the external builder as a blocking subprocess.

    Args:
        binary_path: Path to the builder executable.
        timeout: Per-invocation timeout in seconds (None = no timeout).
        log_path: Optional file that builder output is appended to.
    """

    def __init__(
        self,
        binary_path: Path | str,
        timeout: int | None = None,
        log_path: Path | None = None,
    ) -> None:
        self.binary_path = Path(binary_path)
        self.timeout = timeout
        self.log_path = log_path

    def run(self, option: BuilderOption) -> None:
        """Build one layer.

        Args:
            option: Layer build descriptor.

        Raises:
            BuilderExecutionError: If the builder cannot start, times out or
                exits non-zero.
        """
        cmd = compose_builder_command(self.binary_path, option)
        cmd_str = shlex.join(cmd)
        logger.debug("Executing builder: %s", cmd_str)

        if self.log_path is not None:
            self._run_logged(cmd, cmd_str, option.prefetch_patterns, self.log_path)
        else:
            self._run_captured(cmd, option.prefetch_patterns)

    def _run_captured(self, cmd: list[str], prefetch_patterns: str) -> None:
        try:
            result = subprocess.run(
                cmd,
                input=prefetch_patterns,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise BuilderExecutionError(
                f"Builder timed out after {self.timeout} seconds",
                exit_code=-1,
                code="builder_timeout",
            ) from e
        except OSError as e:
            raise BuilderExecutionError(
                f"Failed to execute builder: {e}",
                code="execution_error",
            ) from e

        if result.stdout:
            logger.debug("Builder output: %s", result.stdout.strip())
        if result.returncode != 0:
            stderr = result.stderr.strip() if result.stderr else ""
            raise BuilderExecutionError(
                f"Builder failed with exit code {result.returncode}: {stderr}",
                exit_code=result.returncode,
            )

    def _run_logged(
        self, cmd: list[str], cmd_str: str, prefetch_patterns: str, log_path: Path
    ) -> None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        started_at = datetime.now(timezone.utc)

        try:
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    input=prefetch_patterns,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    text=True,
                    timeout=self.timeout,
                    check=False,
                )
        except subprocess.TimeoutExpired as e:
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {self.timeout} seconds\n")
            raise BuilderExecutionError(
                f"Builder timed out after {self.timeout} seconds. See log: {log_path}",
                exit_code=-1,
                code="builder_timeout",
            ) from e
        except OSError as e:
            raise BuilderExecutionError(
                f"Failed to execute builder: {e}",
                code="execution_error",
            ) from e

        finished_at = datetime.now(timezone.utc)
        with log_path.open("a") as log_file:
            log_file.write(f"# Exit code: {result.returncode}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

        if result.returncode != 0:
            raise BuilderExecutionError(
                f"Builder failed with exit code {result.returncode}. See log: {log_path}",
                exit_code=result.returncode,
            )


def get_builder_version(binary_path: Path | str, timeout: int = 60) -> str:
    """Get the version string reported by `<builder> --version`.

    Args:
        binary_path: Path to the builder executable.
        timeout: Command timeout in seconds.

    Returns:
        First line of the version output, stripped.

    Raises:
        BuilderExecutionError: If the command fails.
    """
    try:
        result = subprocess.run(
            [str(binary_path), "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise BuilderExecutionError(
            f"{binary_path} --version timed out after {timeout}s",
            exit_code=-1,
            code="builder_timeout",
        ) from e
    except subprocess.CalledProcessError as e:
        raise BuilderExecutionError(
            f"{binary_path} --version failed: {e.stderr}",
            exit_code=e.returncode,
        ) from e
    except OSError as e:
        raise BuilderExecutionError(
            f"Failed to run {binary_path}: {e}",
            code="execution_error",
        ) from e

    lines = result.stdout.strip().splitlines()
    return lines[0].strip() if lines else ""


__all__ = [
    "BUILDER_LOG_LEVEL",
    "Builder",
    "BuilderExecutionError",
    "BuilderInvoker",
    "BuilderOption",
    "compose_builder_command",
    "get_builder_version",
]
