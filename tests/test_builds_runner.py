"""Tests for builds/runner.py module.

Tests builder command composition and execution.
Uses mocked subprocess for execution tests.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from layerchain.builds.runner import (
    Builder,
    BuilderExecutionError,
    BuilderOption,
    compose_builder_command,
    get_builder_version,
)


@pytest.fixture
def minimal_option() -> BuilderOption:
    """Create a descriptor for a base layer with no optional settings."""
    return BuilderOption(
        parent_bootstrap_path="",
        bootstrap_path="/work/bootstraps/0-base",
        rootfs_path="/layers/base",
        prefetch_patterns="/",
        whiteout_spec="oci",
        output_json_path="/work/bootstraps/0-base-output.json",
        blob_path="/work/blobs/3f1c",
    )


@pytest.fixture
def full_option() -> BuilderOption:
    """Create a descriptor with every optional setting."""
    return BuilderOption(
        parent_bootstrap_path="/work/bootstraps/0-base",
        bootstrap_path="/work/bootstraps/1-app",
        rootfs_path="/layers/app",
        prefetch_patterns="/usr\n/etc",
        whiteout_spec="overlayfs",
        output_json_path="/work/bootstraps/1-app-output.json",
        blob_path="/work/blobs/9d2e",
        aligned_chunk=True,
        chunk_dict="bootstrap=/dict.boot",
        image_version="5",
    )


def option_value(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class TestComposeBuilderCommand:
    """Tests for compose_builder_command function."""

    def test_minimal_command(self, minimal_option):
        """Should compose the create command with required options."""
        cmd = compose_builder_command("/usr/bin/nydus-image", minimal_option)

        assert cmd[0] == "/usr/bin/nydus-image"
        assert cmd[1] == "create"
        assert option_value(cmd, "--log-level") == "warn"
        assert option_value(cmd, "--prefetch-policy") == "fs"
        assert option_value(cmd, "--blob") == minimal_option.blob_path
        assert option_value(cmd, "--source-type") == "directory"
        assert option_value(cmd, "--whiteout-spec") == "oci"
        assert option_value(cmd, "--fs-version") == "6"
        assert option_value(cmd, "--bootstrap") == minimal_option.bootstrap_path
        assert option_value(cmd, "--output-json") == minimal_option.output_json_path

    def test_rootfs_is_last(self, minimal_option):
        """Layer directory should be the trailing positional argument."""
        cmd = compose_builder_command("nydus-image", minimal_option)

        assert cmd[-1] == "/layers/base"

    def test_omits_empty_optionals(self, minimal_option):
        """Should not pass parent, chunk dict or alignment when unset."""
        cmd = compose_builder_command("nydus-image", minimal_option)

        assert "--parent-bootstrap" not in cmd
        assert "--chunk-dict" not in cmd
        assert "--aligned-chunk" not in cmd

    def test_full_command(self, full_option):
        """Should include every optional argument."""
        cmd = compose_builder_command("nydus-image", full_option)

        assert option_value(cmd, "--parent-bootstrap") == "/work/bootstraps/0-base"
        assert option_value(cmd, "--chunk-dict") == "bootstrap=/dict.boot"
        assert "--aligned-chunk" in cmd
        assert option_value(cmd, "--whiteout-spec") == "overlayfs"
        assert option_value(cmd, "--fs-version") == "5"

    def test_prefetch_patterns_not_in_args(self, full_option):
        """Prefetch patterns go to stdin, not the command line."""
        cmd = compose_builder_command("nydus-image", full_option)

        assert full_option.prefetch_patterns not in cmd


class TestBuilderRun:
    """Tests for Builder.run with mocked subprocess."""

    def test_success_captured(self, minimal_option):
        """Should run the command and feed prefetch patterns on stdin."""
        builder = Builder("/usr/bin/nydus-image", timeout=30)

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")

            builder.run(minimal_option)

            args, kwargs = mock_run.call_args
            assert args[0] == compose_builder_command(
                "/usr/bin/nydus-image", minimal_option
            )
            assert kwargs["input"] == "/"
            assert kwargs["timeout"] == 30

    def test_failure_captured(self, minimal_option):
        """Non-zero exit should raise with the exit code and stderr."""
        builder = Builder("nydus-image")

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                returncode=2, stdout="", stderr="invalid whiteout spec"
            )

            with pytest.raises(BuilderExecutionError) as exc_info:
                builder.run(minimal_option)

            assert exc_info.value.exit_code == 2
            assert exc_info.value.code == "builder_failed"
            assert "invalid whiteout spec" in str(exc_info.value)

    def test_timeout(self, minimal_option):
        """Should raise on timeout."""
        builder = Builder("nydus-image", timeout=10)

        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="nydus-image", timeout=10)

            with pytest.raises(BuilderExecutionError) as exc_info:
                builder.run(minimal_option)

            assert exc_info.value.code == "builder_timeout"

    def test_missing_binary(self, minimal_option):
        """Should raise execution_error when the binary cannot start."""
        builder = Builder("nydus-image")

        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = FileNotFoundError("nydus-image")

            with pytest.raises(BuilderExecutionError) as exc_info:
                builder.run(minimal_option)

            assert exc_info.value.code == "execution_error"
            assert exc_info.value.exit_code is None

    def test_success_logged(self, minimal_option, tmp_path):
        """Should write command and exit code to the log file."""
        log_path = tmp_path / "logs" / "build.log"
        builder = Builder("nydus-image", log_path=log_path)

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)

            builder.run(minimal_option)

        content = log_path.read_text()
        assert "# Command: nydus-image create" in content
        assert "# Exit code: 0" in content

    def test_failure_logged(self, minimal_option, tmp_path):
        """Should reference the log file on failure."""
        log_path = tmp_path / "build.log"
        builder = Builder("nydus-image", log_path=log_path)

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1)

            with pytest.raises(BuilderExecutionError) as exc_info:
                builder.run(minimal_option)

        assert str(log_path) in str(exc_info.value)
        assert "# Exit code: 1" in log_path.read_text()

    def test_timeout_logged(self, minimal_option, tmp_path):
        """Should record the timeout in the log file."""
        log_path = tmp_path / "build.log"
        builder = Builder("nydus-image", timeout=5, log_path=log_path)

        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="nydus-image", timeout=5)

            with pytest.raises(BuilderExecutionError):
                builder.run(minimal_option)

        assert "TIMEOUT after 5 seconds" in log_path.read_text()

    def test_log_appends_across_layers(self, minimal_option, full_option, tmp_path):
        """One log file should collect every layer's run."""
        log_path = tmp_path / "build.log"
        builder = Builder("nydus-image", log_path=log_path)

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            builder.run(minimal_option)
            builder.run(full_option)

        assert log_path.read_text().count("# Command:") == 2


class TestGetBuilderVersion:
    """Tests for get_builder_version function."""

    def test_returns_first_line(self):
        """Should return the first line of --version output."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                stdout="Version: v2.2.4\nGit Commit: abc\n"
            )

            assert get_builder_version("nydus-image") == "Version: v2.2.4"

    def test_failure(self):
        """Should raise when --version fails."""
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.CalledProcessError(
                returncode=1, cmd="nydus-image", stderr="boom"
            )

            with pytest.raises(BuilderExecutionError) as exc_info:
                get_builder_version("nydus-image")

            assert exc_info.value.exit_code == 1
