"""Tests for image assembly exception classes."""

import errno
from pathlib import Path

from cvd2img.images.exceptions import (
    ImageError,
    ImageIOError,
    LayoutError,
    PartitionCommitError,
    PartitionError,
    PartitionTableError,
    PipelineError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    def test_image_error_is_base_exception(self):
        error = ImageError("test error")
        assert isinstance(error, Exception)
        assert str(error) == "test error"

    def test_subclasses_inherit_from_image_error(self):
        assert issubclass(ImageIOError, ImageError)
        assert issubclass(LayoutError, ImageError)
        assert issubclass(ToolNotFoundError, ToolError)
        assert issubclass(ToolExecutionError, ToolError)
        assert issubclass(ToolError, ImageError)
        assert issubclass(PartitionTableError, PartitionError)
        assert issubclass(PartitionCommitError, PartitionError)
        assert issubclass(PipelineError, ImageError)


class TestImageIOError:
    def test_includes_path_and_cause(self):
        cause = OSError(errno.ENOENT, "No such file or directory")
        error = ImageIOError("/tmp/boot.img", "open", cause)
        assert error.path == Path("/tmp/boot.img")
        assert error.cause is cause
        assert str(error) == "Failed to open /tmp/boot.img: No such file or directory"

    def test_without_cause(self):
        error = ImageIOError("super.img", "read sparse header from")
        assert str(error) == "Failed to read sparse header from super.img"


class TestToolErrors:
    def test_tool_not_found_message(self):
        error = ToolNotFoundError("avbtool", "/cvd")
        assert error.tool == "avbtool"
        assert error.component_dir == Path("/cvd")
        assert str(error) == "avbtool not found in /cvd"

    def test_tool_execution_error_includes_output(self):
        error = ToolExecutionError("avbtool", 2, stdout="out", stderr="err")
        assert error.returncode == 2
        assert "exited with code 2" in str(error)
        assert "out" in str(error)
        assert "err" in str(error)

    def test_tool_execution_error_without_output(self):
        error = ToolExecutionError("simg2img", 1)
        assert str(error) == "simg2img exited with code 1"


class TestPartitionErrors:
    def test_index_and_name_prefix(self):
        error = PartitionTableError("overlaps partition misc", 2, "boot_a")
        assert error.index == 2
        assert error.name == "boot_a"
        assert str(error) == "partition 2 (boot_a): overlaps partition misc"

    def test_without_index(self):
        error = PartitionCommitError("failed to write disk.img")
        assert error.index is None
        assert str(error) == "failed to write disk.img"


class TestPipelineError:
    def test_wraps_stage_and_cause(self):
        cause = ToolNotFoundError("avbtool", "/cvd")
        error = PipelineError("vbmeta", cause)
        assert error.stage == "vbmeta"
        assert error.cause is cause
        assert str(error) == "vbmeta: avbtool not found in /cvd"
