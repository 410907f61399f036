"""Custom exceptions for image assembly.

This module defines a hierarchy of exceptions so every stage of the pipeline
reports a typed failure instead of terminating the process.

Exception Hierarchy:
    ImageError (base)
        ├── ImageIOError
        ├── LayoutError
        ├── ToolError
        │   ├── ToolNotFoundError
        │   └── ToolExecutionError
        ├── PartitionError
        │   ├── PartitionTableError
        │   └── PartitionCommitError
        └── PipelineError

Usage:
    from cvd2img.images.exceptions import ToolNotFoundError

    if not executable.exists():
        raise ToolNotFoundError("avbtool", component_dir)
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class ImageError(Exception):
    """Base exception for all image assembly operations."""



class ImageIOError(ImageError):
    """Reading, writing, opening or renaming a file failed."""

    def __init__(self, path, operation: str, cause: Optional[OSError] = None):
        self.path = Path(path)
        self.operation = operation
        self.cause = cause
        msg = f"Failed to {operation} {self.path}"
        if cause is not None:
            reason = cause.strerror or str(cause)
            msg += f": {reason}"
        super().__init__(msg)


class LayoutError(ImageError):
    """A component layout table is malformed."""



class ToolError(ImageError):
    """Base exception for external tool failures."""

    def __init__(self, message: str, tool: str, component_dir=None):
        self.tool = tool
        self.component_dir = Path(component_dir) if component_dir is not None else None
        super().__init__(message)


class ToolNotFoundError(ToolError):
    """The external tool executable does not exist."""

    def __init__(self, tool: str, component_dir):
        super().__init__(f"{tool} not found in {component_dir}", tool, component_dir)


class ToolExecutionError(ToolError):
    """The external tool exited with a non-zero status."""

    def __init__(
        self,
        tool: str,
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        args: Sequence[str] = (),
        component_dir=None,
    ):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.tool_args = list(args)
        msg = f"{tool} exited with code {returncode}"
        output = "\n".join(part for part in (stdout.strip(), stderr.strip()) if part)
        if output:
            msg += f": {output}"
        super().__init__(msg, tool, component_dir)


class PartitionError(ImageError):
    """Base exception for partition table failures."""

    def __init__(self, message: str, index: Optional[int] = None, name: Optional[str] = None):
        self.index = index
        self.name = name
        if index is not None:
            label = f"partition {index}"
            if name:
                label += f" ({name})"
            message = f"{label}: {message}"
        super().__init__(message)


class PartitionTableError(PartitionError):
    """A partition could not be added to the table."""



class PartitionCommitError(PartitionError):
    """The partition table could not be written to the backing file."""



class PipelineError(ImageError):
    """A pipeline stage failed; wraps the underlying error."""

    def __init__(self, stage: str, cause: Exception):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")
