"""External tool execution for image conversion and signing."""
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from cvd2img.domain.models import ToolOutcome
from cvd2img.logging import LoggerFactory

from .exceptions import ToolError, ToolExecutionError, ToolNotFoundError

log = LoggerFactory.for_tools()

SIMG2IMG = "simg2img"
MKENVIMAGE = "mkenvimage_slim"
AVBTOOL = "avbtool"

TOOL_ENV_KEYS = ("HOME", "ANDROID_ROOT", "ANDROID_TZDATA_ROOT")


def build_tool_env(component_dir: Path) -> dict[str, str]:
    """Environment overrides passed to every tool: all point at the
    canonical component directory."""
    root = str(Path(component_dir).resolve())
    return {key: root for key in TOOL_ENV_KEYS}


class ToolRunner:
    """Runs executables from ``<component_dir>/bin`` with a fixed environment."""

    def __init__(self, component_dir: Path, env: Optional[Mapping[str, str]] = None):
        self.component_dir = Path(component_dir)
        self.env = dict(env) if env is not None else build_tool_env(self.component_dir)

    def tool_path(self, tool: str) -> Path:
        return self.component_dir / "bin" / tool

    def _process_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        return env

    def run(self, tool: str, args: Sequence[str]) -> ToolOutcome:
        """Run ``tool`` and capture its output.

        Raises:
            ToolNotFoundError: the executable does not exist
            ToolError: the executable exists but could not be started
        """
        executable = self.tool_path(tool)
        command = [str(executable), *[str(arg) for arg in args]]
        log.debug(f"Running command: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                env=self._process_env(),
                text=True,
                encoding="utf-8",
                errors="replace",
                capture_output=True,
            )
        except FileNotFoundError:
            raise ToolNotFoundError(tool, self.component_dir) from None
        except OSError as error:
            raise ToolError(
                f"Error executing {tool}: {error}", tool, self.component_dir
            ) from error
        return ToolOutcome(
            tool=tool,
            args=tuple(command[1:]),
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def run_checked(self, tool: str, args: Sequence[str]) -> ToolOutcome:
        """Run ``tool`` and raise ToolExecutionError if it fails."""
        outcome = self.run(tool, args)
        if not outcome.success:
            log.debug(f"{tool} failed with code {outcome.returncode}")
            raise ToolExecutionError(
                tool,
                outcome.returncode,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                args=outcome.args,
                component_dir=self.component_dir,
            )
        return outcome


__all__ = [
    "AVBTOOL",
    "MKENVIMAGE",
    "SIMG2IMG",
    "TOOL_ENV_KEYS",
    "ToolRunner",
    "build_tool_env",
]
