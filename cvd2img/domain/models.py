"""Domain model for disk image assembly.

Type-safe value objects passed between the sparse normalizer, the assembler,
the partition table builder and the artifact generators.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


SECTOR_SIZE = 512


# ==============================================================================
# Component Sources
# ==============================================================================


@dataclass(frozen=True)
class FileSource:
    """A raw image file, relative to the directory being assembled."""

    name: str  # e.g., "boot.img"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class BlankRegion:
    """``size`` bytes of zeros, not backed by any file."""

    size: int

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError(f"Blank region size must be positive, got {self.size}")

    @property
    def name(self) -> str:
        return f"blank:{self.size}"

    def __str__(self) -> str:
        return self.name


ComponentSource = Union[FileSource, BlankRegion]


@dataclass(frozen=True)
class ComponentSpec:
    """One entry of a component layout: where the bytes come from and the
    name of the partition they end up in.

    Order within a layout is significant; it defines on-disk sector order.
    """

    source: ComponentSource
    partition_name: str

    @property
    def is_blank(self) -> bool:
        return isinstance(self.source, BlankRegion)


# ==============================================================================
# Layout Results
# ==============================================================================


@dataclass(frozen=True)
class LaidOutPartition:
    """A partition payload as written by the assembler."""

    source_name: str
    partition_name: str
    byte_size: int  # Bytes actually written

    @property
    def sector_count(self) -> int:
        """Sectors spanned, rounding a partial final sector up."""
        return (self.byte_size - 1) // SECTOR_SIZE + 1


@dataclass(frozen=True)
class PartitionTableEntry:
    """A GPT entry derived from a :class:`LaidOutPartition`."""

    name: str
    start_sector: int
    end_sector: int  # Inclusive
    fs_hint: str = "ext2"
    type: str = "normal"

    @property
    def sector_count(self) -> int:
        return self.end_sector - self.start_sector + 1

    @property
    def byte_offset(self) -> int:
        return self.start_sector * SECTOR_SIZE


# ==============================================================================
# Target Architecture
# ==============================================================================


class Arch(str, Enum):
    """CPU architecture of the source images."""

    X86_64 = "x86_64"
    AARCH64 = "aarch64"

    @classmethod
    def host(cls) -> Arch:
        machine = platform.machine().lower()
        if machine in ("aarch64", "arm64"):
            return cls.AARCH64
        return cls.X86_64

    @classmethod
    def parse(cls, value: str) -> Arch:
        normalized = value.strip().lower().replace("-", "_")
        if normalized == "arm64":
            normalized = "aarch64"
        if normalized in ("amd64", "x64"):
            normalized = "x86_64"
        return cls(normalized)


# ==============================================================================
# Tool Invocation
# ==============================================================================


@dataclass(frozen=True)
class ToolOutcome:
    """Result of running an external tool."""

    tool: str
    args: tuple[str, ...] = field(default_factory=tuple)
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0
