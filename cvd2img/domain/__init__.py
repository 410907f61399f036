from .models import (
    Arch,
    BlankRegion,
    ComponentSpec,
    FileSource,
    LaidOutPartition,
    PartitionTableEntry,
    ToolOutcome,
)

__all__ = [
    "Arch",
    "BlankRegion",
    "ComponentSpec",
    "FileSource",
    "LaidOutPartition",
    "PartitionTableEntry",
    "ToolOutcome",
]
