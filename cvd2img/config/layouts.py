"""Component layout tables for the system and properties disk images.

Layouts are ordered ``(source, partition)`` pairs. A source is either an
image file name relative to the directory being assembled or ``blank:<bytes>``
for a zero-filled region.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Sequence

from cvd2img.domain.models import BlankRegion, ComponentSpec, FileSource
from cvd2img.images.exceptions import ImageIOError, LayoutError

BLANK_PREFIX = "blank:"

SYSTEM_LAYOUT: tuple[tuple[str, str], ...] = (
    ("blank:1048576", "misc"),
    ("boot.img", "boot_a"),
    ("boot.img", "boot_b"),
    ("init_boot.img", "init_boot_a"),
    ("init_boot.img", "init_boot_b"),
    ("vendor_boot.img", "vendor_boot_a"),
    ("vendor_boot.img", "vendor_boot_b"),
    ("vbmeta.img", "vbmeta_a"),
    ("vbmeta.img", "vbmeta_b"),
    ("vbmeta_system.img", "vbmeta_system_a"),
    ("vbmeta_system.img", "vbmeta_system_b"),
    ("vbmeta_vendor_dlkm.img", "vbmeta_vendor_dlkm_a"),
    ("vbmeta_vendor_dlkm.img", "vbmeta_vendor_dlkm_b"),
    ("vbmeta_system_dlkm.img", "vbmeta_system_dlkm_a"),
    ("vbmeta_system_dlkm.img", "vbmeta_system_dlkm_b"),
    ("super.img", "super"),
    ("userdata.img", "userdata"),
    ("blank:67108864", "metadata"),
)

# Sources here are the generated artifacts, resolved against the temp dir.
PROPERTIES_LAYOUT: tuple[tuple[str, str], ...] = (
    ("uboot_env.img", "uboot_env"),
    ("vbmeta.img", "vbmeta"),
    ("blank:1048576", "frp"),
    ("bootconfig", "bootconfig"),
)


def parse_component(source: str, partition_name: str) -> ComponentSpec:
    """Convert a ``(source, partition)`` token pair into a ComponentSpec."""
    source = str(source).strip()
    partition_name = str(partition_name).strip()
    if not source:
        raise LayoutError(f"Empty source for partition {partition_name!r}")
    if not partition_name:
        raise LayoutError(f"Empty partition name for source {source!r}")
    if source.startswith(BLANK_PREFIX):
        size_text = source[len(BLANK_PREFIX):]
        try:
            size = int(size_text)
        except ValueError:
            raise LayoutError(f"Invalid blank size in {source!r}") from None
        if size <= 0:
            raise LayoutError(f"Blank size must be positive in {source!r}")
        return ComponentSpec(BlankRegion(size), partition_name)
    return ComponentSpec(FileSource(source), partition_name)


def build_layout(entries: Iterable[Sequence[str]]) -> list[ComponentSpec]:
    """Build a validated layout from ``(source, partition)`` pairs."""
    layout: list[ComponentSpec] = []
    seen: set[str] = set()
    for entry in entries:
        if len(entry) != 2:
            raise LayoutError(f"Layout entry must be (source, partition): {entry!r}")
        spec = parse_component(entry[0], entry[1])
        if spec.partition_name in seen:
            raise LayoutError(f"Duplicate partition name: {spec.partition_name}")
        seen.add(spec.partition_name)
        layout.append(spec)
    if not layout:
        raise LayoutError("Layout has no components")
    return layout


def _normalize_entry(entry: Any) -> Sequence[str]:
    if isinstance(entry, dict):
        try:
            return (entry["source"], entry["partition"])
        except KeyError as error:
            raise LayoutError(f"Layout entry missing {error.args[0]!r}: {entry!r}") from None
    if isinstance(entry, (list, tuple)):
        return entry
    raise LayoutError(f"Unsupported layout entry: {entry!r}")


def load_layout(path: Path) -> list[ComponentSpec]:
    """Load an alternate layout from a JSON file.

    Accepts either ``[{"source": ..., "partition": ...}]`` or
    ``[["source", "partition"]]``.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as error:
        raise ImageIOError(path, "read layout", error) from error
    try:
        data = json.loads(text)
    except json.JSONDecodeError as error:
        raise LayoutError(f"Invalid layout file {path}: {error}") from error
    if not isinstance(data, list):
        raise LayoutError(f"Layout file {path} must contain a list")
    return build_layout(_normalize_entry(entry) for entry in data)


def system_layout() -> list[ComponentSpec]:
    return build_layout(SYSTEM_LAYOUT)


def properties_layout() -> list[ComponentSpec]:
    return build_layout(PROPERTIES_LAYOUT)
