"""Disk image assembly.

Partition payloads are written back-to-back between a zeroed header and
footer reservation that the partition table later occupies::

    [20480 header][payload 1][payload 2]...[payload n][20480 footer]
"""
from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Sequence

from cvd2img.domain.models import BlankRegion, ComponentSpec, LaidOutPartition
from cvd2img.logging import LoggerFactory

from .exceptions import ImageIOError

GPT_RESERVED_BYTES = 20480
MAX_BLOCK_SIZE = 1048576


def best_block_size(size: int) -> int:
    """Largest power of two <= 1 MiB that divides ``size`` and is smaller
    than it. Degrades to 1 for odd sizes."""
    block_size = MAX_BLOCK_SIZE
    while block_size > 1:
        if size > block_size and size % block_size == 0:
            return block_size
        block_size //= 2
    return 1


def _write_blank(out: BinaryIO, size: int, out_file: Path, log) -> None:
    block_size = best_block_size(size)
    chunk = bytes(block_size)
    log.bind(tags=["assembly", "chunk"]).trace(f"blank {size} bytes in {block_size} byte chunks")
    remaining = size
    try:
        while remaining > 0:
            out.write(chunk)
            remaining -= block_size
    except OSError as error:
        raise ImageIOError(out_file, "write", error) from error


def _copy_file(out: BinaryIO, src_path: Path, out_file: Path, log) -> int:
    try:
        src = open(src_path, "rb")
    except OSError as error:
        raise ImageIOError(src_path, "open", error) from error

    with src:
        try:
            size = src_path.stat().st_size
        except OSError as error:
            raise ImageIOError(src_path, "stat", error) from error
        log.debug(f"image: {src_path.name} len={size}")

        block_size = best_block_size(size)
        log.bind(tags=["assembly", "chunk"]).trace(
            f"copying {src_path.name} in {block_size} byte chunks"
        )
        remaining = size
        while remaining > 0:
            try:
                data = src.read(min(block_size, remaining))
            except OSError as error:
                raise ImageIOError(src_path, "read", error) from error
            if not data:
                raise ImageIOError(src_path, f"read {remaining} more bytes from")
            try:
                out.write(data)
            except OSError as error:
                raise ImageIOError(out_file, "write", error) from error
            remaining -= len(data)
    return size


def assemble(
    base_dir: Path,
    components: Sequence[ComponentSpec],
    out_file: Path,
) -> list[LaidOutPartition]:
    """Write every component into ``out_file`` in order.

    Returns one LaidOutPartition per component with the number of bytes
    written for it.
    """
    base_dir = Path(base_dir)
    out_file = Path(out_file)
    log = LoggerFactory.for_assembly()
    layout: list[LaidOutPartition] = []

    try:
        out = open(out_file, "wb")
    except OSError as error:
        raise ImageIOError(out_file, "create", error) from error

    with out:
        reservation = bytes(GPT_RESERVED_BYTES)
        try:
            out.write(reservation)
        except OSError as error:
            raise ImageIOError(out_file, "write", error) from error

        for component in components:
            source = component.source
            if isinstance(source, BlankRegion):
                _write_blank(out, source.size, out_file, log)
                size = source.size
            else:
                size = _copy_file(out, base_dir / source.name, out_file, log)
            layout.append(LaidOutPartition(str(source), component.partition_name, size))

        try:
            out.write(reservation)
        except OSError as error:
            raise ImageIOError(out_file, "write", error) from error

    total = sum(part.byte_size for part in layout) + 2 * GPT_RESERVED_BYTES
    log.info(f"Wrote {len(layout)} partitions to {out_file} ({total} bytes)")
    return layout


def assembled_size(layout: Sequence[LaidOutPartition]) -> int:
    """Expected length of the backing file for ``layout``."""
    return 2 * GPT_RESERVED_BYTES + sum(part.byte_size for part in layout)
