"""Sparse image detection and conversion to raw form."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

from cvd2img.logging import LoggerFactory

from .exceptions import ImageIOError
from .tools import SIMG2IMG, ToolRunner

log = LoggerFactory.for_sparse()

SPARSE_MAGIC = bytes([0x3A, 0xFF, 0x26, 0xED])
SPARSE_IMAGES = ("super.img", "userdata.img")


def is_sparse(path: Path) -> bool:
    """Return True if ``path`` starts with the sparse image magic."""
    try:
        with open(path, "rb") as f:
            header = f.read(len(SPARSE_MAGIC))
    except OSError as error:
        raise ImageIOError(path, "read", error) from error
    if len(header) < len(SPARSE_MAGIC):
        raise ImageIOError(path, "read sparse header from")
    return header == SPARSE_MAGIC


def normalize(
    component_dir: Path, image: str, runner: Optional[ToolRunner] = None
) -> bool:
    """Convert ``image`` to raw in place if it is sparse.

    The converter writes to a ``.tmp`` sibling which then replaces the
    original. Returns True if a conversion happened.
    """
    src = Path(component_dir) / image
    runner = runner or ToolRunner(component_dir)
    if not is_sparse(src):
        log.debug(f"{image} is already raw")
        return False

    tmp = src.with_suffix(".tmp")
    log.info(f"Converting sparse image {image}")
    runner.run_checked(SIMG2IMG, [str(src), str(tmp)])
    try:
        os.replace(tmp, src)
    except OSError as error:
        raise ImageIOError(src, "replace", error) from error
    return True


def normalize_sparse_images(
    component_dir: Path,
    runner: Optional[ToolRunner] = None,
    images: Iterable[str] = SPARSE_IMAGES,
) -> list[str]:
    """Normalize every sparse image in ``images``; returns converted names."""
    runner = runner or ToolRunner(component_dir)
    converted = []
    for image in images:
        if normalize(component_dir, image, runner):
            converted.append(image)
    return converted
