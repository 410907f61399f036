"""Disk image assembly: sparse conversion, layout, GPT and generated artifacts.

Main Functions:
    - normalize_sparse_images(): Convert sparse super/userdata images to raw
    - assemble(): Lay out component images back-to-back in one file
    - build_table(): Write a GPT describing an assembled layout
    - create_uboot_env(), create_vbmeta(), create_bootconfig(): Generate
      the properties partition images
"""

from .artifacts import (
    create_bootconfig,
    create_uboot_env,
    create_vbmeta,
    render_bootconfig,
    vbmeta_padding,
)
from .assembler import GPT_RESERVED_BYTES, assemble, assembled_size, best_block_size
from .partition_table import (
    GptTableWriter,
    SgdiskTableWriter,
    build_table,
    compute_entries,
    make_writer,
    read_partition_table,
)
from .sparse import is_sparse, normalize, normalize_sparse_images
from .tools import ToolRunner, build_tool_env

__all__ = [
    "GPT_RESERVED_BYTES",
    "GptTableWriter",
    "SgdiskTableWriter",
    "ToolRunner",
    "assemble",
    "assembled_size",
    "best_block_size",
    "build_table",
    "build_tool_env",
    "compute_entries",
    "create_bootconfig",
    "create_uboot_env",
    "create_vbmeta",
    "is_sparse",
    "make_writer",
    "normalize",
    "normalize_sparse_images",
    "read_partition_table",
    "render_bootconfig",
    "vbmeta_padding",
]
