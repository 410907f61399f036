"""End-to-end creation of the system and properties disk images."""

from __future__ import annotations

import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from cvd2img.config import layouts, settings
from cvd2img.domain.models import Arch, ComponentSpec, PartitionTableEntry
from cvd2img.images import artifacts
from cvd2img.images.assembler import assemble
from cvd2img.images.exceptions import ImageError, LayoutError, PipelineError
from cvd2img.images.partition_table import build_table, make_writer
from cvd2img.images.sparse import normalize_sparse_images
from cvd2img.images.tools import ToolRunner
from cvd2img.logging import LoggerFactory, operation_context

log = LoggerFactory.for_pipeline()

TEMP_DIR_PREFIX = "cvd2img"


@dataclass(frozen=True)
class ImageOutputs:
    """Paths of the three disk images produced by a run."""

    system: Path
    properties: Path
    virgl_properties: Path

    @classmethod
    def from_settings(cls) -> ImageOutputs:
        return cls(
            system=Path(settings.get_setting("system_image") or "system.img"),
            properties=Path(settings.get_setting("properties_image") or "properties.img"),
            virgl_properties=Path(
                settings.get_setting("virgl_properties_image") or "properties_virgl.img"
            ),
        )


@contextmanager
def _stage(name: str, **details):
    """Run a pipeline stage, wrapping failures in PipelineError."""
    try:
        with operation_context(name, **details) as stage_log:
            yield stage_log
    except ImageError as error:
        raise PipelineError(name, error) from error


def build_disk_image(
    base_dir: Path,
    components: Sequence[ComponentSpec],
    out_file: Path,
    table_backend: str = "gpt",
) -> list[PartitionTableEntry]:
    """Assemble ``components`` into ``out_file`` and partition it."""
    log.info(f"Creating {out_file} disk image")
    layout = assemble(base_dir, components, out_file)
    return build_table(layout, out_file, make_writer(table_backend, Path(out_file)))


def create_disk_images(
    component_dir: Path,
    outputs: Optional[ImageOutputs] = None,
    *,
    arch: Optional[Arch] = None,
    runner: Optional[ToolRunner] = None,
    table_backend: Optional[str] = None,
    system_components: Optional[Sequence[ComponentSpec]] = None,
    properties_components: Optional[Sequence[ComponentSpec]] = None,
) -> dict[str, list[PartitionTableEntry]]:
    """Create the system, properties and virgl properties disk images.

    Stages run strictly in order and the first failure aborts the run with a
    PipelineError naming the stage. Generated artifacts live in a temporary
    directory that is removed on exit, success or failure.

    Returns:
        Partition table entries keyed by "system", "properties" and
        "virgl_properties".
    """
    component_dir = Path(component_dir)
    outputs = outputs or ImageOutputs.from_settings()
    if arch is None:
        configured = settings.get_setting("arch")
        arch = Arch.parse(configured) if configured else Arch.host()
    runner = runner or ToolRunner(component_dir)
    table_backend = table_backend or settings.get_setting("table_backend", "gpt")
    if system_components is None:
        system_components = layouts.system_layout()
    if properties_components is None:
        properties_components = layouts.properties_layout()
    if not system_components or not properties_components:
        raise LayoutError("Layout has no components")

    tables: dict[str, list[PartitionTableEntry]] = {}

    log.info("Transforming sparse images if needed")
    with _stage("sparse"):
        normalize_sparse_images(component_dir, runner)

    with _stage("system_image", output=str(outputs.system)):
        tables["system"] = build_disk_image(
            component_dir, system_components, outputs.system, table_backend
        )

    with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmp:
        work_dir = Path(tmp)

        log.info("Creating persistent components")
        with _stage("uboot_env"):
            artifacts.create_uboot_env(work_dir, runner)
        with _stage("vbmeta"):
            artifacts.create_vbmeta(work_dir, runner)
        with _stage("bootconfig", virgl=False):
            artifacts.create_bootconfig(work_dir, runner, arch, virgl=False)

        with _stage("properties_image", output=str(outputs.properties)):
            tables["properties"] = build_disk_image(
                work_dir, properties_components, outputs.properties, table_backend
            )

        with _stage("bootconfig", virgl=True):
            artifacts.create_bootconfig(work_dir, runner, arch, virgl=True)

        with _stage("virgl_properties_image", output=str(outputs.virgl_properties)):
            tables["virgl_properties"] = build_disk_image(
                work_dir, properties_components, outputs.virgl_properties, table_backend
            )

    return tables
