"""Generated partition images for the properties disk.

Three raw images are produced into a working directory:

- ``uboot_env.img``: the U-Boot environment, packed by ``mkenvimage_slim``
  and given an AVB hash footer.
- ``vbmeta.img``: a top-level vbmeta chaining to ``uboot_env`` and
  ``bootconfig``, padded with zeros up to the next 64 KiB boundary.
- ``bootconfig``: kernel bootconfig properties for the target architecture
  and rendering mode, given an AVB hash footer.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from cvd2img.config import settings
from cvd2img.domain.models import Arch
from cvd2img.logging import LoggerFactory

from .exceptions import ImageIOError
from .tools import AVBTOOL, MKENVIMAGE, ToolRunner

log = LoggerFactory.for_artifacts()

UBOOT_ENV_IMAGE = "uboot_env.img"
UBOOT_ENV_INPUT = "uboot_env_input"
VBMETA_IMAGE = "vbmeta.img"
BOOTCONFIG_IMAGE = "bootconfig"

AVB_TESTKEY = Path("etc") / "cvd_avb_testkey.pem"
AVB_PUBKEY = Path("etc") / "cvd.avbpubkey"
VBMETA_ALIGNMENT = 65536

UBOOT_ENV = (
    b'uenvcmd=setenv bootargs "$cbootargs console=hvc0 '
    b'earlycon=pl011,mmio32,0x9000000 " && run bootcmd_android'
)

BOOTCONFIG_BASE = b"""androidboot.hypervisor.protected_vm.supported=0
androidboot.modem_simulator_ports=9600
androidboot.lcd_density=320
androidboot.vendor.audiocontrol.server.port=9410
androidboot.vendor.audiocontrol.server.cid=3
androidboot.cuttlefish_config_server_port=6800
androidboot.vendor.vehiclehal.server.port=9300
androidboot.fstab_suffix=cf.f2fs.hctr2
androidboot.enable_confirmationui=0
androidboot.hypervisor.vm.supported=0
androidboot.serialno=CUTTLEFISHCVD011
androidboot.setupwizard_mode=DISABLED
androidboot.cpuvulkan.version=4202496
androidboot.ddr_size=4915MB
androidboot.hardware.angle_feature_overrides_enabled=preferLinearFilterForYUV:mapUnspecifiedColorSpaceToPassThrough
androidboot.enable_bootanimation=1
androidboot.hardware.gralloc=minigbm
androidboot.vendor.vehiclehal.server.cid=2
androidboot.hypervisor.version=cf-qemu_cli
androidboot.hardware.vulkan=pastel
androidboot.opengles.version=196609
androidboot.wifi_mac_prefix=5554
androidboot.vsock_tombstone_port=6600
androidboot.hardware.hwcomposer=ranchu
androidboot.serialconsole=0
"""

BOOTCONFIG_BOOT_DEVICES = {
    Arch.X86_64: b"androidboot.boot_devices=pci0000:00/0000:00:0f.0,pci0000:00/0000:00:10.0\n",
    Arch.AARCH64: b"androidboot.boot_devices=4010000000.pcie\n",
}

BOOTCONFIG_RENDER_SOFTWARE = b"androidboot.hardware.egl=angle\n"
BOOTCONFIG_RENDER_VIRGL = b"""androidboot.hardware.egl=mesa
androidboot.hardware.hwcomposer.display_finder_mode=drm
androidboot.hardware.hwcomposer.mode=client
"""


def _algorithm() -> str:
    return settings.get_setting("avb_algorithm", settings.DEFAULT_AVB_ALGORITHM)


def _partition_size() -> int:
    return settings.get_int(
        "hash_footer_partition_size", settings.DEFAULT_HASH_FOOTER_PARTITION_SIZE
    )


def _write_bytes(path: Path, data: bytes) -> None:
    try:
        path.write_bytes(data)
    except OSError as error:
        raise ImageIOError(path, "write", error) from error


def add_hash_footer(
    runner: ToolRunner, image: Path, partition_name: str, partition_size: Optional[int] = None
) -> None:
    """Append an AVB hash footer sized for ``partition_size`` bytes."""
    if partition_size is None:
        partition_size = _partition_size()
    runner.run_checked(
        AVBTOOL,
        [
            "add_hash_footer",
            "--image",
            str(image),
            "--partition_size",
            str(partition_size),
            "--partition_name",
            partition_name,
            "--key",
            str(runner.component_dir / AVB_TESTKEY),
            "--algorithm",
            _algorithm(),
        ],
    )


def create_uboot_env(work_dir: Path, runner: ToolRunner) -> Path:
    """Pack the U-Boot environment image and sign it."""
    work_dir = Path(work_dir)
    env_path = work_dir / UBOOT_ENV_IMAGE
    input_path = work_dir / UBOOT_ENV_INPUT
    _write_bytes(input_path, UBOOT_ENV)

    runner.run_checked(
        MKENVIMAGE,
        ["-output_path", str(env_path), "-input_path", str(input_path)],
    )
    add_hash_footer(runner, env_path, "uboot_env")
    log.debug(f"created {env_path}")
    return env_path


def vbmeta_padding(length: int) -> int:
    """Zero bytes appended to a signed vbmeta of ``length`` bytes.

    Always positive: an exact multiple of 64 KiB still gets a full 64 KiB.
    """
    return VBMETA_ALIGNMENT - (length % VBMETA_ALIGNMENT)


def pad_vbmeta(path: Path) -> int:
    """Append zero padding to ``path``; returns the new length."""
    try:
        with open(path, "ab") as f:
            length = f.seek(0, os.SEEK_END)
            f.write(bytes(vbmeta_padding(length)))
            return f.tell()
    except OSError as error:
        raise ImageIOError(path, "pad", error) from error


def create_vbmeta(work_dir: Path, runner: ToolRunner) -> Path:
    """Create the vbmeta chaining to uboot_env and bootconfig."""
    vbmeta_path = Path(work_dir) / VBMETA_IMAGE
    pubkey = runner.component_dir / AVB_PUBKEY

    runner.run_checked(
        AVBTOOL,
        [
            "make_vbmeta_image",
            "--output",
            str(vbmeta_path),
            "--chain_partition",
            f"uboot_env:1:{pubkey}",
            "--chain_partition",
            f"bootconfig:2:{pubkey}",
            "--key",
            str(runner.component_dir / AVB_TESTKEY),
            "--algorithm",
            _algorithm(),
        ],
    )
    length = pad_vbmeta(vbmeta_path)
    log.debug(f"created {vbmeta_path} ({length} bytes)")
    return vbmeta_path


def render_bootconfig(arch: Arch, virgl: bool) -> bytes:
    """Bootconfig properties for ``arch`` and the chosen rendering mode."""
    render = BOOTCONFIG_RENDER_VIRGL if virgl else BOOTCONFIG_RENDER_SOFTWARE
    return BOOTCONFIG_BASE + BOOTCONFIG_BOOT_DEVICES[Arch(arch)] + render


def create_bootconfig(
    work_dir: Path,
    runner: ToolRunner,
    arch: Arch,
    virgl: bool = False,
) -> Path:
    """Write and sign the bootconfig image, replacing any previous one."""
    bootconfig_path = Path(work_dir) / BOOTCONFIG_IMAGE
    _write_bytes(bootconfig_path, render_bootconfig(arch, virgl))
    add_hash_footer(runner, bootconfig_path, "bootconfig")
    mode = "virgl" if virgl else "software"
    log.debug(f"created {bootconfig_path} ({Arch(arch).value}, {mode} rendering)")
    return bootconfig_path
