"""
Pytest configuration and shared fixtures for cvd2img tests.

This module provides a fake Cuttlefish component directory whose ``bin/``
tools are small shell scripts, so the whole pipeline runs without the
Android host tools installed.
"""

import stat
from pathlib import Path
from typing import Dict

import pytest
from loguru import logger

from cvd2img.config import settings
from cvd2img.images.sparse import SPARSE_MAGIC


FAKE_SIMG2IMG = """#!/bin/sh
echo "simg2img $*" >> "$HOME/tools.log"
tail -c +5 "$1" > "$2"
"""

FAKE_MKENVIMAGE = """#!/bin/sh
echo "mkenvimage_slim $*" >> "$HOME/tools.log"
cp "$4" "$2"
"""

# add_hash_footer grows the image to the partition size; make_vbmeta_image
# writes a 1152 byte vbmeta.
FAKE_AVBTOOL = """#!/bin/sh
echo "avbtool $*" >> "$HOME/tools.log"
echo "$ANDROID_ROOT $ANDROID_TZDATA_ROOT" >> "$HOME/env.log"
cmd="$1"
shift
image=""
output=""
size=""
while [ $# -gt 0 ]; do
  case "$1" in
    --image) image="$2"; shift 2 ;;
    --output) output="$2"; shift 2 ;;
    --partition_size) size="$2"; shift 2 ;;
    *) shift ;;
  esac
done
if [ "$cmd" = "add_hash_footer" ]; then
  truncate -s "$size" "$image"
fi
if [ "$cmd" = "make_vbmeta_image" ]; then
  head -c 1152 /dev/zero | tr '\\000' 'V' > "$output"
fi
"""

FAILING_TOOL = """#!/bin/sh
echo "something went wrong"
echo "bad key" >&2
exit 3
"""

# Sizes of the images a test component directory holds.
COMPONENT_SIZES: Dict[str, int] = {
    "boot.img": 8192,
    "init_boot.img": 4096,
    "vendor_boot.img": 12288,
    "vbmeta.img": 4096,
    "vbmeta_system.img": 4096,
    "vbmeta_vendor_dlkm.img": 4096,
    "vbmeta_system_dlkm.img": 4096,
    "super.img": 65536,
    "userdata.img": 32768,
}


def write_tool(component_dir: Path, name: str, script: str) -> Path:
    bin_dir = component_dir / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    path = bin_dir / name
    path.write_text(script)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def write_image(path: Path, size: int, fill: int = 0x5A) -> Path:
    path.write_bytes(bytes([fill]) * size)
    return path


def write_sparse_image(path: Path, payload: bytes) -> Path:
    path.write_bytes(SPARSE_MAGIC + payload)
    return path


@pytest.fixture(autouse=True)
def reset_settings():
    """Each test starts from the default settings."""
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop sinks added during a test so none outlive pytest's captured streams."""
    yield
    logger.remove()


@pytest.fixture
def component_dir(tmp_path) -> Path:
    """
    Fixture providing a component directory with raw images, fake tools and
    signing keys.
    """
    cvd_dir = tmp_path / "cvd"
    cvd_dir.mkdir()
    for index, (name, size) in enumerate(COMPONENT_SIZES.items()):
        write_image(cvd_dir / name, size, fill=index + 1)
    write_tool(cvd_dir, "simg2img", FAKE_SIMG2IMG)
    write_tool(cvd_dir, "mkenvimage_slim", FAKE_MKENVIMAGE)
    write_tool(cvd_dir, "avbtool", FAKE_AVBTOOL)
    etc_dir = cvd_dir / "etc"
    etc_dir.mkdir()
    (etc_dir / "cvd_avb_testkey.pem").write_text("test key\n")
    (etc_dir / "cvd.avbpubkey").write_bytes(b"\x00\x00\x10\x00pubkey")
    return cvd_dir


@pytest.fixture
def work_dir(tmp_path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


@pytest.fixture
def tool_log(component_dir) -> Path:
    return component_dir / "tools.log"


@pytest.fixture
def install_tool():
    """Fixture returning a helper that installs a tool script into ``bin/``."""
    return write_tool


@pytest.fixture
def failing_tool_script() -> str:
    return FAILING_TOOL
