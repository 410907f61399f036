"""Settings storage for default output names and signing parameters."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "CVD2IMG_SETTINGS_PATH",
        Path.home() / ".config" / "cvd2img" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_AVB_ALGORITHM = "SHA256_RSA4096"
DEFAULT_HASH_FOOTER_PARTITION_SIZE = 73728

DEFAULT_SETTINGS: dict[str, Any] = {
    "system_image": "system.img",
    "properties_image": "properties.img",
    "virgl_properties_image": "properties_virgl.img",
    "arch": None,
    "avb_algorithm": DEFAULT_AVB_ALGORITHM,
    "hash_footer_partition_size": DEFAULT_HASH_FOOTER_PARTITION_SIZE,
    "table_backend": "gpt",
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


load_settings()
