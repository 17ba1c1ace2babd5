"""Settings storage for installer configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "DSU_SIDELOADER_SETTINGS_PATH",
        Path.home() / ".config" / "dsu-sideloader" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_USERDATA_SIZE_BYTES = 8 * 1024**3
DEFAULT_BUFFER_SIZE = 8192
DEFAULT_INSTALLATION_DIR = "/data/gsi"
DEFAULT_STAGING_DIR = str(Path.home() / ".cache" / "dsu-sideloader" / "staging")
DEFAULT_HTTP_TIMEOUT_SECONDS = 30

DEFAULT_SETTINGS: dict[str, Any] = {
    "userdata_size_bytes": DEFAULT_USERDATA_SIZE_BYTES,
    "staging_dir": DEFAULT_STAGING_DIR,
    "installation_dir": DEFAULT_INSTALLATION_DIR,
    "buffer_size": DEFAULT_BUFFER_SIZE,
    "http_timeout_seconds": DEFAULT_HTTP_TIMEOUT_SECONDS,
    "privileged_timeout_seconds": None,
    "su_binary": "su",
    "gsi_tool_binary": "gsi_tool",
    "keep_staged_files": False,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def get_int(key: str, default: int = 0) -> int:
    """Read an integer setting, falling back to ``default`` on bad values."""
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_optional_float(key: str) -> float | None:
    value = get_setting(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


load_settings()
