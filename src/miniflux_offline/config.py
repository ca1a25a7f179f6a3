"""Configuration persistence: load, save, and derived paths."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir, user_data_dir

from miniflux_offline.fileio import read_json_object, write_json_atomic
from miniflux_offline.models import (
    CONFIG_APP_NAME,
    DEFAULT_ENTRY_LIMIT,
    MAX_ENTRY_LIMIT,
    MAX_PREFETCH_COUNT,
    SORT_DIRECTIONS,
    SORT_ORDERS,
    UserConfig,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration Persistence
# ============================================================================
#
# Validation contract: _dict_to_config() guarantees valid output for any input:
#
#   Field                    Rule                          Handler
#   ───────────────────────  ────────────────────────────  ─────────────────
#   limit                    1 ≤ x ≤ 1000                  _coerce_int_range
#   prefetch_count           0 ≤ x ≤ 100                   _coerce_int_range
#   request_timeout_seconds  1 ≤ x ≤ 300                   _coerce_int_range
#   order                    in SORT_ORDERS                _coerce_choice
#   direction                in SORT_DIRECTIONS            _coerce_choice
#   scalar fields            type-checked via _safe_get()  _dict_to_config
#
CONFIG_FILENAME = "config.json"
QUEUE_DIRNAME = "queue"
DEFAULT_ENTRIES_DIRNAME = "entries"


def get_config_dir() -> Path:
    """Get the per-user configuration directory.

    Uses platformdirs for cross-platform locations:
    - Linux: ~/.config/miniflux-offline/
    - macOS: ~/Library/Application Support/miniflux-offline/
    - Windows: %APPDATA%/miniflux-offline/
    """
    return Path(user_config_dir(CONFIG_APP_NAME))


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILENAME


def get_queue_dir() -> Path:
    """Directory holding the pending mutation documents."""
    return get_config_dir() / QUEUE_DIRNAME


def get_download_root(config: UserConfig) -> Path:
    """Resolve the download root, honoring the user override."""
    custom = config.download_dir.strip()
    if custom:
        return Path(custom).expanduser()
    return Path(user_data_dir(CONFIG_APP_NAME)) / DEFAULT_ENTRIES_DIRNAME


def _config_to_dict(config: UserConfig) -> dict[str, Any]:
    return {
        "server_address": config.server_address,
        "api_token": config.api_token,
        "limit": config.limit,
        "order": config.order,
        "direction": config.direction,
        "hide_read_entries": config.hide_read_entries,
        "include_images": config.include_images,
        "mark_as_read_on_open": config.mark_as_read_on_open,
        "auto_delete_read_on_close": config.auto_delete_read_on_close,
        "prefetch_count": config.prefetch_count,
        "download_dir": config.download_dir,
        "proxy_image_downloader_enabled": config.proxy_image_downloader_enabled,
        "proxy_image_downloader_url": config.proxy_image_downloader_url,
        "proxy_image_downloader_token": config.proxy_image_downloader_token,
        "request_timeout_seconds": config.request_timeout_seconds,
        "version": config.version,
    }


def _safe_get(data: dict, key: str, default: Any, expected_type: type) -> Any:
    """Safely get a value from dict with type validation.

    Returns the default if key is missing or value has wrong type.
    """
    value = data.get(key, default)
    if not isinstance(value, expected_type):
        return default
    # bool is an int subclass; a JSON true must not become limit=1
    if expected_type is int and isinstance(value, bool):
        return default
    return value


def _coerce_int_range(value: Any, default: int, low: int, high: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        return default
    return max(low, min(value, high))


def _coerce_choice(value: Any, default: str, choices: tuple[str, ...]) -> str:
    if isinstance(value, str) and value in choices:
        return value
    return default


def _dict_to_config(data: dict[str, Any]) -> UserConfig:
    defaults = UserConfig()
    return UserConfig(
        server_address=_safe_get(data, "server_address", "", str),
        api_token=_safe_get(data, "api_token", "", str),
        limit=_coerce_int_range(data.get("limit"), DEFAULT_ENTRY_LIMIT, 1, MAX_ENTRY_LIMIT),
        order=_coerce_choice(data.get("order"), defaults.order, SORT_ORDERS),
        direction=_coerce_choice(data.get("direction"), defaults.direction, SORT_DIRECTIONS),
        hide_read_entries=_safe_get(data, "hide_read_entries", True, bool),
        include_images=_safe_get(data, "include_images", True, bool),
        mark_as_read_on_open=_safe_get(data, "mark_as_read_on_open", True, bool),
        auto_delete_read_on_close=_safe_get(data, "auto_delete_read_on_close", False, bool),
        prefetch_count=_coerce_int_range(data.get("prefetch_count"), 0, 0, MAX_PREFETCH_COUNT),
        download_dir=_safe_get(data, "download_dir", "", str),
        proxy_image_downloader_enabled=_safe_get(
            data, "proxy_image_downloader_enabled", False, bool
        ),
        proxy_image_downloader_url=_safe_get(data, "proxy_image_downloader_url", "", str),
        proxy_image_downloader_token=_safe_get(data, "proxy_image_downloader_token", "", str),
        request_timeout_seconds=_coerce_int_range(
            data.get("request_timeout_seconds"), defaults.request_timeout_seconds, 1, 300
        ),
        version=_safe_get(data, "version", 1, int),
    )


def load_config(path: Path | None = None) -> UserConfig:
    """Load configuration from disk.

    Returns default config if the file doesn't exist or is corrupted.
    """
    config_path = path or get_config_path()
    data = read_json_object(config_path)
    if data is None:
        return UserConfig()
    return _dict_to_config(data)


def save_config(config: UserConfig, path: Path | None = None) -> bool:
    """Save configuration to disk atomically.

    Creates the config directory if it doesn't exist.
    Returns True on success, False on failure.
    """
    config_path = path or get_config_path()
    if not write_json_atomic(config_path, _config_to_dict(config)):
        logger.error("Failed to save config to %s", config_path)
        return False
    return True


def apply_config_value(config: UserConfig, key: str, raw: str) -> str | None:
    """Set one config field from its string form. Returns an error message or None."""
    current = _config_to_dict(config)
    if key not in current or key == "version":
        return f"Unknown setting: {key}"
    existing = current[key]
    value: Any
    if isinstance(existing, bool):
        lowered = raw.strip().lower()
        if lowered not in ("true", "false", "1", "0", "yes", "no", "on", "off"):
            return f"{key} expects true or false"
        value = lowered in ("true", "1", "yes", "on")
    elif isinstance(existing, int):
        try:
            value = int(raw)
        except ValueError:
            return f"{key} expects an integer"
    else:
        value = raw
    current[key] = value
    validated = _dict_to_config(current)
    for field_name, field_value in _config_to_dict(validated).items():
        setattr(config, field_name, field_value)
    return None


__all__ = [
    "CONFIG_FILENAME",
    "apply_config_value",
    "get_config_dir",
    "get_config_path",
    "get_download_root",
    "get_queue_dir",
    "load_config",
    "save_config",
]
