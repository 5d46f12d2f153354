from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .paths import config_path
from .sources import DEFAULT_EXTENSIONS, normalize_extensions

CONFIG_VERSION = 1
ON_SUCCESS_CHOICES = ("keep", "delete")


@dataclass
class AppConfig:
    version: int = CONFIG_VERSION
    input_dir: str | None = None
    output_dir: str | None = None
    prefetch_window: int = 2
    output_format: str = "mp4"
    reencode: bool = True
    unattended: bool = False
    on_success: str = "keep"
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    max_depth: int = 0
    variant: str | None = None


def load_config(path: Path | None = None) -> tuple[AppConfig, str | None]:
    path = path or config_path()
    if not path.exists():
        return AppConfig(), None
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        return AppConfig(), f"Failed to read config: {path} ({exc})"
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return AppConfig(), f"Config file is not valid JSON: {path}"
    if not isinstance(data, dict):
        return AppConfig(), f"Config file must be a JSON object: {path}"
    return _parse_config_data(data), None


def save_config(config: AppConfig, path: Path | None = None) -> str | None:
    path = path or config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        return f"Failed to create config directory: {path.parent} ({exc})"
    payload = _config_to_dict(config)
    try:
        path.write_text(
            json.dumps(payload, ensure_ascii=True, indent=2),
            encoding="utf-8",
        )
    except OSError as exc:
        return f"Failed to write config: {path} ({exc})"
    return None


def _parse_config_data(data: dict[str, Any]) -> AppConfig:
    defaults = AppConfig()
    on_success = _as_str(data.get("on_success"))
    if on_success is not None:
        on_success = on_success.lower()
    output_format = _as_str(data.get("output_format"))
    window = _as_nonneg_int(data.get("prefetch_window"))
    depth = _as_nonneg_int(data.get("max_depth"))
    reencode = _as_bool(data.get("reencode"))
    unattended = _as_bool(data.get("unattended"))
    return AppConfig(
        version=_as_int(data.get("version")) or CONFIG_VERSION,
        input_dir=_as_str(data.get("input_dir")),
        output_dir=_as_str(data.get("output_dir")),
        prefetch_window=defaults.prefetch_window if window is None else window,
        output_format=(output_format or defaults.output_format).lstrip(".").lower(),
        reencode=defaults.reencode if reencode is None else reencode,
        unattended=defaults.unattended if unattended is None else unattended,
        on_success=on_success if on_success in ON_SUCCESS_CHOICES else defaults.on_success,
        extensions=list(normalize_extensions(_as_str_list(data.get("extensions")))),
        max_depth=defaults.max_depth if depth is None else depth,
        variant=_as_str(data.get("variant")),
    )


def _config_to_dict(config: AppConfig) -> dict[str, Any]:
    data: dict[str, Any] = {
        "version": config.version,
        "prefetch_window": config.prefetch_window,
        "output_format": config.output_format,
        "reencode": config.reencode,
        "unattended": config.unattended,
        "on_success": config.on_success,
        "extensions": list(config.extensions),
        "max_depth": config.max_depth,
    }
    _set_if(data, "input_dir", config.input_dir)
    _set_if(data, "output_dir", config.output_dir)
    _set_if(data, "variant", config.variant)
    return data


def _set_if(data: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        data[key] = value


def _as_str(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_nonneg_int(value: Any) -> int | None:
    number = _as_int(value)
    if number is None or number < 0:
        return None
    return number
