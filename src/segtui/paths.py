from __future__ import annotations

import hashlib
from pathlib import Path

from platformdirs import user_cache_path, user_config_path, user_log_path

APP_NAME = "segtui"


def cache_root() -> Path:
    root = user_cache_path(APP_NAME)
    root.mkdir(parents=True, exist_ok=True)
    return root


def config_root() -> Path:
    root = user_config_path(APP_NAME)
    root.mkdir(parents=True, exist_ok=True)
    return root


def config_path() -> Path:
    return config_root() / "config.json"


def log_path() -> Path:
    root = user_log_path(APP_NAME)
    root.mkdir(parents=True, exist_ok=True)
    return root / f"{APP_NAME}.log"


def frames_cache_dir(source: str, cache_dir: Path | None = None) -> Path:
    root = cache_dir or cache_root() / "frames"
    path = root / path_digest(source)
    path.mkdir(parents=True, exist_ok=True)
    return path


def path_digest(source: str) -> str:
    return hashlib.sha1(source.encode("utf-8")).hexdigest()[:16]
