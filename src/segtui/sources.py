from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

DEFAULT_EXTENSIONS = (".mp4",)


def normalize_extensions(values: Iterable[str]) -> tuple[str, ...]:
    result: list[str] = []
    for value in values:
        ext = value.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in result:
            result.append(ext)
    return tuple(result) or DEFAULT_EXTENSIONS


def is_media_file(path: Path, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> bool:
    return path.suffix.lower() in set(extensions)


def list_media_files(
    root: str | Path,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    max_depth: int = 0,
    *,
    show_hidden: bool = False,
) -> list[str]:
    root = Path(root).expanduser()
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")
    wanted = normalize_extensions(extensions)
    found: list[Path] = []
    _collect(root, wanted, max(0, max_depth), show_hidden, found)
    return [str(path.resolve()) for path in sorted(found, key=_sort_key)]


def delete_source(path: str | Path) -> None:
    target = Path(path)
    if not target.exists():
        raise FileNotFoundError(f"File does not exist: {target}")
    if target.is_dir():
        raise IsADirectoryError(f"Refusing to delete a directory: {target}")
    target.unlink()


def _collect(
    directory: Path,
    extensions: tuple[str, ...],
    depth_left: int,
    show_hidden: bool,
    found: list[Path],
) -> None:
    with os.scandir(directory) as entries:
        for entry in entries:
            if not show_hidden and entry.name.startswith("."):
                continue
            try:
                if entry.is_file():
                    path = Path(entry.path)
                    if is_media_file(path, extensions):
                        found.append(path)
                elif entry.is_dir() and depth_left > 0:
                    _collect(Path(entry.path), extensions, depth_left - 1, show_hidden, found)
            except PermissionError:
                continue


def _sort_key(path: Path) -> tuple[str, str]:
    return (str(path.parent).casefold(), path.name.casefold())
