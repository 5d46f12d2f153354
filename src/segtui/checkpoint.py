from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from .errors import PersistError
from .media import (
    PreparedData,
    frames_from_list,
    frames_to_list,
    metadata_from_dict,
    metadata_to_dict,
)
from .paths import APP_NAME
from .tasks import BatchSnapshot, TaskStatus, TaskView, display_name

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


def checkpoint_path(output_root: str | Path, variant: str | None = None) -> Path:
    name = f".{APP_NAME}_{variant}_progress.json" if variant else f".{APP_NAME}_progress.json"
    return Path(output_root) / name


def snapshot_to_dict(snapshot: BatchSnapshot) -> dict[str, Any]:
    return {
        "version": CHECKPOINT_VERSION,
        "inputDir": snapshot.input_root,
        "outputDir": snapshot.output_root,
        "tasks": [_task_to_dict(task) for task in snapshot.tasks],
        "currentIndex": snapshot.active_index,
    }


def snapshot_from_dict(data: Any) -> BatchSnapshot | None:
    if not isinstance(data, dict):
        return None
    input_dir = data.get("inputDir")
    output_dir = data.get("outputDir")
    raw_tasks = data.get("tasks")
    index = data.get("currentIndex")
    if not isinstance(input_dir, str) or not isinstance(output_dir, str):
        return None
    if not isinstance(raw_tasks, list):
        return None
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        return None
    tasks: list[TaskView] = []
    for raw in raw_tasks:
        task = _task_from_dict(raw)
        if task is None:
            return None
        tasks.append(task)
    if len({task.path for task in tasks}) != len(tasks):
        return None
    return BatchSnapshot(
        input_root=input_dir,
        output_root=output_dir,
        tasks=tuple(tasks),
        active_index=min(index, len(tasks)),
    )


def save_checkpoint(snapshot: BatchSnapshot, path: Path) -> None:
    payload = json.dumps(snapshot_to_dict(snapshot), ensure_ascii=True, indent=2)
    tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}.{threading.get_ident()}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except OSError as exc:
        _discard(tmp)
        raise PersistError(str(path), str(exc)) from exc


def load_checkpoint(output_root: str | Path, variant: str | None = None) -> BatchSnapshot | None:
    path = checkpoint_path(output_root, variant)
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable checkpoint %s (%s)", path, exc)
        return None
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        logger.warning("Ignoring checkpoint that is not valid JSON: %s", path)
        return None
    snapshot = snapshot_from_dict(data)
    if snapshot is None:
        logger.warning("Ignoring malformed checkpoint: %s", path)
    return snapshot


class Checkpointer:
    """Writes snapshots one at a time and keeps persistence failures non-fatal."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.last_error: str | None = None
        self.writes = 0
        self._lock = threading.Lock()

    def __call__(self, snapshot: BatchSnapshot) -> None:
        self.write(snapshot)

    def write(self, snapshot: BatchSnapshot) -> bool:
        with self._lock:
            try:
                save_checkpoint(snapshot, self.path)
            except PersistError as exc:
                if self.last_error is None:
                    logger.error("%s", exc)
                else:
                    logger.debug("%s", exc)
                self.last_error = exc.reason
                return False
            if self.last_error is not None:
                logger.info("Checkpoint writes recovered: %s", self.path)
            self.last_error = None
            self.writes += 1
            return True


def _task_to_dict(task: TaskView) -> dict[str, Any]:
    data: dict[str, Any] = {
        "path": task.path,
        "name": task.name,
        "status": task.status.value,
    }
    if task.prepared is not None:
        data["cachedMetadata"] = metadata_to_dict(task.prepared.metadata)
        data["cachedFrameIndex"] = frames_to_list(task.prepared.frames)
    if task.last_error is not None:
        data["lastError"] = task.last_error
    if task.result is not None:
        data["result"] = task.result
    return data


def _task_from_dict(data: Any) -> TaskView | None:
    if not isinstance(data, dict):
        return None
    path = data.get("path")
    if not isinstance(path, str) or not path:
        return None
    try:
        status = TaskStatus(data.get("status"))
    except ValueError:
        return None
    name = data.get("name")
    prepared = None
    if "cachedMetadata" in data or "cachedFrameIndex" in data:
        metadata = metadata_from_dict(data.get("cachedMetadata"))
        frames = frames_from_list(data.get("cachedFrameIndex"))
        if metadata is None or frames is None:
            return None
        prepared = PreparedData(metadata=metadata, frames=frames)
    return TaskView(
        path=path,
        name=name if isinstance(name, str) and name else display_name(path),
        status=status,
        prepared=prepared,
        last_error=_as_str(data.get("lastError")),
        result=_as_str(data.get("result")),
    )


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.debug("Could not remove %s (%s)", path, exc)
