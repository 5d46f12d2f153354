from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from conftest import make_prepared
from segtui.checkpoint import (
    Checkpointer,
    checkpoint_path,
    load_checkpoint,
    save_checkpoint,
    snapshot_from_dict,
    snapshot_to_dict,
)
from segtui.errors import PersistError
from segtui.task_store import TaskStore
from segtui.tasks import BatchSnapshot, TaskStatus, TaskView


def _snapshot(output_root: Path) -> BatchSnapshot:
    prepared = make_prepared(4)
    return BatchSnapshot(
        input_root="/videos",
        output_root=str(output_root),
        tasks=(
            TaskView("/videos/a.mp4", "a.mp4", TaskStatus.COMPLETED, prepared, None, "Wrote 2 segment(s)"),
            TaskView("/videos/b.mp4", "b.mp4", TaskStatus.ERROR, None, "boom", None),
            TaskView("/videos/c.mp4", "c.mp4", TaskStatus.READY, prepared, None, None),
        ),
        active_index=2,
    )


def test_checkpoint_path_variants(tmp_path: Path) -> None:
    assert checkpoint_path(tmp_path) == tmp_path / ".segtui_progress.json"
    assert checkpoint_path(tmp_path, "fast") == tmp_path / ".segtui_fast_progress.json"


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    snapshot = _snapshot(tmp_path)
    save_checkpoint(snapshot, checkpoint_path(tmp_path))
    loaded = load_checkpoint(tmp_path)
    assert loaded == snapshot
    leftovers = [name for name in os.listdir(tmp_path) if ".tmp." in name]
    assert leftovers == []


def test_wire_format_keys(tmp_path: Path) -> None:
    data = snapshot_to_dict(_snapshot(tmp_path))
    assert data["inputDir"] == "/videos"
    assert data["currentIndex"] == 2
    first = data["tasks"][0]
    assert first["status"] == "completed"
    assert first["cachedMetadata"]["frameCount"] == 4
    assert first["cachedFrameIndex"][1]["frameNumber"] == 1
    assert "cachedMetadata" not in data["tasks"][1]
    assert data["tasks"][1]["lastError"] == "boom"


def test_load_missing_checkpoint(tmp_path: Path) -> None:
    assert load_checkpoint(tmp_path) is None


def test_load_invalid_json_is_ignored(tmp_path: Path) -> None:
    checkpoint_path(tmp_path).write_text("{not-json", encoding="utf-8")
    assert load_checkpoint(tmp_path) is None


@pytest.mark.parametrize(
    "mutate",
    [
        lambda data: data.pop("tasks"),
        lambda data: data.__setitem__("currentIndex", -1),
        lambda data: data["tasks"][0].__setitem__("status", "exploded"),
        lambda data: data["tasks"].append(dict(data["tasks"][0])),
        lambda data: data["tasks"][0]["cachedFrameIndex"].append({"frameNumber": "x"}),
    ],
)
def test_malformed_checkpoint_is_rejected(tmp_path: Path, mutate) -> None:
    data = snapshot_to_dict(_snapshot(tmp_path))
    mutate(data)
    assert snapshot_from_dict(data) is None
    checkpoint_path(tmp_path).write_text(json.dumps(data), encoding="utf-8")
    assert load_checkpoint(tmp_path) is None


@pytest.mark.parametrize(
    "raw",
    [
        b'{"inputDir": "\xff\xfe"}',
        ("[" * 200000 + "]" * 200000).encode("ascii"),
    ],
)
def test_undecodable_checkpoint_is_ignored(tmp_path: Path, raw: bytes) -> None:
    checkpoint_path(tmp_path).write_bytes(raw)
    assert load_checkpoint(tmp_path) is None


def test_current_index_is_clamped(tmp_path: Path) -> None:
    data = snapshot_to_dict(_snapshot(tmp_path))
    data["currentIndex"] = 99
    snapshot = snapshot_from_dict(data)
    assert snapshot is not None
    assert snapshot.active_index == 3
    assert snapshot.is_finished


def test_save_into_missing_parent_raises_persist_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(PersistError):
        save_checkpoint(_snapshot(tmp_path), blocker / "progress.json")


def test_checkpointer_keeps_failures_non_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    checkpointer = Checkpointer(blocker / "progress.json")
    assert checkpointer.write(_snapshot(tmp_path)) is False
    assert checkpointer.last_error is not None
    assert checkpointer.writes == 0


def test_store_mutations_reach_disk(tmp_path: Path) -> None:
    checkpointer = Checkpointer(checkpoint_path(tmp_path))
    store = TaskStore("/videos", tmp_path, on_change=checkpointer)
    store.initialize(["/videos/a.mp4", "/videos/b.mp4"])
    store.advance()
    store.skip_active()
    store.advance()
    loaded = load_checkpoint(tmp_path)
    assert loaded is not None
    assert loaded.tasks[0].status == TaskStatus.SKIPPED
    assert loaded.active_index == 1
    assert checkpointer.writes >= 4
