from __future__ import annotations

import threading
from collections import Counter
from pathlib import Path

import pytest

from segtui.errors import PreparationError
from segtui.media import (
    FrameInfo,
    GenerateOptions,
    PreparedData,
    ProgressCallback,
    SegmentRange,
    VideoMetadata,
)


def make_prepared(frame_count: int = 100, fps: float = 25.0) -> PreparedData:
    metadata = VideoMetadata(
        width=640,
        height=360,
        frame_rate=fps,
        duration=frame_count / fps,
        frame_count=frame_count,
        codec="h264",
    )
    frames = tuple(FrameInfo(n, n / fps, "") for n in range(frame_count))
    return PreparedData(metadata=metadata, frames=frames)


class FakeBackend:
    def __init__(self, files: list[str] | None = None, frame_count: int = 100) -> None:
        self.files = list(files or [])
        self.frame_count = frame_count
        self.prepare_calls: Counter[str] = Counter()
        self.prepare_failures: Counter[str] = Counter()
        self.prepare_errors: dict[str, Exception] = {}
        self.gates: dict[str, threading.Event] = {}
        self.generate_calls: list[tuple[str, list[SegmentRange], GenerateOptions]] = []
        self.generate_errors: dict[str, list[Exception]] = {}
        self.deleted: list[str] = []
        self.delete_errors: dict[str, OSError] = {}

    def list_media_files(self, root: str) -> list[str]:
        return list(self.files)

    def prepare_task(self, path: str, on_progress: ProgressCallback) -> PreparedData:
        self.prepare_calls[path] += 1
        gate = self.gates.get(path)
        if gate is not None:
            gate.wait(5)
        on_progress("Extracting frames", 50.0)
        error = self.prepare_errors.pop(path, None)
        if error is not None:
            raise error
        if self.prepare_failures[path] > 0:
            self.prepare_failures[path] -= 1
            raise PreparationError(path, "decoder exploded")
        on_progress("Frames ready", 100.0)
        return make_prepared(self.frame_count)

    def generate_output(
        self,
        path: str,
        ranges: list[SegmentRange],
        output_dir: str,
        options: GenerateOptions,
        on_progress: ProgressCallback,
    ) -> str:
        self.generate_calls.append((path, list(ranges), options))
        errors = self.generate_errors.get(path)
        if errors:
            raise errors.pop(0)
        on_progress("Segment 1", 100.0)
        return f"Wrote {len(ranges)} segment(s) to {Path(output_dir) / Path(path).stem}"

    def delete_source(self, path: str) -> None:
        error = self.delete_errors.get(path)
        if error is not None:
            raise error
        self.deleted.append(path)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend(["/videos/a.mp4", "/videos/b.mp4", "/videos/c.mp4"])
