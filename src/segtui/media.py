from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Protocol

ProgressCallback = Callable[[str, float], None]


@dataclass(frozen=True)
class VideoMetadata:
    width: int
    height: int
    frame_rate: float
    duration: float
    frame_count: int
    codec: str


@dataclass(frozen=True)
class FrameInfo:
    frame_number: int
    timestamp: float
    preview_ref: str


@dataclass(frozen=True)
class PreparedData:
    metadata: VideoMetadata
    frames: tuple[FrameInfo, ...]

    @property
    def frame_count(self) -> int:
        return len(self.frames)


@dataclass(frozen=True)
class SegmentRange:
    start_frame: int
    end_frame: int


@dataclass(frozen=True)
class GenerateOptions:
    output_format: str = "mp4"
    reencode: bool = True
    force: bool = False

    def forced(self) -> GenerateOptions:
        return GenerateOptions(output_format=self.output_format, reencode=True, force=True)


def metadata_to_dict(metadata: VideoMetadata) -> dict[str, Any]:
    return {
        "width": metadata.width,
        "height": metadata.height,
        "frameRate": metadata.frame_rate,
        "duration": metadata.duration,
        "frameCount": metadata.frame_count,
        "codec": metadata.codec,
    }


def metadata_from_dict(data: Any) -> VideoMetadata | None:
    if not isinstance(data, dict):
        return None
    width = _as_nonneg_int(data.get("width"))
    height = _as_nonneg_int(data.get("height"))
    frame_rate = _as_float(data.get("frameRate"))
    duration = _as_float(data.get("duration"))
    frame_count = _as_nonneg_int(data.get("frameCount"))
    codec = data.get("codec")
    if None in (width, height, frame_rate, duration, frame_count) or not isinstance(codec, str):
        return None
    return VideoMetadata(
        width=width,
        height=height,
        frame_rate=frame_rate,
        duration=duration,
        frame_count=frame_count,
        codec=codec,
    )


def frames_to_list(frames: tuple[FrameInfo, ...]) -> list[dict[str, Any]]:
    return [
        {
            "frameNumber": frame.frame_number,
            "timestampSeconds": frame.timestamp,
            "previewRef": frame.preview_ref,
        }
        for frame in frames
    ]


def frames_from_list(data: Any) -> tuple[FrameInfo, ...] | None:
    if not isinstance(data, list):
        return None
    frames: list[FrameInfo] = []
    for entry in data:
        if not isinstance(entry, dict):
            return None
        number = _as_nonneg_int(entry.get("frameNumber"))
        timestamp = _as_float(entry.get("timestampSeconds"))
        preview_ref = entry.get("previewRef")
        if number is None or timestamp is None or not isinstance(preview_ref, str):
            return None
        frames.append(FrameInfo(number, timestamp, preview_ref))
    return tuple(frames)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return None


def _as_nonneg_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value >= 0:
        return value
    return None


class MediaBackend(Protocol):
    def list_media_files(self, root: str) -> list[str]: ...

    def prepare_task(self, path: str, on_progress: ProgressCallback) -> PreparedData: ...

    def generate_output(
        self,
        path: str,
        ranges: list[SegmentRange],
        output_dir: str,
        options: GenerateOptions,
        on_progress: ProgressCallback,
    ) -> str: ...

    def delete_source(self, path: str) -> None: ...
