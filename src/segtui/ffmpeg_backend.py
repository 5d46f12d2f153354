from __future__ import annotations

import json
import logging
import math
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from .errors import IncompatibleInputs, PreparationError, ProcessingError
from .media import (
    FrameInfo,
    GenerateOptions,
    PreparedData,
    ProgressCallback,
    SegmentRange,
    VideoMetadata,
    frames_from_list,
    frames_to_list,
    metadata_from_dict,
    metadata_to_dict,
)
from .paths import frames_cache_dir
from .sources import DEFAULT_EXTENSIONS, delete_source, list_media_files

logger = logging.getLogger(__name__)

Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]
LineCallback = Callable[[str], None]
StreamRunner = Callable[[list[str], LineCallback], tuple[int, str]]

PREVIEW_WIDTH = 320
INDEX_NAME = "index.json"
FRAME_PATTERN = "frame_%06d.jpg"
TIMESTAMP_FIELDS = ("best_effort_timestamp_time", "pkt_pts_time", "pkt_dts_time")
COPY_SAFE_CODECS = {
    "mp4": {"h264", "hevc", "mpeg4", "av1"},
    "mov": {"h264", "hevc", "mpeg4", "prores"},
    "mkv": {"h264", "hevc", "mpeg4", "av1", "vp8", "vp9"},
    "webm": {"vp8", "vp9", "av1"},
}


class FfmpegBackend:
    def __init__(
        self,
        *,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        max_depth: int = 0,
        cache_dir: Path | None = None,
        preview_width: int = PREVIEW_WIDTH,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        runner: Runner | None = None,
        stream_runner: StreamRunner | None = None,
    ) -> None:
        self.extensions = tuple(extensions)
        self.max_depth = max_depth
        self.cache_dir = cache_dir
        self.preview_width = preview_width
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self._runner = runner or _run_subprocess
        self._stream_runner = stream_runner or _stream_subprocess

    def list_media_files(self, root: str) -> list[str]:
        return list_media_files(root, self.extensions, self.max_depth)

    def delete_source(self, path: str) -> None:
        delete_source(path)

    def prepare_task(self, path: str, on_progress: ProgressCallback) -> PreparedData:
        source = Path(path)
        if not source.is_file():
            raise PreparationError(path, "source file does not exist")
        frames_dir = frames_cache_dir(path, self.cache_dir)
        cached = _read_index(frames_dir, source)
        if cached is not None:
            on_progress("Loaded cached frames", 100.0)
            return cached

        on_progress("Reading metadata", 0.0)
        metadata = self.probe_metadata(path)
        timestamps = self.probe_timestamps(path)
        on_progress("Extracting frames", 5.0)
        images = self._extract_frames(path, frames_dir, metadata, timestamps, on_progress)
        limit = min(len(images), len(timestamps))
        if limit == 0:
            raise PreparationError(path, "no frames could be extracted")
        frames = tuple(
            FrameInfo(frame_number=index, timestamp=timestamps[index], preview_ref=str(images[index]))
            for index in range(limit)
        )
        prepared = PreparedData(metadata=metadata, frames=frames)
        _write_index(frames_dir, source, prepared)
        on_progress(f"Extracted {limit} frames", 100.0)
        return prepared

    def generate_output(
        self,
        path: str,
        ranges: list[SegmentRange],
        output_dir: str,
        options: GenerateOptions,
        on_progress: ProgressCallback,
    ) -> str:
        if not ranges:
            raise ProcessingError(path, "no segments selected")
        prepared = self._load_prepared(path)
        metadata = prepared.metadata
        if not options.force:
            check_compatibility(metadata, options)
        timestamps = [frame.timestamp for frame in prepared.frames]
        total_frames = len(timestamps)
        source = Path(path)
        stem = source.stem
        ext = options.output_format.lower().lstrip(".") or "mp4"
        target_dir = Path(output_dir) / stem
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProcessingError(path, f"Failed to create output directory: {exc}") from exc

        total = len(ranges)
        for number, segment in enumerate(ranges, start=1):
            if not 0 <= segment.start_frame <= segment.end_frame < total_frames:
                raise ProcessingError(path, f"Segment {number} has an invalid frame range")
            start = timestamps[segment.start_frame]
            if segment.end_frame + 1 < total_frames:
                stop = timestamps[segment.end_frame + 1]
            else:
                stop = max(metadata.duration, timestamps[segment.end_frame])
            duration = max(0.0, stop - start)
            output_file = target_dir / f"{stem}_{number}.{ext}"
            base = (number - 1) / total * 100

            def on_line(
                line: str, number: int = number, base: float = base, duration: float = duration
            ) -> None:
                seconds = parse_out_time(line)
                if seconds is not None and duration > 0:
                    share = min(1.0, seconds / duration)
                    on_progress(f"Segment {number}/{total}", base + share * 100 / total)

            on_progress(f"Segment {number}/{total}: {output_file.name}", base)
            command = build_segment_command(
                path,
                output_file,
                start,
                duration,
                reencode=options.reencode or options.force,
                ffmpeg=self.ffmpeg,
            )
            returncode, error = self._stream(command, on_line)
            if returncode != 0:
                message = error or f"ffmpeg failed with exit code {returncode}"
                raise ProcessingError(path, f"Segment {number} failed: {message}")

        on_progress(f"Wrote {total} segments", 100.0)
        return f"Wrote {total} segment{'s' if total != 1 else ''} to {target_dir}"

    def probe_metadata(self, path: str) -> VideoMetadata:
        command = [
            self.ffprobe,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-count_frames",
            "-show_entries",
            "stream=codec_name,width,height,r_frame_rate,avg_frame_rate,nb_read_frames,nb_frames,duration",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            path,
        ]
        completed = self._run(command)
        if completed.returncode != 0:
            raise PreparationError(path, _summarize_error(completed, "ffprobe"))
        try:
            data = json.loads(completed.stdout or "")
        except json.JSONDecodeError as exc:
            raise PreparationError(path, "Failed to parse ffprobe JSON") from exc
        try:
            return parse_probe_json(data)
        except ValueError as exc:
            raise PreparationError(path, str(exc)) from exc

    def probe_timestamps(self, path: str) -> list[float]:
        for field in TIMESTAMP_FIELDS:
            command = [
                self.ffprobe,
                "-v",
                "error",
                "-select_streams",
                "v:0",
                "-show_frames",
                "-show_entries",
                f"frame={field}",
                "-of",
                "csv=p=0",
                path,
            ]
            completed = self._run(command)
            if completed.returncode != 0:
                raise PreparationError(path, _summarize_error(completed, "ffprobe"))
            timestamps = parse_timestamps(completed.stdout or "")
            if timestamps:
                return normalize_timestamps(timestamps)
        raise PreparationError(path, "could not read frame timestamps")

    def _extract_frames(
        self,
        path: str,
        frames_dir: Path,
        metadata: VideoMetadata,
        timestamps: list[float],
        on_progress: ProgressCallback,
    ) -> list[Path]:
        for stale in frames_dir.glob("frame_*.jpg"):
            stale.unlink()
        expected = metadata.frame_count or len(timestamps)
        command = [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostats",
            "-progress",
            "pipe:1",
            "-i",
            path,
            "-vf",
            f"scale={self.preview_width}:-2",
            "-fps_mode",
            "passthrough",
            "-q:v",
            "3",
            "-y",
            str(frames_dir / FRAME_PATTERN),
        ]

        def on_line(line: str) -> None:
            frame = parse_frame_count(line)
            if frame is not None and expected > 0:
                on_progress(f"Extracted {frame}/{expected} frames", 5 + min(1.0, frame / expected) * 90)

        returncode, error = self._stream(command, on_line)
        if returncode != 0:
            raise PreparationError(path, error or f"ffmpeg failed with exit code {returncode}")
        return sorted(frames_dir.glob("frame_*.jpg"))

    def _load_prepared(self, path: str) -> PreparedData:
        source = Path(path)
        if not source.is_file():
            raise ProcessingError(path, "source file does not exist")
        cached = _read_index(frames_cache_dir(path, self.cache_dir), source)
        if cached is not None:
            return cached
        try:
            metadata = self.probe_metadata(path)
            timestamps = self.probe_timestamps(path)
        except PreparationError as exc:
            raise ProcessingError(path, exc.reason) from exc
        frames = tuple(FrameInfo(index, value, "") for index, value in enumerate(timestamps))
        return PreparedData(metadata=metadata, frames=frames)

    def _run(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        try:
            return self._runner(command)
        except FileNotFoundError as exc:
            raise RuntimeError(f"Missing command: {command[0]}") from exc

    def _stream(self, command: list[str], on_line: LineCallback) -> tuple[int, str]:
        try:
            return self._stream_runner(command, on_line)
        except FileNotFoundError as exc:
            raise RuntimeError(f"Missing command: {command[0]}") from exc


def check_compatibility(metadata: VideoMetadata, options: GenerateOptions) -> None:
    issues: list[str] = []
    if metadata.width <= 0 or metadata.height <= 0:
        issues.append("resolution could not be read")
    if metadata.duration <= 0:
        issues.append("duration could not be read")
    if not options.reencode:
        ext = options.output_format.lower().lstrip(".")
        safe = COPY_SAFE_CODECS.get(ext, set())
        if metadata.codec.lower() not in safe:
            issues.append(f"codec {metadata.codec} cannot be stream-copied into .{ext}")
    if issues:
        raise IncompatibleInputs("; ".join(issues))


def build_segment_command(
    source: str,
    output_file: Path,
    start: float,
    duration: float,
    *,
    reencode: bool = True,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    head = [ffmpeg, "-hide_banner", "-loglevel", "error", "-nostats", "-progress", "pipe:1"]
    if not reencode:
        return head + [
            "-ss",
            _format_seconds(start),
            "-i",
            source,
            "-t",
            _format_seconds(duration),
            "-c",
            "copy",
            "-avoid_negative_ts",
            "make_zero",
            "-y",
            str(output_file),
        ]
    return head + [
        "-i",
        source,
        "-ss",
        _format_seconds(start),
        "-t",
        _format_seconds(duration),
        "-vf",
        "setpts=PTS-STARTPTS",
        "-fps_mode",
        "vfr",
        "-c:v",
        "libx264",
        "-preset",
        "fast",
        "-crf",
        "18",
        "-c:a",
        "aac",
        "-b:a",
        "192k",
        "-af",
        "aresample=async=1:first_pts=0,asetpts=PTS-STARTPTS",
        "-fflags",
        "+genpts",
        "-avoid_negative_ts",
        "make_zero",
        "-y",
        str(output_file),
    ]


def parse_probe_json(data: Any) -> VideoMetadata:
    if not isinstance(data, dict):
        raise ValueError("ffprobe returned no data")
    streams = data.get("streams")
    if not isinstance(streams, list) or not streams or not isinstance(streams[0], dict):
        raise ValueError("No video stream found")
    stream = streams[0]
    width = stream.get("width")
    height = stream.get("height")
    if not isinstance(width, int) or not isinstance(height, int):
        raise ValueError("Could not read resolution")
    codec = stream.get("codec_name")
    if not isinstance(codec, str):
        raise ValueError("Could not read codec")
    fps = parse_rational(stream.get("avg_frame_rate")) or parse_rational(stream.get("r_frame_rate")) or 0.0
    duration = _parse_number(stream.get("duration"))
    if duration is None:
        fmt = data.get("format")
        duration = _parse_number(fmt.get("duration")) if isinstance(fmt, dict) else None
    if duration is None:
        raise ValueError("Could not read duration")
    count = _parse_count(stream.get("nb_read_frames"))
    if count is None:
        count = _parse_count(stream.get("nb_frames"))
    if count is None:
        count = round(duration * fps) if fps > 0 else 0
    if fps <= 0 and duration > 0 and count > 0:
        fps = count / duration
    return VideoMetadata(
        width=width,
        height=height,
        frame_rate=fps,
        duration=duration,
        frame_count=count,
        codec=codec,
    )


def parse_rational(value: Any) -> float | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or text == "N/A":
        return None
    if "/" in text:
        num_text, den_text = text.split("/", 1)
        try:
            num = float(num_text)
            den = float(den_text)
        except ValueError:
            return None
        if den == 0:
            return None
        return num / den
    try:
        return float(text)
    except ValueError:
        return None


def parse_timestamps(text: str) -> list[float]:
    values: list[float] = []
    for line in text.splitlines():
        token = line.strip().rstrip(",")
        if not token or token == "N/A":
            continue
        try:
            values.append(float(token))
        except ValueError:
            continue
    return values


def normalize_timestamps(values: list[float]) -> list[float]:
    result: list[float] = []
    last = 0.0
    for value in values:
        if not math.isfinite(value) or value < 0 or value < last:
            value = last
        result.append(value)
        last = value
    if result and result[0] > 0:
        first = result[0]
        result = [max(0.0, value - first) for value in result]
    return result


def parse_frame_count(line: str) -> int | None:
    if not line.startswith("frame="):
        return None
    try:
        return int(line.split("=", 1)[1].strip())
    except ValueError:
        return None


def parse_out_time(line: str) -> float | None:
    key, _, value = line.partition("=")
    if key not in {"out_time_us", "out_time_ms"}:
        return None
    try:
        micros = int(value.strip())
    except ValueError:
        return None
    return max(0.0, micros / 1_000_000)


def _read_index(frames_dir: Path, source: Path) -> PreparedData | None:
    path = frames_dir / INDEX_NAME
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        stat = source.stat()
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    if data.get("source") != str(source) or data.get("size") != stat.st_size:
        return None
    if data.get("mtime") != int(stat.st_mtime):
        return None
    metadata = metadata_from_dict(data.get("metadata"))
    frames = frames_from_list(data.get("frames"))
    if metadata is None or not frames:
        return None
    if not Path(frames[0].preview_ref).exists() or not Path(frames[-1].preview_ref).exists():
        return None
    return PreparedData(metadata=metadata, frames=frames)


def _write_index(frames_dir: Path, source: Path, prepared: PreparedData) -> None:
    try:
        stat = source.stat()
        payload = {
            "source": str(source),
            "size": stat.st_size,
            "mtime": int(stat.st_mtime),
            "metadata": metadata_to_dict(prepared.metadata),
            "frames": frames_to_list(prepared.frames),
        }
        (frames_dir / INDEX_NAME).write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not cache frame index for %s (%s)", source, exc)


def _run_subprocess(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, check=False, capture_output=True, text=True)


def _stream_subprocess(command: list[str], on_line: LineCallback) -> tuple[int, str]:
    process = subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
    )
    last_error = ""

    def read_errors() -> None:
        nonlocal last_error
        if process.stderr is None:
            return
        for line in process.stderr:
            stripped = line.strip()
            if stripped:
                last_error = stripped

    reader = threading.Thread(target=read_errors, daemon=True)
    reader.start()
    if process.stdout is not None:
        for line in process.stdout:
            stripped = line.strip()
            if stripped:
                on_line(stripped)
    returncode = process.wait()
    reader.join(timeout=0.5)
    return returncode, last_error


def _summarize_error(completed: subprocess.CompletedProcess[str], tool: str) -> str:
    stderr = completed.stderr or ""
    stdout = completed.stdout or ""
    message = stderr.strip() or stdout.strip()
    if not message:
        return f"{tool} failed with exit code {completed.returncode}"
    return message.splitlines()[-1]


def _parse_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _parse_count(value: Any) -> int | None:
    number = _parse_number(value)
    if number is None or number < 0:
        return None
    return int(number)


def _format_seconds(value: float) -> str:
    return f"{max(0.0, value):.6f}"
