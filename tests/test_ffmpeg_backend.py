from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from segtui.errors import IncompatibleInputs, PreparationError, ProcessingError
from segtui.ffmpeg_backend import (
    FfmpegBackend,
    build_segment_command,
    check_compatibility,
    normalize_timestamps,
    parse_frame_count,
    parse_out_time,
    parse_probe_json,
    parse_rational,
    parse_timestamps,
)
from segtui.media import GenerateOptions, SegmentRange, VideoMetadata

PROBE = {
    "streams": [
        {
            "codec_name": "h264",
            "width": 640,
            "height": 360,
            "r_frame_rate": "25/1",
            "avg_frame_rate": "25/1",
            "nb_read_frames": "3",
        }
    ],
    "format": {"duration": "0.120000"},
}


class FakeTools:
    def __init__(self, probe: dict | None = None, timestamps: str = "0.000000\n0.040000\n0.080000\n") -> None:
        self.probe = probe or PROBE
        self.timestamps = timestamps
        self.runs: list[list[str]] = []
        self.streams: list[list[str]] = []
        self.stream_result: tuple[int, str] = (0, "")

    def runner(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        self.runs.append(command)
        if "-count_frames" in command:
            return subprocess.CompletedProcess(command, 0, stdout=json.dumps(self.probe), stderr="")
        return subprocess.CompletedProcess(command, 0, stdout=self.timestamps, stderr="")

    def stream_runner(self, command: list[str], on_line) -> tuple[int, str]:
        self.streams.append(command)
        target = Path(command[-1])
        if "%06d" in target.name:
            for index in range(1, 4):
                (target.parent / f"frame_{index:06d}.jpg").write_bytes(b"jpg")
            on_line("frame=3")
        else:
            on_line("out_time_us=20000")
        return self.stream_result


def _backend(tmp_path: Path, tools: FakeTools) -> FfmpegBackend:
    return FfmpegBackend(
        cache_dir=tmp_path / "cache",
        runner=tools.runner,
        stream_runner=tools.stream_runner,
    )


def _source(tmp_path: Path) -> Path:
    source = tmp_path / "videos" / "clip.mp4"
    source.parent.mkdir()
    source.write_bytes(b"not really a video")
    return source


def test_prepare_task_extracts_frames_and_caches(tmp_path: Path) -> None:
    tools = FakeTools()
    backend = _backend(tmp_path, tools)
    source = _source(tmp_path)
    messages: list[tuple[str, float]] = []

    prepared = backend.prepare_task(str(source), lambda message, percent: messages.append((message, percent)))
    assert prepared.frame_count == 3
    assert prepared.metadata.codec == "h264"
    assert [frame.timestamp for frame in prepared.frames] == [0.0, 0.04, 0.08]
    assert all(Path(frame.preview_ref).exists() for frame in prepared.frames)
    assert messages[-1][1] == 100.0
    assert any("scale=320:-2" in part for part in tools.streams[0])

    runs_before = len(tools.runs)
    again = backend.prepare_task(str(source), lambda message, percent: None)
    assert again == prepared
    assert len(tools.runs) == runs_before


def test_prepare_task_missing_source(tmp_path: Path) -> None:
    backend = _backend(tmp_path, FakeTools())
    with pytest.raises(PreparationError):
        backend.prepare_task(str(tmp_path / "nope.mp4"), lambda message, percent: None)


def test_prepare_task_reports_probe_failure(tmp_path: Path) -> None:
    source = _source(tmp_path)

    def runner(command: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="warning\nmoov atom not found")

    backend = FfmpegBackend(cache_dir=tmp_path / "cache", runner=runner)
    with pytest.raises(PreparationError) as excinfo:
        backend.prepare_task(str(source), lambda message, percent: None)
    assert excinfo.value.reason == "moov atom not found"


def test_missing_ffprobe_is_a_runtime_error(tmp_path: Path) -> None:
    source = _source(tmp_path)

    def runner(command: list[str]) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(command[0])

    backend = FfmpegBackend(cache_dir=tmp_path / "cache", runner=runner)
    with pytest.raises(RuntimeError, match="Missing command: ffprobe"):
        backend.prepare_task(str(source), lambda message, percent: None)


def test_generate_output_cuts_each_segment(tmp_path: Path) -> None:
    tools = FakeTools()
    backend = _backend(tmp_path, tools)
    source = _source(tmp_path)
    backend.prepare_task(str(source), lambda message, percent: None)
    tools.streams.clear()
    out = tmp_path / "out"
    percents: list[float] = []

    message = backend.generate_output(
        str(source),
        [SegmentRange(0, 1), SegmentRange(2, 2)],
        str(out),
        GenerateOptions(),
        lambda text, percent: percents.append(percent),
    )
    assert message == f"Wrote 2 segments to {out / 'clip'}"
    assert (out / "clip").is_dir()
    first, second = tools.streams
    assert first[-1] == str(out / "clip" / "clip_1.mp4")
    assert second[-1] == str(out / "clip" / "clip_2.mp4")
    assert first[first.index("-ss") + 1] == "0.000000"
    assert first[first.index("-t") + 1] == "0.080000"
    assert second[second.index("-ss") + 1] == "0.080000"
    assert second[second.index("-t") + 1] == "0.040000"
    assert "libx264" in first
    assert percents == sorted(percents)
    assert percents[-1] == 100.0


def test_generate_output_failure(tmp_path: Path) -> None:
    tools = FakeTools()
    backend = _backend(tmp_path, tools)
    source = _source(tmp_path)
    backend.prepare_task(str(source), lambda message, percent: None)
    tools.stream_result = (1, "Conversion failed!")
    with pytest.raises(ProcessingError) as excinfo:
        backend.generate_output(
            str(source), [SegmentRange(0, 1)], str(tmp_path / "out"), GenerateOptions(), lambda t, p: None
        )
    assert str(excinfo.value) == "Segment 1 failed: Conversion failed!"


def test_generate_output_rejects_bad_ranges(tmp_path: Path) -> None:
    tools = FakeTools()
    backend = _backend(tmp_path, tools)
    source = _source(tmp_path)
    backend.prepare_task(str(source), lambda message, percent: None)
    with pytest.raises(ProcessingError):
        backend.generate_output(str(source), [], str(tmp_path / "out"), GenerateOptions(), lambda t, p: None)
    with pytest.raises(ProcessingError):
        backend.generate_output(
            str(source), [SegmentRange(1, 7)], str(tmp_path / "out"), GenerateOptions(), lambda t, p: None
        )


def test_stream_copy_of_unsupported_codec_is_incompatible(tmp_path: Path) -> None:
    probe = json.loads(json.dumps(PROBE))
    probe["streams"][0]["codec_name"] = "prores"
    tools = FakeTools(probe=probe)
    backend = _backend(tmp_path, tools)
    source = _source(tmp_path)
    backend.prepare_task(str(source), lambda message, percent: None)
    options = GenerateOptions(reencode=False)
    with pytest.raises(IncompatibleInputs):
        backend.generate_output(str(source), [SegmentRange(0, 1)], str(tmp_path / "out"), options, lambda t, p: None)
    tools.streams.clear()
    backend.generate_output(
        str(source), [SegmentRange(0, 1)], str(tmp_path / "out"), options.forced(), lambda t, p: None
    )
    assert "libx264" in tools.streams[0]


def test_check_compatibility_allows_copy_safe_codecs() -> None:
    metadata = VideoMetadata(640, 360, 25.0, 10.0, 250, "h264")
    check_compatibility(metadata, GenerateOptions(reencode=False))
    with pytest.raises(IncompatibleInputs):
        check_compatibility(metadata, GenerateOptions(output_format="webm", reencode=False))


def test_build_segment_command_stream_copy_seeks_input() -> None:
    command = build_segment_command("in.mp4", Path("out.mp4"), 1.5, 2.0, reencode=False)
    assert command.index("-ss") < command.index("-i")
    assert command[command.index("-c") + 1] == "copy"
    assert command[-1] == "out.mp4"


def test_parse_rational() -> None:
    assert parse_rational("30000/1001") == pytest.approx(29.97, abs=0.01)
    assert parse_rational("25") == 25.0
    assert parse_rational("0/0") is None
    assert parse_rational("N/A") is None
    assert parse_rational(None) is None


def test_parse_probe_json_fallbacks() -> None:
    data = {
        "streams": [
            {
                "codec_name": "hevc",
                "width": 1920,
                "height": 1080,
                "avg_frame_rate": "0/0",
                "r_frame_rate": "30/1",
                "nb_read_frames": "N/A",
            }
        ],
        "format": {"duration": "2.0"},
    }
    metadata = parse_probe_json(data)
    assert metadata.frame_rate == 30.0
    assert metadata.duration == 2.0
    assert metadata.frame_count == 60
    with pytest.raises(ValueError):
        parse_probe_json({"streams": []})


def test_parse_and_normalize_timestamps() -> None:
    values = parse_timestamps("1.000000\nN/A\n1.040000,\n1.020000\nbad\n")
    assert values == [1.0, 1.04, 1.02]
    assert normalize_timestamps(values) == pytest.approx([0.0, 0.04, 0.04])


def test_parse_progress_lines() -> None:
    assert parse_frame_count("frame=42") == 42
    assert parse_frame_count("fps=30") is None
    assert parse_out_time("out_time_us=1500000") == 1.5
    assert parse_out_time("out_time_ms=1500000") == 1.5
    assert parse_out_time("out_time=00:00:01.5") is None
