from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import cv2
import numpy as np
import pytest

from src.sieve import extractor as extractor_module
from src.sieve.extractor import (
    ExtractionError,
    ExtractorConfig,
    FrameExtractor,
    compute_timestamps,
    frames_from_images,
)
from src.sieve.inputs import InputError

HAS_FFMPEG = bool(shutil.which("ffmpeg") and shutil.which("ffprobe"))


def _fake_ffmpeg(monkeypatch, probe_payload: dict, frames_written: int) -> list:
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(probe_payload).encode("utf-8"), stderr=b"")
        pattern = Path(cmd[-1])
        for index in range(1, frames_written + 1):
            cv2.imwrite(str(pattern.parent / f"frame_{index:06d}.jpg"), np.full((8, 8, 3), index, dtype=np.uint8))
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(extractor_module, "FFMPEG_PATH", "ffmpeg")
    monkeypatch.setattr(extractor_module, "FFPROBE_PATH", "ffprobe")
    monkeypatch.setattr(extractor_module.subprocess, "run", fake_run)
    return calls


def _video_probe(duration: float, format_name: str = "mov,mp4,m4a,3gp,3g2,mj2") -> dict:
    return {
        "streams": [{"codec_type": "video", "width": 320, "height": 240}],
        "format": {"format_name": format_name, "duration": str(duration)},
    }


def test_compute_timestamps() -> None:
    assert compute_timestamps(0, 10.0) == []
    assert compute_timestamps(1, 10.0) == [0.0]
    assert compute_timestamps(5, 4.0) == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert compute_timestamps(3, 0.0) == [0.0, 1.0, 2.0]


def test_effective_fps_respects_max_frames() -> None:
    extractor = FrameExtractor(ExtractorConfig(fps=5.0, max_frames=300))
    assert extractor.effective_fps(120.0) == pytest.approx(2.5)
    assert extractor.effective_fps(10.0) == pytest.approx(5.0)
    assert extractor.effective_fps(0.0) == pytest.approx(5.0)


def test_extract_builds_frames_and_command(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "clip.mp4"
    source.write_bytes(b"fake")
    calls = _fake_ffmpeg(monkeypatch, _video_probe(2.0), frames_written=5)

    progress = []
    frames = FrameExtractor(ExtractorConfig(fps=5.0, scale=360)).extract(
        source, tmp_path / "frames", on_progress=progress.append
    )

    assert [frame.id for frame in frames] == [0, 1, 2, 3, 4]
    assert [frame.timestamp for frame in frames] == [0.0, 0.5, 1.0, 1.5, 2.0]
    assert all(frame.path is not None and frame.path.exists() for frame in frames)
    ffmpeg_cmd = calls[-1]
    assert "fps=5.000000,scale=-1:360" in ffmpeg_cmd
    assert progress == [10.0, 90.0]


def test_extract_truncates_to_max_frames(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "clip.gif"
    source.write_bytes(b"fake")
    _fake_ffmpeg(monkeypatch, _video_probe(1.0, format_name="gif"), frames_written=6)

    frames = FrameExtractor(ExtractorConfig(max_frames=4)).extract(source, tmp_path / "frames")
    assert len(frames) == 4
    assert len(list((tmp_path / "frames").glob("frame_*.jpg"))) == 4


def test_probe_rejects_files_without_video(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "audio.mp4"
    source.write_bytes(b"fake")
    probe = {"streams": [{"codec_type": "audio"}], "format": {"format_name": "mp3", "duration": "3.0"}}
    _fake_ffmpeg(monkeypatch, probe, frames_written=0)

    with pytest.raises(InputError) as excinfo:
        FrameExtractor().extract(source, tmp_path / "frames")
    assert str(excinfo.value) == f"No video stream found in file: {source} (detected format: mp3)"


def test_missing_ffmpeg_is_an_extraction_error(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "clip.mp4"
    source.write_bytes(b"fake")
    monkeypatch.setattr(extractor_module, "FFMPEG_PATH", None)
    with pytest.raises(ExtractionError):
        FrameExtractor().extract(source, tmp_path / "frames")


def test_frames_from_images_decodes_bytes_and_arrays(tmp_path: Path) -> None:
    ok, encoded = cv2.imencode(".png", np.full((6, 7, 3), 90, dtype=np.uint8))
    assert ok
    images = [encoded.tobytes(), np.full((6, 7), 30, dtype=np.uint8), np.zeros((6, 7, 4), dtype=np.uint8)]

    frames = frames_from_images(images, tmp_path / "frames")

    assert [frame.id for frame in frames] == [0, 1, 2]
    assert [frame.timestamp for frame in frames] == [0.0, 1.0, 2.0]
    assert all(frame.data.shape == (6, 7, 3) for frame in frames)
    assert sorted(p.name for p in (tmp_path / "frames").iterdir()) == [
        "frame_000001.png",
        "frame_000002.png",
        "frame_000003.png",
    ]


def test_frames_from_images_rejects_garbage(tmp_path: Path) -> None:
    with pytest.raises(InputError):
        frames_from_images([b"not an image"], tmp_path / "frames")


@pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg/ffprobe not available")
def test_real_gif_is_detected_and_extracted(tmp_path: Path) -> None:
    source = tmp_path / "test.gif"
    subprocess.run(
        [
            "ffmpeg",
            "-y",
            "-loglevel",
            "error",
            "-f",
            "lavfi",
            "-i",
            "testsrc=duration=1:size=160x120:rate=10",
            str(source),
        ],
        check=True,
    )
    extractor = FrameExtractor(ExtractorConfig(fps=5.0, scale=120))
    assert extractor.probe(source).is_gif

    frames = extractor.extract(source, tmp_path / "frames")
    assert 2 <= len(frames) <= 300
    assert frames[0].timestamp == 0.0
