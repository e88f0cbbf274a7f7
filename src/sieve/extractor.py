"""Frame extraction from video/GIF files via ffmpeg."""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from .inputs import ImageLike, InputError
from .types import Frame

FFMPEG_PATH = shutil.which("ffmpeg")
FFPROBE_PATH = shutil.which("ffprobe")

FRAME_PATTERN = "frame_%06d.jpg"


class ExtractionError(RuntimeError):
    """Raised when ffmpeg/ffprobe cannot produce frames for an input."""


@dataclass
class ExtractorConfig:
    fps: float = 5.0
    scale: int = 720
    max_frames: int = 300
    timeout_sec: float = 600.0


@dataclass
class ProbeResult:
    duration: float
    format_name: str
    width: int = 0
    height: int = 0

    @property
    def is_gif(self) -> bool:
        return "gif" in self.format_name.split(",")


class FrameExtractor:
    """Decodes a media file into an ordered list of :class:`Frame` objects."""

    def __init__(self, config: ExtractorConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or ExtractorConfig()
        self._logger = logger or logging.getLogger(__name__)

    def probe(self, source: Path) -> ProbeResult:
        if not FFPROBE_PATH:
            raise ExtractionError("ffprobe executable not found in PATH")
        cmd = [
            FFPROBE_PATH,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            "-show_format",
            str(source),
        ]
        try:
            completed = subprocess.run(cmd, check=True, timeout=60, capture_output=True)
            data = json.loads(completed.stdout.decode("utf-8") or "{}")
        except subprocess.CalledProcessError as error:
            stderr = error.stderr.decode(errors="replace").strip() if error.stderr else ""
            raise ExtractionError(f"ffprobe failed for {source}: {stderr}") from error
        except subprocess.TimeoutExpired as error:
            raise ExtractionError(f"ffprobe timed out for {source}") from error
        except json.JSONDecodeError as error:
            raise ExtractionError(f"Failed to parse ffprobe output for {source}: {error}") from error

        format_info = data.get("format", {}) or {}
        format_name = str(format_info.get("format_name", "unknown"))
        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if video_stream is None:
            raise InputError(f"No video stream found in file: {source} (detected format: {format_name})")

        try:
            duration = float(format_info.get("duration") or video_stream.get("duration") or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        return ProbeResult(
            duration=max(duration, 0.0),
            format_name=format_name,
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
        )

    def effective_fps(self, duration: float) -> float:
        """Sampling rate that keeps the frame count within ``max_frames``."""

        if duration <= 0:
            return self._config.fps
        return min(self._config.fps, self._config.max_frames / duration)

    def extract(
        self,
        source: Path,
        frames_dir: Path,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> List[Frame]:
        if not source.exists():
            raise InputError(f"Input file does not exist: {source}")
        if not FFMPEG_PATH:
            raise ExtractionError("ffmpeg executable not found in PATH")

        info = self.probe(source)
        fps = self.effective_fps(info.duration)
        self._logger.debug(
            "Extracting %s (format=%s, duration=%.2fs, gif=%s) at %.3f fps",
            source,
            info.format_name,
            info.duration,
            info.is_gif,
            fps,
        )
        if on_progress:
            on_progress(10.0)

        frames_dir.mkdir(parents=True, exist_ok=True)
        cmd = [
            FFMPEG_PATH,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(source),
            "-vf",
            f"fps={fps:.6f},scale=-1:{self._config.scale}",
            "-q:v",
            "2",
            str(frames_dir / FRAME_PATTERN),
        ]
        try:
            subprocess.run(
                cmd,
                check=True,
                timeout=self._config.timeout_sec,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except subprocess.CalledProcessError as error:
            stderr = error.stderr.decode(errors="replace").strip() if error.stderr else ""
            raise ExtractionError(f"ffmpeg failed for {source}: {stderr}") from error
        except subprocess.TimeoutExpired as error:
            raise ExtractionError(f"ffmpeg timed out after {self._config.timeout_sec:.0f}s for {source}") from error

        if on_progress:
            on_progress(90.0)

        paths = sorted(frames_dir.glob("frame_*.jpg"))
        for extra in paths[self._config.max_frames:]:
            extra.unlink(missing_ok=True)
        paths = paths[: self._config.max_frames]
        if not paths:
            raise ExtractionError(f"ffmpeg produced no frames for {source}")

        timestamps = compute_timestamps(len(paths), info.duration)
        return [Frame(id=index, timestamp=ts, path=path) for index, (path, ts) in enumerate(zip(paths, timestamps))]


def compute_timestamps(count: int, duration: float) -> List[float]:
    """Spread ``count`` timestamps evenly over ``duration``; frame index when unknown."""

    if count <= 0:
        return []
    if duration <= 0:
        return [float(index) for index in range(count)]
    if count == 1:
        return [0.0]
    return [round(duration * index / (count - 1), 3) for index in range(count)]


def decode_image(image: ImageLike, index: int) -> np.ndarray:
    if isinstance(image, (bytes, bytearray)):
        buffer = np.frombuffer(bytes(image), dtype=np.uint8)
        decoded = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
        if decoded is None:
            raise InputError(f"Frame {index} could not be decoded as an image")
        image = decoded

    array = np.asarray(image)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if array.ndim == 2:
        return cv2.cvtColor(array, cv2.COLOR_GRAY2BGR)
    if array.shape[2] == 4:
        return cv2.cvtColor(array, cv2.COLOR_BGRA2BGR)
    return np.ascontiguousarray(array)


def frames_from_images(images: Sequence[ImageLike], frames_dir: Path) -> List[Frame]:
    """Decode caller-supplied images and stage them as ``frame_%06d.png`` files."""

    frames_dir.mkdir(parents=True, exist_ok=True)
    frames: List[Frame] = []
    for index, image in enumerate(images):
        bgr = decode_image(image, index)
        path = frames_dir / f"frame_{index + 1:06d}.png"
        if not cv2.imwrite(str(path), bgr):
            raise ExtractionError(f"Unable to write frame {index} to {path}")
        frames.append(Frame(id=index, timestamp=float(index), path=path, data=bgr))
    return frames
