"""Per-run scratch directory and output finalization."""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import cv2

from .scorer import load_image
from .types import Frame

OUTPUT_PATTERN = "scene_{rank:03d}.jpg"
SCENE_GLOB = "scene_[0-9][0-9][0-9]*.jpg"


class FinalizationError(RuntimeError):
    """Raised when retained frames cannot be encoded or written."""


@dataclass
class Workspace:
    """Private temp directory with ``frames/``, ``input/`` and ``output/`` subfolders."""

    root: Path

    @classmethod
    def create(cls, base_dir: Optional[Path] = None) -> "Workspace":
        parent = base_dir or Path(tempfile.gettempdir())
        parent.mkdir(parents=True, exist_ok=True)
        root = parent / f"scene-sieve-{uuid.uuid4().hex}"
        workspace = cls(root=root)
        for sub in (workspace.frames_dir, workspace.input_dir, workspace.output_dir):
            sub.mkdir(parents=True, exist_ok=False)
        return workspace

    @property
    def frames_dir(self) -> Path:
        return self.root / "frames"

    @property
    def input_dir(self) -> Path:
        return self.root / "input"

    @property
    def output_dir(self) -> Path:
        return self.root / "output"

    def write_input(self, data: bytes, suffix: str) -> Path:
        target = self.input_dir / f"input{suffix}"
        target.write_bytes(data)
        return target

    def cleanup(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)


def default_output_dir(source_path: Path) -> Path:
    return source_path.parent / f"{source_path.stem}_scenes"


def encode_jpeg(frame: Frame, quality: int) -> bytes:
    image = load_image(frame)
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FinalizationError(f"Unable to encode frame {frame.id} as JPEG")
    return buffer.tobytes()


def finalize_output(
    frames: Sequence[Frame],
    output_dir: Path,
    quality: int,
    staging_dir: Path,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Write ``frames`` as ``scene_001.jpg``... in frame-id order.

    The whole set is encoded into ``staging_dir`` first, so an encoding
    failure leaves ``output_dir`` untouched. Scene files left by an earlier
    run are then removed and each new file is moved into place with
    ``os.replace``. Other files in ``output_dir`` are kept.
    """

    log = logger or logging.getLogger(__name__)
    staging_dir.mkdir(parents=True, exist_ok=True)
    staged = []
    for rank, frame in enumerate(sorted(frames, key=lambda f: f.id), start=1):
        name = OUTPUT_PATTERN.format(rank=rank)
        tmp_path = staging_dir / f"{name}.tmp"
        tmp_path.write_bytes(encode_jpeg(frame, quality))
        staged.append((tmp_path, output_dir / name))

    output_dir.mkdir(parents=True, exist_ok=True)
    stale = sorted(output_dir.glob(SCENE_GLOB))
    for path in stale:
        path.unlink()
    if stale:
        log.debug("Removed %d scene file(s) from a previous run in %s", len(stale), output_dir)

    written: List[str] = []
    for tmp_path, target in staged:
        try:
            os.replace(tmp_path, target)
        except OSError:
            # cross-device move
            shutil.move(str(tmp_path), str(target))
        written.append(str(target))
    log.debug("Wrote %d scene file(s) to %s", len(written), output_dir)
    return written


def encode_buffers(frames: Sequence[Frame], quality: int) -> List[bytes]:
    return [encode_jpeg(frame, quality) for frame in sorted(frames, key=lambda f: f.id)]
