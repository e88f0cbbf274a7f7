from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from src.sieve.config import SieveConfig
from src.sieve.inputs import FramesInput
from src.sieve.orchestrator import run_pipeline
from src.sieve.scorer import ScoringError
from src.sieve.types import Frame
from src.sieve.workspace import Workspace, default_output_dir, finalize_output


def _frame(index: int, value: int) -> Frame:
    return Frame(id=index, timestamp=float(index), data=np.full((16, 24, 3), value, dtype=np.uint8))


def test_workspace_layout_and_cleanup(tmp_path: Path) -> None:
    workspace = Workspace.create(tmp_path)

    assert workspace.root.name.startswith("scene-sieve-")
    assert workspace.frames_dir.is_dir() and workspace.input_dir.is_dir() and workspace.output_dir.is_dir()
    assert workspace.write_input(b"abc", ".gif").read_bytes() == b"abc"

    workspace.cleanup()
    assert not workspace.root.exists()


def test_default_output_dir_sits_next_to_input() -> None:
    assert default_output_dir(Path("/media/clip.final.mp4")) == Path("/media/clip.final_scenes")


def test_finalize_orders_by_frame_id(tmp_path: Path) -> None:
    frames = [_frame(7, 200), _frame(0, 10), _frame(3, 90)]
    written = finalize_output(frames, tmp_path / "out", 80, staging_dir=tmp_path / "staging")

    assert [Path(path).name for path in written] == ["scene_001.jpg", "scene_002.jpg", "scene_003.jpg"]
    assert all(Path(path).read_bytes()[:2] == b"\xff\xd8" for path in written)
    assert list((tmp_path / "staging").iterdir()) == []


def test_rerun_replaces_previous_scene_set(tmp_path: Path) -> None:
    output_dir = tmp_path / "out"
    output_dir.mkdir()
    (output_dir / "notes.txt").write_text("keep me")

    finalize_output([_frame(i, i * 40) for i in range(5)], output_dir, 80, staging_dir=tmp_path / "s1")
    written = finalize_output([_frame(0, 0), _frame(4, 160)], output_dir, 80, staging_dir=tmp_path / "s2")

    assert len(written) == 2
    assert sorted(p.name for p in output_dir.glob("scene_*.jpg")) == ["scene_001.jpg", "scene_002.jpg"]
    assert (output_dir / "notes.txt").read_text() == "keep me"


def test_failed_encoding_leaves_previous_output(tmp_path: Path) -> None:
    output_dir = tmp_path / "out"
    finalize_output([_frame(0, 0), _frame(1, 50), _frame(2, 100)], output_dir, 80, staging_dir=tmp_path / "s1")

    broken = Frame(id=1, timestamp=1.0)
    with pytest.raises(ScoringError):
        finalize_output([_frame(0, 0), broken], output_dir, 80, staging_dir=tmp_path / "s2")

    assert len(list(output_dir.glob("scene_*.jpg"))) == 3


def test_pipeline_rerun_into_same_directory(tmp_path: Path) -> None:
    colours = [(0, 0, 255), (0, 255, 0), (255, 0, 0), (0, 255, 255), (128, 0, 128)]
    images = []
    for bgr in colours:
        image = np.zeros((48, 64, 3), dtype=np.uint8)
        image[:, :] = bgr
        images.append(image)
    output_dir = tmp_path / "scenes"

    first = run_pipeline(FramesInput(images=images), SieveConfig(count=5, output_path=output_dir))
    second = run_pipeline(FramesInput(images=images), SieveConfig(count=2, output_path=output_dir))

    assert len(first.output_files) == 5
    assert len(second.output_files) == 2
    assert len(list(output_dir.glob("scene_*.jpg"))) == 2
