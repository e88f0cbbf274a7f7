from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from src.sieve.inputs import (
    BufferInput,
    FileInput,
    FramesInput,
    InputError,
    resolve_input,
    validate_input,
)


def test_file_input_must_exist(tmp_path: Path) -> None:
    with pytest.raises(InputError, match="does not exist"):
        validate_input(FileInput(path=tmp_path / "missing.mp4"))


def test_file_input_extension_is_checked(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    with pytest.raises(InputError, match="Unsupported"):
        validate_input(FileInput(path=path))


def test_supported_file_passes(tmp_path: Path) -> None:
    path = tmp_path / "clip.GIF"
    path.write_bytes(b"GIF89a")
    assert validate_input(FileInput(path=path)).path == path


def test_buffer_input_rules() -> None:
    with pytest.raises(InputError, match="empty"):
        validate_input(BufferInput(data=b""))
    with pytest.raises(InputError, match="Unsupported"):
        validate_input(BufferInput(data=b"123", suffix=".exe"))
    assert validate_input(BufferInput(data=b"123", suffix="webm")).suffix == ".webm"


def test_frames_input_rules() -> None:
    with pytest.raises(InputError, match="empty"):
        validate_input(FramesInput(images=[]))
    with pytest.raises(InputError, match="shape"):
        validate_input(FramesInput(images=[np.zeros((4, 4, 2), dtype=np.uint8)]))
    with pytest.raises(InputError, match="numpy array"):
        validate_input(FramesInput(images=["frame.png"]))

    images = [np.zeros((4, 4, 3), dtype=np.uint8), b"\x89PNG"]
    assert len(validate_input(FramesInput(images=images)).images) == 2


def test_resolve_input_wraps_loose_values(tmp_path: Path) -> None:
    assert isinstance(resolve_input(str(tmp_path / "a.mp4")), FileInput)
    assert isinstance(resolve_input(b"data"), BufferInput)
    assert isinstance(resolve_input([np.zeros((2, 2), dtype=np.uint8)]), FramesInput)
    with pytest.raises(InputError):
        resolve_input(42)
