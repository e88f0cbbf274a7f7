"""Frame source variants accepted by the pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np

SUPPORTED_EXTENSIONS = (".mp4", ".mov", ".avi", ".mkv", ".webm", ".gif")

ImageLike = Union[bytes, np.ndarray]


class InputError(ValueError):
    """Raised when the frame source is missing, empty or unsupported."""


@dataclass(frozen=True)
class FileInput:
    path: Path

    @property
    def mode(self) -> str:
        return "file"


@dataclass(frozen=True)
class BufferInput:
    data: bytes
    suffix: str = ".mp4"

    @property
    def mode(self) -> str:
        return "buffer"


@dataclass(frozen=True)
class FramesInput:
    """Pre-decoded frames, either encoded image bytes or BGR/BGRA/grayscale arrays."""

    images: Sequence[ImageLike]

    @property
    def mode(self) -> str:
        return "frames"


SieveInput = Union[FileInput, BufferInput, FramesInput]


def _check_extension(suffix: str, label: str) -> None:
    if suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise InputError(
            f"Unsupported {label} extension '{suffix or '<none>'}'; expected one of {', '.join(SUPPORTED_EXTENSIONS)}"
        )


def validate_input(source: SieveInput) -> SieveInput:
    """Fail fast on sources the pipeline cannot handle."""

    if isinstance(source, FileInput):
        path = Path(source.path)
        if not path.exists():
            raise InputError(f"Input file does not exist: {path}")
        if not path.is_file():
            raise InputError(f"Input path is not a file: {path}")
        _check_extension(path.suffix, "input file")
        return FileInput(path=path)

    if isinstance(source, BufferInput):
        if not source.data:
            raise InputError("Input buffer is empty")
        suffix = source.suffix if source.suffix.startswith(".") else f".{source.suffix}"
        _check_extension(suffix, "buffer")
        return BufferInput(data=bytes(source.data), suffix=suffix.lower())

    if isinstance(source, FramesInput):
        images = list(source.images)
        if not images:
            raise InputError("Frame list is empty")
        for index, image in enumerate(images):
            if isinstance(image, (bytes, bytearray)):
                if not image:
                    raise InputError(f"Frame {index} is an empty image buffer")
            elif isinstance(image, np.ndarray):
                if image.size == 0 or image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3, 4)):
                    raise InputError(f"Frame {index} has unsupported array shape {image.shape}")
            else:
                raise InputError(f"Frame {index} must be image bytes or a numpy array, got {type(image).__name__}")
        return FramesInput(images=images)

    raise InputError(f"Unsupported input type: {type(source).__name__}")


def resolve_input(value: Union[SieveInput, str, Path, bytes, List[ImageLike]]) -> SieveInput:
    """Wrap a loosely-typed caller value in its input variant."""

    if isinstance(value, (FileInput, BufferInput, FramesInput)):
        return value
    if isinstance(value, (str, Path)):
        return FileInput(path=Path(value))
    if isinstance(value, (bytes, bytearray)):
        return BufferInput(data=bytes(value))
    if isinstance(value, (list, tuple)):
        return FramesInput(images=list(value))
    raise InputError(f"Cannot interpret input of type {type(value).__name__}")
