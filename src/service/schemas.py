"""Pydantic models for the scene sieve service."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Lifecycle states for sieve jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class SieveOverrides(BaseModel):
    """Optional per-job overrides; ranges are enforced by the pipeline config."""

    count: Optional[int] = Field(None, description="Maximum number of scenes to keep")
    threshold: Optional[float] = Field(None, description="Normalized score threshold in (0, 1]")
    fps: Optional[float] = Field(None, description="Extraction frame rate")
    scale: Optional[int] = Field(None, description="Extraction frame height in pixels")
    max_frames: Optional[int] = Field(None, description="Upper bound on extracted frames")
    quality: Optional[int] = Field(None, description="JPEG quality of written scenes")
    iou_threshold: Optional[float] = Field(None, description="Region overlap needed to extend a motion track")
    animation_threshold: Optional[int] = Field(None, description="Track length that counts as an animation")
    cluster_alpha: Optional[float] = Field(None, description="DBSCAN radius as a fraction of the image diagonal")
    cluster_min_pts: Optional[int] = Field(None, description="DBSCAN minimum neighbourhood size")
    execution: Optional[str] = Field(None, description="inline|process")


class SieveRequest(BaseModel):
    """Payload for starting a sieve job."""

    input_path: str = Field(..., description="Absolute path to a video or GIF file")
    output_dir: Optional[str] = Field(None, description="Directory for scene_NNN.jpg files")
    config: Optional[SieveOverrides] = Field(None, description="Optional pipeline overrides")


class SieveResponse(BaseModel):
    job_id: str
    status: JobStatus


class StatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    phase: Optional[str] = None
    percent: Optional[float] = None
    detail: Optional[str] = None


class SceneItem(BaseModel):
    rank: int
    frame_id: int
    score: Optional[float] = Field(None, description="Normalized score of the edge entering this frame")
    output_file: Optional[str] = None


class AnimationItem(BaseModel):
    start_frame_id: int
    end_frame_id: int
    edge_count: int
    region: List[float] = Field(default_factory=list, description="x, y, width, height")


class Summary(BaseModel):
    original_frames: int
    retained_frames: int
    execution_time_ms: Optional[int] = None
    threshold: Optional[float] = None
    count: Optional[int] = None
    animation_runs: Optional[int] = None
    execution: Optional[str] = None
    output_dir: Optional[str] = None


class ResultResponse(BaseModel):
    job_id: str
    status: JobStatus
    summary: Summary
    scenes: List[SceneItem] = Field(default_factory=list)
    animations: List[AnimationItem] = Field(default_factory=list)


class StopRequest(BaseModel):
    reason: Optional[str] = None
