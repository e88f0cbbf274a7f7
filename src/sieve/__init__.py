"""Scene sieve: select a small set of visually distinct frames from a video or GIF."""

from .analyzer import FrameAnalyzer
from .clusterer import ClustererConfig, RegionClusterer, cluster_points
from .config import ConfigError, SieveConfig
from .extractor import ExtractionError, ExtractorConfig, FrameExtractor
from .inputs import BufferInput, FileInput, FramesInput, InputError, validate_input
from .normalizer import normalize_scores
from .orchestrator import PipelineError, SievePipeline, run_pipeline
from .pruner import prune, rank_frames
from .scorer import ScorerConfig, ScoringError, SimilarityScorer
from .topk import BoundedTopK
from .tracker import MotionTracker, TrackerConfig, compute_iou, detect_animations
from .types import (
    AnalysisResult,
    AnimationRun,
    BoundingBox,
    ClusterResult,
    Frame,
    PipelineStatus,
    Point2D,
    ProgressEvent,
    ScoreEdge,
    SieveResult,
)
from .worker import WorkerError, WorkerHandle, run_in_worker, run_sieve

__all__ = [
    "FrameAnalyzer",
    "ClustererConfig",
    "RegionClusterer",
    "cluster_points",
    "ConfigError",
    "SieveConfig",
    "ExtractionError",
    "ExtractorConfig",
    "FrameExtractor",
    "BufferInput",
    "FileInput",
    "FramesInput",
    "InputError",
    "validate_input",
    "normalize_scores",
    "PipelineError",
    "SievePipeline",
    "run_pipeline",
    "prune",
    "rank_frames",
    "ScorerConfig",
    "ScoringError",
    "SimilarityScorer",
    "BoundedTopK",
    "MotionTracker",
    "TrackerConfig",
    "compute_iou",
    "detect_animations",
    "AnalysisResult",
    "AnimationRun",
    "BoundingBox",
    "ClusterResult",
    "Frame",
    "PipelineStatus",
    "Point2D",
    "ProgressEvent",
    "ScoreEdge",
    "SieveResult",
    "WorkerError",
    "WorkerHandle",
    "run_in_worker",
    "run_sieve",
]
