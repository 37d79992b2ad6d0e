# src/target_vision/__init__.py
"""Color-target vision package – re-export high-level API."""
from .pipeline import VisionPipeline               # noqa: F401
from .processor import VisionProcessor             # noqa: F401
from .common import CandidateRect, PipelineOutput, TargetResult  # noqa: F401
from .config import (                              # noqa: F401
    AspectRatioMode, CameraConfig, ColorRange, ConfigError,
    LostTargetPolicy, PipelineConfig, StreamConfig, SystemConfig,
    TelemetryConfig, load_config,
)

__version__ = "0.1.0"
