# pipeline.py
"""One-frame vision pipeline: mask → contours → filter → select → annotate."""
import logging
from typing import Optional

import cv2
import numpy as np

from target_vision.common import PipelineOutput
from target_vision.config import PipelineConfig
from target_vision.detector import compute_mask, extract_contours, filter_candidates
from target_vision.overlay import annotate_frame
from target_vision.selector import TargetSelector

logger = logging.getLogger(__name__)


def to_bgr(frame: np.ndarray) -> np.ndarray:
    """Normalise grayscale / BGRA captures to 3-channel BGR."""
    if frame.size == 0:
        return np.zeros(frame.shape[:2] + (3,), dtype=np.uint8)
    if frame.ndim == 2 or (frame.ndim == 3 and frame.shape[2] == 1):
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    return frame


class VisionPipeline:
    """Runs the detection steps on one frame at a time, strictly in sequence."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self._config = config or PipelineConfig()
        self.selector = TargetSelector(self._config.lost_target)
        self.last_mask: Optional[np.ndarray] = None

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def update_config(self, config: PipelineConfig) -> None:
        """Swap in a new configuration; takes effect on the next frame."""
        if config.lost_target is not self._config.lost_target:
            self.selector = TargetSelector(config.lost_target)
        self._config = config
        logger.info(
            "Pipeline config: HSV %s..%s, blur %d, min_area %d, aspect [%.2f, %.2f] (%s)",
            config.color_range.low,
            config.color_range.high,
            config.blur_kernel,
            config.min_area,
            config.aspect_min,
            config.aspect_max,
            config.aspect_mode.value,
        )

    def process(self, frame: np.ndarray) -> PipelineOutput:
        cfg = self._config
        frame = to_bgr(frame)
        height, width = frame.shape[:2]

        if width == 0 or height == 0:
            # Nothing to threshold; OpenCV rejects empty inputs.
            self.last_mask = np.zeros((height, width), dtype=np.uint8)
            candidates = []
        else:
            mask = compute_mask(frame, cfg.color_range, cfg.blur_kernel)
            self.last_mask = mask
            candidates = filter_candidates(extract_contours(mask), cfg)

        result = self.selector.select(candidates, (width, height))
        annotated = annotate_frame(frame, result.target, cfg.box_color_bgr, cfg.box_thickness)
        return PipelineOutput(result=result, annotated=annotated)
