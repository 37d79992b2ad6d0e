# detector.py
"""HSV color-blob detection: mask, contours and candidate filtering."""
from typing import List, Sequence

import cv2
import numpy as np

from target_vision.common import CandidateRect
from target_vision.config import AspectRatioMode, ColorRange, PipelineConfig


def compute_mask(frame_bgr: np.ndarray, color_range: ColorRange, blur_kernel: int = 13) -> np.ndarray:
    """
    Blur, convert to HSV and threshold.

    Returns a single-channel uint8 mask of the frame's size, 255 where the
    blurred pixel lies inside ``color_range`` (bounds inclusive), else 0.
    """
    blurred = cv2.GaussianBlur(frame_bgr, (blur_kernel, blur_kernel), 0)
    hsv = cv2.cvtColor(blurred, cv2.COLOR_BGR2HSV)
    return cv2.inRange(
        hsv,
        np.array(color_range.low, dtype=np.uint8),
        np.array(color_range.high, dtype=np.uint8),
    )


def extract_contours(mask: np.ndarray) -> List[np.ndarray]:
    """
    Boundary curves of every connected region in ``mask``.

    Nested regions come back as separate contours; the hierarchy is dropped.
    """
    contours, _hierarchy = cv2.findContours(mask, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE)
    return list(contours)


def aspect_ratio(width: int, height: int, mode: AspectRatioMode = AspectRatioMode.REAL) -> float:
    if height <= 0:
        return float("inf")
    if mode is AspectRatioMode.TRUNCATE:
        return float(width // height)
    return width / height


def passes_filter(rect: CandidateRect, config: PipelineConfig) -> bool:
    if rect.area < config.min_area:
        return False
    aspect = aspect_ratio(rect.width, rect.height, config.aspect_mode)
    return config.aspect_min <= aspect <= config.aspect_max


def filter_candidates(contours: Sequence[np.ndarray], config: PipelineConfig) -> List[CandidateRect]:
    """Bounding rectangles of the contours that pass the area and aspect checks, in input order."""
    out: List[CandidateRect] = []
    for contour in contours:
        x, y, w, h = cv2.boundingRect(contour)
        rect = CandidateRect(int(x), int(y), int(w), int(h))
        if passes_filter(rect, config):
            out.append(rect)
    return out
