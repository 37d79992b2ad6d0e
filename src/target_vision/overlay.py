# overlay.py
"""Drawing helpers for the processed stream."""
from typing import Optional, Tuple

import cv2
import numpy as np

from target_vision.common import CandidateRect


def annotate_frame(
    frame_bgr: np.ndarray,
    target: Optional[CandidateRect],
    color_bgr: Tuple[int, int, int] = (0, 0, 255),
    thickness: int = 2,
) -> np.ndarray:
    """Copy ``frame_bgr`` and outline ``target`` on the copy. The input is never touched."""
    out = frame_bgr.copy()
    if target is not None:
        x, y, w, h = target.as_xywh()
        cv2.rectangle(out, (x, y), (x + w, y + h), color_bgr, thickness)
    return out
