import numpy as np
import pytest

from target_vision.config import ColorRange, PipelineConfig

GREEN = (0, 255, 0)        # BGR; HSV (60, 255, 255)
BLUE = (255, 0, 0)         # BGR; HSV (120, 255, 255)

FRAME_W, FRAME_H = 320, 240


def make_frame(*boxes, size=(FRAME_W, FRAME_H), background=(0, 0, 0)):
    """Black BGR frame with filled ``(x, y, w, h, color)`` boxes painted on it."""
    w, h = size
    frame = np.zeros((h, w, 3), dtype=np.uint8)
    frame[:] = background
    for x, y, bw, bh, color in boxes:
        frame[y:y + bh, x:x + bw] = color
    return frame


@pytest.fixture
def green_range():
    return ColorRange(low=(50, 100, 100), high=(70, 255, 255))


@pytest.fixture
def sharp_config(green_range):
    """Green target, no blur, so mask edges match the painted boxes exactly."""
    return PipelineConfig(color_range=green_range, blur_kernel=1)
