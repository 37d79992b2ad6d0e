import numpy as np
import pytest

from target_vision.common import CandidateRect
from target_vision.config import AspectRatioMode, PipelineConfig
from target_vision.detector import (
    aspect_ratio,
    compute_mask,
    extract_contours,
    filter_candidates,
    passes_filter,
)

from conftest import BLUE, GREEN, make_frame


def test_mask_matches_frame_size_and_marks_in_range_pixels(green_range):
    frame = make_frame((10, 20, 30, 15, GREEN), (100, 100, 10, 10, BLUE))
    mask = compute_mask(frame, green_range, blur_kernel=1)

    assert mask.shape == frame.shape[:2]
    assert mask.dtype == np.uint8
    assert np.count_nonzero(mask) == 30 * 15
    assert mask[20, 10] == 255
    assert mask[100, 100] == 0


def test_mask_bounds_are_inclusive():
    from target_vision.config import ColorRange

    frame = make_frame((0, 0, 10, 10, GREEN))
    exact = ColorRange(low=(60, 255, 255), high=(60, 255, 255))
    assert np.count_nonzero(compute_mask(frame, exact, blur_kernel=1)) == 100


def test_mask_is_deterministic(green_range):
    frame = make_frame((40, 40, 25, 25, GREEN))
    a = compute_mask(frame, green_range)
    b = compute_mask(frame, green_range)
    assert np.array_equal(a, b)


def test_extract_contours_reports_each_region(green_range):
    frame = make_frame((10, 10, 20, 20, GREEN), (100, 50, 20, 20, GREEN))
    contours = extract_contours(compute_mask(frame, green_range, blur_kernel=1))
    assert len(contours) == 2


def test_nested_regions_come_back_as_separate_contours():
    mask = np.zeros((100, 100), dtype=np.uint8)
    mask[10:90, 10:90] = 255
    mask[30:70, 30:70] = 0
    mask[45:55, 45:55] = 255
    # outer ring boundary, hole boundary, inner island
    assert len(extract_contours(mask)) == 3


@pytest.mark.parametrize(
    "w, h, mode, expected",
    [
        (20, 20, AspectRatioMode.REAL, 1.0),
        (15, 10, AspectRatioMode.REAL, 1.5),
        (15, 10, AspectRatioMode.TRUNCATE, 1.0),
        (10, 15, AspectRatioMode.TRUNCATE, 0.0),
    ],
)
def test_aspect_ratio_modes(w, h, mode, expected):
    assert aspect_ratio(w, h, mode) == pytest.approx(expected)


def test_aspect_ratio_zero_height_is_rejected():
    rect = CandidateRect(0, 0, 10, 0)
    assert not passes_filter(rect, PipelineConfig(min_area=0))


def test_area_floor_is_inclusive():
    cfg = PipelineConfig()
    assert not passes_filter(CandidateRect(0, 0, 7, 8), cfg)  # 56
    assert passes_filter(CandidateRect(0, 0, 8, 8), cfg)      # 64
    assert passes_filter(CandidateRect(0, 0, 6, 10), PipelineConfig(aspect_min=0.5))  # exactly 60


def test_truncating_mode_differs_from_real_division(green_range):
    frame = make_frame((20, 20, 15, 10, GREEN), (100, 100, 10, 15, GREEN))
    contours = extract_contours(compute_mask(frame, green_range, blur_kernel=1))

    real = filter_candidates(contours, PipelineConfig(color_range=green_range))
    legacy = filter_candidates(
        contours,
        PipelineConfig(color_range=green_range, aspect_mode=AspectRatioMode.TRUNCATE),
    )

    assert real == []
    assert [r.as_xywh() for r in legacy] == [(20, 20, 15, 10)]


def test_filter_keeps_bounding_box_geometry(green_range):
    frame = make_frame((30, 40, 12, 12, GREEN))
    contours = extract_contours(compute_mask(frame, green_range, blur_kernel=1))
    (rect,) = filter_candidates(contours, PipelineConfig(color_range=green_range))
    assert rect == CandidateRect(30, 40, 12, 12)
    assert rect.area == 144
    assert rect.center == (36, 46)
