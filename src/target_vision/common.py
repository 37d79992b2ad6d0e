# common.py
"""Objects that are shared across multiple modules."""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class CandidateRect:
    """Axis-aligned bounding box of one contour, in pixels."""
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        # Bounding-box area, not the contour polygon's area.
        return self.width * self.height

    @property
    def center(self) -> Tuple[int, int]:
        return (self.x + self.width // 2, self.y + self.height // 2)

    def as_xywh(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class TargetResult:
    """
    One cycle's output.

    ``tx``/``ty`` are the selected candidate's centre minus the frame centre,
    ``ta`` its bounding-box area. ``count`` is how many candidates survived
    filtering, selected or not.
    """
    count: int = 0
    tx: int = 0
    ty: int = 0
    ta: int = 0
    target: Optional[CandidateRect] = None

    @property
    def has_target(self) -> bool:
        return self.target is not None

    def as_entries(self) -> Dict[str, float]:
        """Key/value pairs as they appear in the telemetry table."""
        return {"val": self.count, "tx": self.tx, "ty": self.ty, "ta": self.ta}


@dataclass(frozen=True)
class PipelineOutput:
    result: TargetResult
    annotated: np.ndarray
