# selector.py
"""Best-candidate selection and offset-from-centre arithmetic."""
from functools import reduce
from typing import Optional, Sequence, Tuple

from target_vision.common import CandidateRect, TargetResult
from target_vision.config import LostTargetPolicy


def pick_largest(candidates: Sequence[CandidateRect]) -> Optional[CandidateRect]:
    """Largest bounding-box area wins; on a tie the earlier candidate is kept."""
    def better(best: Optional[CandidateRect], cand: CandidateRect) -> Optional[CandidateRect]:
        if best is None or cand.area > best.area:
            return cand
        return best

    return reduce(better, candidates, None)


def center_offset(rect: CandidateRect, frame_size: Tuple[int, int]) -> Tuple[int, int]:
    """(tx, ty) of ``rect``'s centre relative to the centre of a (width, height) frame."""
    width, height = frame_size
    cx, cy = rect.center
    return (cx - width // 2, cy - height // 2)


class TargetSelector:
    """
    Turns filtered candidates into a :class:`TargetResult`.

    The only state is the last published offset, which matters only under
    ``LostTargetPolicy.HOLD``.
    """

    def __init__(self, policy: LostTargetPolicy = LostTargetPolicy.RESET):
        self.policy = policy
        self._last_offset: Tuple[int, int] = (0, 0)

    def select(self, candidates: Sequence[CandidateRect], frame_size: Tuple[int, int]) -> TargetResult:
        width, height = frame_size
        if width <= 0 or height <= 0:
            candidates = ()

        best = pick_largest(candidates)
        if best is None:
            if self.policy is LostTargetPolicy.RESET:
                self._last_offset = (0, 0)
            tx, ty = self._last_offset
            return TargetResult(count=len(candidates), tx=tx, ty=ty, ta=0, target=None)

        tx, ty = center_offset(best, frame_size)
        self._last_offset = (tx, ty)
        return TargetResult(count=len(candidates), tx=tx, ty=ty, ta=best.area, target=best)

    def reset(self) -> None:
        self._last_offset = (0, 0)
