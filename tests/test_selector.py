from target_vision.common import CandidateRect
from target_vision.config import LostTargetPolicy
from target_vision.selector import TargetSelector, center_offset, pick_largest


def test_pick_largest_empty():
    assert pick_largest([]) is None


def test_pick_largest_prefers_first_on_tie():
    a = CandidateRect(0, 0, 10, 10)
    b = CandidateRect(50, 50, 10, 10)
    c = CandidateRect(90, 90, 9, 9)
    assert pick_largest([a, b, c]) is a
    assert pick_largest([c, b, a]) is b


def test_center_offset_uses_integer_halves():
    rect = CandidateRect(10, 20, 9, 9)  # centre (14, 24)
    assert center_offset(rect, (33, 21)) == (14 - 16, 24 - 10)


def test_select_counts_all_candidates():
    cands = [CandidateRect(0, 0, 10, 10), CandidateRect(100, 100, 20, 20)]
    res = TargetSelector().select(cands, (320, 240))
    assert res.count == 2
    assert res.ta == 400
    assert (res.tx, res.ty) == (110 - 160, 110 - 120)
    assert res.as_entries() == {"val": 2, "tx": -50, "ty": -10, "ta": 400}


def test_zero_width_frame_has_no_candidates():
    res = TargetSelector().select([CandidateRect(0, 0, 10, 10)], (0, 240))
    assert res.count == 0
    assert res.ta == 0
    assert not res.has_target


def test_hold_policy_keeps_last_offset_until_reset():
    sel = TargetSelector(LostTargetPolicy.HOLD)
    sel.select([CandidateRect(200, 10, 10, 10)], (320, 240))
    held = sel.select([], (320, 240))
    assert (held.tx, held.ty, held.ta) == (45, -105, 0)

    sel.reset()
    assert (sel.select([], (320, 240)).tx) == 0


def test_reset_policy_zeroes_offsets():
    sel = TargetSelector(LostTargetPolicy.RESET)
    sel.select([CandidateRect(200, 10, 10, 10)], (320, 240))
    lost = sel.select([], (320, 240))
    assert (lost.count, lost.tx, lost.ty, lost.ta) == (0, 0, 0, 0)
