import numpy as np

from detect import config
from detect.motion import changed_share, count_changes, detect_motion, motion_mask

HEIGHT, WIDTH = 480, 640


def _blank(value: int = 0) -> np.ndarray:
    return np.full((HEIGHT, WIDTH), value, dtype=np.uint8)


def _with_block(top: int, left: int, size: int, value: int) -> np.ndarray:
    frame = _blank()
    frame[top:top + size, left:left + size] = value
    return frame


def test_identical_frames_have_no_motion():
    frame = _with_block(100, 100, 40, 180)
    assert detect_motion(frame, frame.copy(), frame.copy()) is False


def test_block_changing_across_both_transitions_is_motion():
    prev2 = _blank()
    prev1 = _with_block(200, 300, 20, 200)
    curr = _blank()

    assert detect_motion(prev2, prev1, curr) is True


def test_single_transition_change_is_ignored():
    # Block appears between prev1 and curr only: d2 is zero, so the AND is zero.
    prev2 = _blank()
    prev1 = _blank()
    curr = _with_block(200, 300, 20, 200)

    assert detect_motion(prev2, prev1, curr) is False


def test_speckle_is_removed_by_erosion():
    prev2 = _blank()
    prev1 = _with_block(200, 300, 2, 200)
    curr = _blank()

    assert detect_motion(prev2, prev1, curr) is False


def test_block_inside_border_is_not_sampled():
    prev2 = _blank()
    prev1 = _with_block(0, 0, 9, 200)
    curr = _blank()

    assert detect_motion(prev2, prev1, curr) is False


def test_uniform_flash_is_not_motion():
    """Every pixel changes by the same amount: the mask is flat, so only the share guard rejects it."""
    prev2 = _blank()
    prev1 = _blank(200)
    curr = _blank()

    mask = motion_mask(prev2, prev1, curr)
    assert (mask == 255).all()
    assert float(mask.std()) == 0.0
    assert changed_share(mask) == 1.0

    assert detect_motion(prev2, prev1, curr) is False


def test_large_partial_change_trips_deviation_gate():
    prev2 = _blank()
    prev1 = _blank()
    prev1[:, : int(WIDTH * 0.4)] = 200
    curr = _blank()

    mask = motion_mask(prev2, prev1, curr)
    assert changed_share(mask) <= config.MOTION_MAX_CHANGED_SHARE
    assert float(mask.std()) > config.MOTION_MAX_DEVIATION

    assert detect_motion(prev2, prev1, curr) is False


def test_changed_share_of_empty_mask_is_zero():
    assert changed_share(np.zeros((HEIGHT, WIDTH), dtype=np.uint8)) == 0.0
    assert changed_share(np.zeros((5, 5), dtype=np.uint8)) == 0.0


def test_mask_threshold_is_inclusive():
    prev2 = _blank()
    curr = _blank()

    at_threshold = motion_mask(prev2, _blank(config.MOTION_BINARY_THRESHOLD), curr)
    below_threshold = motion_mask(prev2, _blank(config.MOTION_BINARY_THRESHOLD - 1), curr)

    assert (at_threshold == 255).all()
    assert (below_threshold == 0).all()


def test_missing_frames_mean_no_motion():
    frame = _blank()
    assert detect_motion(None, frame, frame) is False
    assert detect_motion(frame, None, frame) is False
    assert detect_motion(frame, frame, None) is False


def test_dimension_mismatch_means_no_motion():
    small = np.zeros((240, 320), dtype=np.uint8)
    assert detect_motion(_blank(), _with_block(200, 300, 20, 200), small) is False


def test_count_changes_uses_sampling_grid():
    mask = np.zeros((100, 100), dtype=np.uint8)
    # Odd coordinates are never sampled with stride 2 from an even border.
    mask[51, 51] = 255
    assert count_changes(mask) == 0

    mask[50, 50] = 255
    assert count_changes(mask) == 1
