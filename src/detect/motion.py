"""
Motion Detection by three-frame differencing.

A pixel only counts as moving if it changed across BOTH transitions
(prev2 -> prev1 and prev1 -> curr). This suppresses single-frame sensor
glitches. Deviation and changed-share gates reject frames where the whole
scene changed (lighting flash, camera shake), and a coarse sampling grid
keeps the per-frame cost low since only a yes/no answer is needed.
"""

from typing import Optional

import cv2
import numpy as np

from . import config


def motion_mask(
    prev2: np.ndarray,
    prev1: np.ndarray,
    curr: np.ndarray,
    threshold: Optional[int] = None
) -> np.ndarray:
    """
    Binary mask of pixels that changed across both transitions.

    Args:
        prev2: Oldest grayscale frame
        prev1: Middle grayscale frame
        curr: Newest grayscale frame
        threshold: Minimum AND-ed difference to count as changed

    Returns:
        uint8 mask with values 0 or 255 (not yet eroded)
    """
    if threshold is None:
        threshold = config.MOTION_BINARY_THRESHOLD

    d1 = cv2.absdiff(curr, prev1)
    d2 = cv2.absdiff(prev1, prev2)
    motion = cv2.bitwise_and(d1, d2)

    # THRESH_BINARY keeps values strictly above the limit, so shift by one
    # to turn ">= threshold" into "> threshold - 1".
    _, mask = cv2.threshold(motion, threshold - 1, 255, cv2.THRESH_BINARY)
    return mask


def sample_grid(mask: np.ndarray, border: Optional[int] = None, stride: Optional[int] = None) -> np.ndarray:
    """Sampled view of the mask: every stride-th pixel inside the border."""
    if border is None:
        border = config.MOTION_BORDER
    if stride is None:
        stride = config.MOTION_SAMPLE_STRIDE

    height, width = mask.shape[:2]
    return mask[border:height - border - 1:stride, border:width - border - 1:stride]


def count_changes(mask: np.ndarray, border: Optional[int] = None, stride: Optional[int] = None) -> int:
    """Count 255-pixels on the sampling grid inside the border."""
    return int(np.count_nonzero(sample_grid(mask, border, stride) == 255))


def changed_share(mask: np.ndarray) -> float:
    """Fraction of the sampling grid marked as changed."""
    grid = sample_grid(mask)
    if grid.size == 0:
        return 0.0
    return np.count_nonzero(grid == 255) / grid.size


def detect_motion(
    prev2: Optional[np.ndarray],
    prev1: Optional[np.ndarray],
    curr: Optional[np.ndarray]
) -> bool:
    """
    Decide whether the scene changed meaningfully over three frames.

    Returns False (without raising) when fewer than three frames are given
    or their dimensions differ, since motion cannot be assessed yet.
    """
    if prev2 is None or prev1 is None or curr is None:
        return False
    if not (prev2.shape == prev1.shape == curr.shape):
        return False

    mask = motion_mask(prev2, prev1, curr)

    # Global change guards, measured before erosion so a full-frame change
    # cannot be hidden by the morphology step. A uniform flash gives a mask
    # that is all 255 (stddev 0), so the share check catches what the
    # deviation check cannot.
    if changed_share(mask) > config.MOTION_MAX_CHANGED_SHARE:
        return False
    _, stddev = cv2.meanStdDev(mask)
    if float(stddev[0][0]) > config.MOTION_MAX_DEVIATION:
        return False

    kernel = np.ones(config.MOTION_ERODE_KERNEL, np.uint8)
    eroded = cv2.erode(mask, kernel, iterations=1)

    return count_changes(eroded) > config.MOTION_MIN_CHANGES
