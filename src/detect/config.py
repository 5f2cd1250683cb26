"""
Tuning constants for the X-Ray frame analysis core.

Values here are shared by the motion detector, the zoom decision and the
detector bindings. Settings that operators change per deployment live in
xray_agent.config instead.
"""

# =============================================================================
# Motion Detection (three-frame differencing)
# =============================================================================
MOTION_BINARY_THRESHOLD = 10      # Pixels >= this in the AND-ed diff become 255
MOTION_MAX_DEVIATION = 20         # Above this stddev the whole frame changed (flash, shake)
MOTION_MAX_CHANGED_SHARE = 0.5    # Above this share of the sampled grid the whole frame changed
MOTION_MIN_CHANGES = 5            # More sampled 255-pixels than this means motion
MOTION_BORDER = 10                # Pixels ignored on every side of the frame
MOTION_SAMPLE_STRIDE = 2          # Sample every Nth row and column
MOTION_ERODE_KERNEL = (2, 2)      # Structuring element for speckle removal

# =============================================================================
# Zoom Decision
# =============================================================================
# Inset (pixels on every side) -> zoom tier. Larger inset = safer to zoom in.
ZOOM_INSETS = {
    100: 0,
    200: 1,
    300: 2,
}
NO_ZOOM = -1                      # No recommendation / subject too close to the edge

# =============================================================================
# Detector
# =============================================================================
DETECTOR_POOL_SIZE = 8
HAAR_CASCADE_NAME = "haarcascade_frontalface_alt.xml"
HAAR_SCALE_FACTOR = 1.1
HAAR_MIN_NEIGHBORS = 3
HAAR_MIN_SIZE = (30, 30)
