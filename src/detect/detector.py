"""
Detector bindings for the X-Ray frame analysis core.

The core treats a detector as a black box: image bytes in, bounding boxes
out. Supported backends:
- haar: OpenCV Haar cascade face detector (in-process)
- http: remote detector service returning serialized object info

Detectors are not assumed to be thread-safe, so the service wraps them in
a DetectorPool: a fixed number of instances, picked round-robin, each
guarded by its own lock.
"""

import itertools
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union

import cv2
import httpx
import numpy as np

from . import config
from .errors import DecodeError, DetectorFault
from .frames import extract_jpeg
from .geometry import BoundingBox

logger = logging.getLogger(__name__)


def parse_object_info(payload: Union[str, bytes]) -> List[BoundingBox]:
    """
    Parse a detector's serialized output into boxes.

    Expected JSON format:
    {
        "Objects": [
            {"Top": 120, "Left": 80, "Bottom": 220, "Right": 180}
        ]
    }

    A missing or null "Objects" list means nothing was detected.
    Raises ValueError on malformed input.
    """
    try:
        data = json.loads(payload)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid object info JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Object info must be a JSON object")

    boxes = []
    for obj in data.get("Objects") or []:
        try:
            boxes.append(BoundingBox(
                top=int(obj["Top"]),
                left=int(obj["Left"]),
                bottom=int(obj["Bottom"]),
                right=int(obj["Right"]),
            ))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed object entry {obj!r}: {e}") from e
    return boxes


class Detector(ABC):
    """Maps raw image bytes to the boxes found in that image."""

    name = "detector"

    @abstractmethod
    def detect(self, image_bytes: bytes) -> List[BoundingBox]:
        """
        Detect objects in an encoded image.

        Raises:
            DecodeError: image_bytes is not a valid image
            DetectorFault: the detector failed internally
        """

    def close(self) -> None:
        """Release any resources held by the detector."""


class HaarFaceDetector(Detector):
    """
    Face detector using an OpenCV Haar cascade.

    Fast and dependency-free beyond OpenCV; good enough to decide whether
    a human is in frame and where.
    """

    name = "haar"

    def __init__(
        self,
        cascade_path: Optional[str] = None,
        scale_factor: Optional[float] = None,
        min_neighbors: Optional[int] = None,
        min_size: Optional[tuple] = None
    ):
        """
        Initialize the cascade.

        Args:
            cascade_path: Path to the cascade XML (defaults to OpenCV's bundled frontal face model)
            scale_factor: Image pyramid scale step
            min_neighbors: Neighbours needed to keep a candidate
            min_size: Smallest face (w, h) to report
        """
        self.cascade_path = str(cascade_path or (cv2.data.haarcascades + config.HAAR_CASCADE_NAME))
        self.scale_factor = scale_factor or config.HAAR_SCALE_FACTOR
        self.min_neighbors = min_neighbors or config.HAAR_MIN_NEIGHBORS
        self.min_size = min_size or config.HAAR_MIN_SIZE

        self.classifier = cv2.CascadeClassifier(self.cascade_path)
        if self.classifier.empty():
            raise DetectorFault(f"Unable to load Haar cascade from {self.cascade_path}")

    def detect(self, image_bytes: bytes) -> List[BoundingBox]:
        buf = np.frombuffer(extract_jpeg(image_bytes), dtype=np.uint8)
        gray = cv2.imdecode(buf, cv2.IMREAD_GRAYSCALE) if buf.size else None
        if gray is None:
            raise DecodeError(f"Unable to decode {len(image_bytes)} bytes as an image")

        try:
            faces = self.classifier.detectMultiScale(
                gray,
                scaleFactor=self.scale_factor,
                minNeighbors=self.min_neighbors,
                minSize=self.min_size,
            )
        except cv2.error as e:
            raise DetectorFault(f"Haar cascade failed: {e}") from e

        return [BoundingBox.from_xywh(x, y, w, h) for (x, y, w, h) in faces]


class HttpDetector(Detector):
    """
    Detector running as a separate service.

    The raw image is POSTed as application/octet-stream and the service
    answers with object info JSON (see parse_object_info).
    """

    name = "http"

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def detect(self, image_bytes: bytes) -> List[BoundingBox]:
        try:
            response = self._client.post(
                self.url,
                content=image_bytes,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.HTTPError as e:
            raise DetectorFault(f"Detector request to {self.url} failed: {e}") from e

        # The service answers 4xx when it cannot decode the image.
        if response.status_code in (400, 415, 422):
            raise DecodeError(f"Detector rejected image: {response.text}")
        if response.status_code != 200:
            raise DetectorFault(f"Detector returned HTTP {response.status_code}")

        try:
            return parse_object_info(response.content)
        except ValueError as e:
            raise DetectorFault(str(e)) from e

    def close(self) -> None:
        self._client.close()


class DetectorPool(Detector):
    """
    Fixed-size pool of detector instances.

    Each call picks the next instance round-robin and holds that
    instance's lock for the duration of the call, bounding parallelism to
    the pool size without a single global lock.
    """

    def __init__(self, factory: Callable[[], Detector], size: Optional[int] = None):
        size = size or config.DETECTOR_POOL_SIZE
        if size < 1:
            raise ValueError(f"Pool size must be at least 1, got {size}")

        self._detectors = [factory() for _ in range(size)]
        self._locks = [threading.Lock() for _ in range(size)]
        self._counter = itertools.count()
        self.name = self._detectors[0].name

    @property
    def size(self) -> int:
        return len(self._detectors)

    def detect(self, image_bytes: bytes) -> List[BoundingBox]:
        index = next(self._counter) % len(self._detectors)
        with self._locks[index]:
            return self._detectors[index].detect(image_bytes)

    def close(self) -> None:
        for detector in self._detectors:
            detector.close()


# =============================================================================
# Factory Function
# =============================================================================

def create_detector(
    backend: str = "haar",
    pool_size: Optional[int] = None,
    cascade_path: Optional[str] = None,
    url: Optional[str] = None,
    timeout: float = 5.0
) -> DetectorPool:
    """
    Factory function to create a pooled detector.

    Args:
        backend: 'haar' for the in-process cascade, 'http' for a remote detector
        pool_size: Number of detector instances in the pool
        cascade_path: Haar cascade XML (haar backend only)
        url: Detector endpoint (http backend only)
        timeout: Request timeout in seconds (http backend only)

    Examples:
        detector = create_detector('haar')
        detector = create_detector('http', url='http://127.0.0.1:9100/detect')
    """
    backend = (backend or "haar").lower()

    if backend == "http":
        if not url:
            raise ValueError("The http detector backend needs a detector URL")
        factory = lambda: HttpDetector(url, timeout=timeout)
    elif backend == "haar":
        factory = lambda: HaarFaceDetector(cascade_path=cascade_path)
    else:
        raise ValueError(f"Unknown detector backend: {backend}")

    logger.info("Creating %s detector pool (size=%s)", backend, pool_size or config.DETECTOR_POOL_SIZE)
    return DetectorPool(factory, size=pool_size)
