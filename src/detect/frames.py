"""
Decoded camera frames and the per-connection frame history.

The history keeps exactly the three frames the motion detector needs
(prev2, prev1, curr). Older frames drop out as new ones arrive.
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .errors import DecodeError
from .geometry import BoundingBox
from .motion import detect_motion

JPEG_SOI = b"\xff\xd8"
JPEG_EOI = b"\xff\xd9"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@dataclass
class Frame:
    """A decoded grayscale raster plus its arrival sequence number."""
    sequence: int
    pixels: np.ndarray  # uint8, shape (height, width)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def bounds(self) -> BoundingBox:
        """Whole-frame rectangle, used as the zoom reference."""
        return BoundingBox.frame(self.width, self.height)


def extract_jpeg(data: bytes) -> bytes:
    """
    Cut a JPEG image out of an MJPEG chunk.

    Some clients send the camera's MJPEG buffer as-is, with padding around
    the actual image. Data that already starts like a JPEG or PNG, or holds
    no complete SOI..EOI pair, is returned unchanged.
    """
    if data.startswith(JPEG_SOI) or data.startswith(PNG_SIGNATURE):
        return data

    start = data.find(JPEG_SOI)
    end = data.rfind(JPEG_EOI)
    if start == -1 or end == -1 or end < start:
        return data
    return data[start:end + len(JPEG_EOI)]


def decode_frame(data: bytes, sequence: int) -> Frame:
    """
    Decode image bytes into a grayscale Frame.

    Raises:
        DecodeError: if the bytes are empty or not a decodable image
    """
    if not data:
        raise DecodeError("Empty image payload")

    buf = np.frombuffer(extract_jpeg(data), dtype=np.uint8)
    pixels = cv2.imdecode(buf, cv2.IMREAD_GRAYSCALE)
    if pixels is None or pixels.size == 0:
        raise DecodeError(f"Unable to decode {len(data)} bytes as an image")

    return Frame(sequence=sequence, pixels=pixels)


class FrameHistory:
    """
    The current and two most recent frames of one connection.

    Not thread-safe: the dispatcher only ever runs one analysis at a time
    per connection, which is what keeps pushes in temporal order.
    """

    def __init__(self):
        self._frames: deque[Frame] = deque(maxlen=3)

    def push(self, frame: Frame) -> None:
        """Append the newest frame, dropping the oldest if three are held."""
        if self._frames and frame.sequence <= self._frames[-1].sequence:
            raise ValueError(
                f"Frame {frame.sequence} is not newer than {self._frames[-1].sequence}"
            )
        self._frames.append(frame)

    def motion(self) -> bool:
        """Run the motion detector over the buffered frames."""
        if len(self._frames) < 3:
            return False
        prev2, prev1, curr = self._frames
        return detect_motion(prev2.pixels, prev1.pixels, curr.pixels)

    @property
    def latest(self) -> Optional[Frame]:
        return self._frames[-1] if self._frames else None

    def clear(self) -> None:
        """Release every buffered frame."""
        self._frames.clear()

    def __len__(self) -> int:
        return len(self._frames)
