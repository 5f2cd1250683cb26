from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional, Protocol, Tuple

from fastapi import WebSocket, WebSocketDisconnect

from detect import config as detect_config
from detect.detector import Detector
from detect.errors import DecodeError, DetectorFault
from detect.frames import Frame, FrameHistory, decode_frame
from detect.zoom import reliable_boxes, zoom_tier

from .display_memory import DisplayMemory
from .envelope import PresignedPost, ResponseEnvelope
from .errors import MalformedSensorPayload, TransportReadError
from .sensor import SensorTracker, is_sensor_payload, parse_sensor_payload
from .storage import ObjectStore, object_key

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    BINARY = "binary"
    TEXT = "text"


@dataclass(frozen=True)
class Message:
    """One discrete message as delivered by the transport."""
    kind: MessageKind
    data: bytes


class Transport(Protocol):
    """What the dispatcher needs from a client connection."""

    async def receive(self) -> Message:
        """Next message; raises TransportReadError once the connection is gone."""

    async def send(self, envelope: ResponseEnvelope) -> None:
        """Write one envelope; raises TransportReadError if the client is gone."""


class WebSocketTransport:
    """Transport over a FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def receive(self) -> Message:
        try:
            message = await self.websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            raise TransportReadError(f"Unable to read from client: {e}") from e

        if message["type"] == "websocket.disconnect":
            raise TransportReadError(f"Client closed the connection (code={message.get('code')})")

        if message.get("bytes") is not None:
            return Message(MessageKind.BINARY, message["bytes"])
        return Message(MessageKind.TEXT, (message.get("text") or "").encode("utf-8"))

    async def send(self, envelope: ResponseEnvelope) -> None:
        try:
            await self.websocket.send_text(envelope.to_json())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportReadError(f"Unable to write to client: {e}") from e


class FrameAnalyzer:
    """
    Per-connection analysis: owns the frame history and sensor readings of
    one client and turns each message into a ResponseEnvelope.

    Decoding, motion and detection run on worker threads; the debounce
    decision goes through the (possibly shared) DisplayMemory actor.
    """

    def __init__(
        self,
        detector: Detector,
        display_memory: DisplayMemory,
        store: Optional[ObjectStore] = None,
        sensor_threshold: float = 1.0,
        presign_uploads: bool = False,
        presign_expiry_days: int = 10,
    ):
        self.detector = detector
        self.display_memory = display_memory
        self.store = store
        self.presign_uploads = presign_uploads
        self.presign_expiry_days = presign_expiry_days
        self.history = FrameHistory()
        self.sensors = SensorTracker(sensor_threshold)

    def _observe_frame(self, sequence: int, data: bytes) -> Tuple[Frame, bool]:
        """Decode the frame, hand it to the history and check for motion."""
        frame = decode_frame(data, sequence)
        self.history.push(frame)
        return frame, self.history.motion()

    async def analyze_frame(self, sequence: int, data: bytes) -> ResponseEnvelope:
        """Binary branch: motion + detection -> display, zoom, positions."""
        frame, moving = await asyncio.to_thread(self._observe_frame, sequence, data)
        boxes = reliable_boxes(await asyncio.to_thread(self.detector.detect, data))

        display = await self.display_memory.submit(moving or bool(boxes))
        zoom = zoom_tier(boxes, frame.bounds) if display else detect_config.NO_ZOOM

        upload = None
        if boxes and self.store is not None:
            self.store.save_in_background(data)
            if self.presign_uploads:
                upload = await self._presign(data)

        logger.debug(
            "Frame %d: %dx%d motion=%s boxes=%d display=%s zoom=%d",
            sequence, frame.width, frame.height, moving, len(boxes), display, zoom
        )
        return ResponseEnvelope.from_detections(sequence, boxes, display, zoom, upload=upload)

    async def analyze_sensor(self, sequence: int, data: bytes) -> ResponseEnvelope:
        """Text branch: a sensor reading that moved keeps the camera on screen."""
        record = parse_sensor_payload(data)
        display = await self.display_memory.submit(self.sensors.changed(record))
        return ResponseEnvelope(sequence=sequence, display=display, zoom=detect_config.NO_ZOOM)

    async def _presign(self, data: bytes) -> Optional[PresignedPost]:
        try:
            return await asyncio.to_thread(
                self.store.presigned_post, object_key(data), self.presign_expiry_days
            )
        except Exception as e:
            # The envelope is still valid without an upload target.
            logger.warning("Unable to presign upload: %s", e)
            return None

    def release(self) -> None:
        """Drop every buffered frame and sensor reading."""
        self.history.clear()
        self.sensors.clear()


class FrameDispatcher:
    """
    Read / analyze / write loop for one client connection.

    Every accepted message gets its own analysis task, but the loop waits
    for that task's envelope and sends it before reading the next message.
    One message is in flight at a time, so responses leave in exactly the
    order messages arrived.

    The transport is not read while an analysis runs, so a client that
    drops mid-analysis is only noticed once that envelope has been produced
    (by the failing send or the next receive). In-flight analysis is
    abandoned only when serve() itself is cancelled, e.g. on server
    shutdown.
    """

    def __init__(self, transport: Transport, analyzer: FrameAnalyzer, peer: Optional[object] = None):
        self.transport = transport
        self.analyzer = analyzer
        self.peer = peer
        self.answered = 0

        self._sequence = itertools.count(1)
        self._responses: asyncio.Queue[ResponseEnvelope] = asyncio.Queue()
        self._inflight: Optional[asyncio.Task] = None

    async def serve(self) -> int:
        """
        Run until the connection closes.

        Returns the number of envelopes delivered.
        """
        logger.info("Client connected: %s", self.peer)
        try:
            while True:
                try:
                    message = await self.transport.receive()
                except TransportReadError as e:
                    logger.info("Stopping dispatcher for %s: %s", self.peer, e)
                    break

                job = self._accept(message)
                if job is None:
                    continue

                self._inflight = asyncio.create_task(self._analyze(*job))
                envelope = await self._responses.get()
                self._inflight = None

                try:
                    await self.transport.send(envelope)
                except TransportReadError as e:
                    logger.info("Stopping dispatcher for %s: %s", self.peer, e)
                    break
                self.answered += 1
        finally:
            self._abandon_inflight()
            self.analyzer.release()
            logger.info("Client disconnected: %s (answered %d)", self.peer, self.answered)

        return self.answered

    def _accept(self, message: Message) -> Optional[Tuple[int, Awaitable[ResponseEnvelope]]]:
        """Assign a sequence number and pick the branch, or drop the message."""
        if not message.data:
            logger.debug("Dropping empty %s message from %s", message.kind.value, self.peer)
            return None

        if message.kind is MessageKind.TEXT:
            # Location and other metadata share the text channel; only sensors matter here.
            if not is_sensor_payload(message.data):
                logger.debug("Ignoring text message without sensorName from %s", self.peer)
                return None
            sequence = next(self._sequence)
            return sequence, self.analyzer.analyze_sensor(sequence, message.data)

        sequence = next(self._sequence)
        return sequence, self.analyzer.analyze_frame(sequence, message.data)

    async def _analyze(self, sequence: int, work: Awaitable[ResponseEnvelope]) -> None:
        """Task boundary: whatever happens, exactly one envelope is published."""
        try:
            envelope = await work
        except (DecodeError, DetectorFault, MalformedSensorPayload) as e:
            logger.warning("Message %d from %s: %s; sending degraded response", sequence, self.peer, e)
            envelope = ResponseEnvelope.degraded(sequence)
        except Exception:
            logger.exception("Analysis of message %d from %s crashed; sending degraded response", sequence, self.peer)
            envelope = ResponseEnvelope.degraded(sequence)

        await self._responses.put(envelope)

    def _abandon_inflight(self) -> None:
        """Cancel (without waiting for) an analysis whose client is gone."""
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            task.cancel()
