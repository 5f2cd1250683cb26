import asyncio
import json
import random
import threading
import time

import cv2
import numpy as np
import pytest

from detect.detector import Detector
from detect.errors import DetectorFault
from detect.geometry import BoundingBox
from xray_agent.dispatcher import FrameAnalyzer, FrameDispatcher, Message, MessageKind
from xray_agent.display_memory import DisplayMemory
from xray_agent.envelope import PresignedPost, SubjectType
from xray_agent.errors import TransportReadError

CENTER_FACE = BoundingBox(top=320, left=400, bottom=400, right=560)


def _png(pixels: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", pixels)
    assert ok
    return buf.tobytes()


def _frame_bytes(seed: int = 0, block_value: int = 0, size=(720, 960)) -> bytes:
    pixels = np.zeros(size, dtype=np.uint8)
    pixels[-5:, -5:] = seed % 256  # make every frame's bytes distinct
    pixels[200:220, 300:320] = block_value
    return _png(pixels)


def binary(data: bytes) -> Message:
    return Message(MessageKind.BINARY, data)


def text(payload) -> Message:
    if not isinstance(payload, (str, bytes)):
        payload = json.dumps(payload)
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return Message(MessageKind.TEXT, payload)


class FakeTransport:
    """Delivers a fixed list of messages, then reports the client gone."""

    def __init__(self, messages):
        self._inbox = list(messages)
        self.sent = []

    async def receive(self):
        if not self._inbox:
            raise TransportReadError("client closed")
        return self._inbox.pop(0)

    async def send(self, envelope):
        self.sent.append(envelope)


class ScriptedDetector(Detector):
    """Answers by looking the image bytes up in a script."""

    name = "scripted"

    def __init__(self, script=None, default=None, jitter: float = 0.0):
        self.script = script or {}
        self.default = default or []
        self.jitter = jitter
        self.calls = 0

    def detect(self, image_bytes):
        self.calls += 1
        if self.jitter:
            time.sleep(random.random() * self.jitter)
        result = self.script.get(image_bytes, self.default)
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeStore:
    def __init__(self):
        self.saved = []

    def save_in_background(self, data):
        self.saved.append(data)

    def presigned_post(self, prefix, expiry_days=10):
        return PresignedPost(url="http://storage.local/xray", form_data={"key": prefix})


def run_dispatcher(messages, detector, grace_frames=0, **analyzer_kwargs):
    async def scenario():
        memory = DisplayMemory(grace_frames=grace_frames)
        analyzer = FrameAnalyzer(detector=detector, display_memory=memory, **analyzer_kwargs)
        transport = FakeTransport(messages)
        dispatcher = FrameDispatcher(transport, analyzer, peer="test-client")
        answered = await dispatcher.serve()
        await memory.stop()
        return transport, dispatcher, analyzer, answered

    return asyncio.run(scenario())


def _assert_degraded(envelope):
    assert envelope.positions == []
    assert envelope.type is SubjectType.UNKNOWN
    assert envelope.display is False
    assert envelope.zoom == -1


def test_responses_follow_arrival_order():
    frames = [_frame_bytes(seed=i) for i in range(20)]
    detector = ScriptedDetector(jitter=0.01)

    transport, dispatcher, _, answered = run_dispatcher([binary(f) for f in frames], detector)

    assert answered == 20 == dispatcher.answered
    assert [e.sequence for e in transport.sent] == list(range(1, 21))
    assert detector.calls == 20


def test_detector_crash_yields_one_degraded_envelope_and_loop_continues():
    frames = [_frame_bytes(seed=i) for i in range(4)]
    detector = ScriptedDetector(
        script={frames[1]: RuntimeError("segfault-ish"), frames[2]: DetectorFault("cascade broke")},
        default=[CENTER_FACE],
    )

    transport, _, _, _ = run_dispatcher([binary(f) for f in frames], detector)

    assert [e.sequence for e in transport.sent] == [1, 2, 3, 4]
    _assert_degraded(transport.sent[1])
    _assert_degraded(transport.sent[2])
    assert transport.sent[0].type is SubjectType.HUMAN
    assert transport.sent[3].type is SubjectType.HUMAN


def test_undecodable_frame_is_degraded():
    detector = ScriptedDetector()
    transport, _, _, _ = run_dispatcher(
        [binary(b"this is not an image"), binary(_frame_bytes())], detector
    )

    assert [e.sequence for e in transport.sent] == [1, 2]
    _assert_degraded(transport.sent[0])
    # Decoding failed before the detector was reached.
    assert detector.calls == 1


def test_empty_and_non_sensor_messages_are_dropped_silently():
    messages = [
        binary(b""),
        text(""),
        text({"latitude": 1.0, "longitude": 2.0}),
        binary(_frame_bytes()),
    ]
    transport, _, _, answered = run_dispatcher(messages, ScriptedDetector())

    assert answered == 1
    assert [e.sequence for e in transport.sent] == [1]


def test_malformed_sensor_payload_is_degraded():
    messages = [text('{"sensorName": "accel", "values": [1, 2'), text({"sensorName": "accel", "values": "x"})]
    transport, _, _, _ = run_dispatcher(messages, ScriptedDetector())

    assert [e.sequence for e in transport.sent] == [1, 2]
    for envelope in transport.sent:
        _assert_degraded(envelope)


def test_sensor_movement_turns_display_on():
    messages = [
        text({"sensorName": "gyroscope", "values": [0.0, 0.0, 0.0]}),
        text({"sensorName": "gyroscope", "values": [0.1, 0.0, 0.2]}),
        text({"sensorName": "gyroscope", "values": [3.5, 0.0, 0.2]}),
        text({"sensorName": "gyroscope", "values": [3.6, 0.1, 0.2]}),
    ]
    transport, _, _, _ = run_dispatcher(messages, ScriptedDetector(), sensor_threshold=1.0)

    assert [e.display for e in transport.sent] == [False, False, True, False]
    assert all(e.zoom == -1 and e.type is SubjectType.UNKNOWN for e in transport.sent)


def test_detection_drives_display_positions_and_zoom():
    frame = _frame_bytes()
    detector = ScriptedDetector(script={frame: [CENTER_FACE]})

    transport, _, _, _ = run_dispatcher([binary(frame)], detector)
    envelope = transport.sent[0]

    assert envelope.type is SubjectType.HUMAN
    assert envelope.display is True
    assert envelope.zoom == 2
    assert len(envelope.positions) == 1
    assert (envelope.positions[0].pt1.x, envelope.positions[0].pt1.y) == (560, 320)
    assert (envelope.positions[0].pt2.x, envelope.positions[0].pt2.y) == (400, 400)


def test_edge_artifact_boxes_are_not_reported():
    frame = _frame_bytes()
    detector = ScriptedDetector(script={frame: [BoundingBox(top=0, left=0, bottom=40, right=40)]})

    transport, _, _, _ = run_dispatcher([binary(frame)], detector)
    envelope = transport.sent[0]

    assert envelope.positions == []
    assert envelope.type is SubjectType.UNKNOWN
    assert envelope.display is False
    assert envelope.zoom == -1


def test_motion_without_detections_turns_display_on():
    frames = [_frame_bytes(), _frame_bytes(block_value=200), _frame_bytes()]
    transport, _, _, _ = run_dispatcher([binary(f) for f in frames], ScriptedDetector())

    assert [e.display for e in transport.sent] == [False, False, True]
    # Motion alone gives no subject to frame.
    assert transport.sent[2].zoom == -1


def test_grace_frames_keep_display_on():
    face_frame = _frame_bytes(seed=1)
    frames = [face_frame] + [_frame_bytes(seed=i) for i in range(2, 5)]
    detector = ScriptedDetector(script={face_frame: [CENTER_FACE]})

    transport, _, _, _ = run_dispatcher([binary(f) for f in frames], detector, grace_frames=2)

    assert [e.display for e in transport.sent] == [True, True, True, False]


def test_frames_with_detections_are_stored_and_presigned():
    face_frame = _frame_bytes(seed=1)
    empty_frame = _frame_bytes(seed=2)
    detector = ScriptedDetector(script={face_frame: [CENTER_FACE]})
    store = FakeStore()

    transport, _, _, _ = run_dispatcher(
        [binary(face_frame), binary(empty_frame)], detector, store=store, presign_uploads=True
    )

    assert store.saved == [face_frame]
    assert transport.sent[0].upload is not None
    assert transport.sent[0].upload.url == "http://storage.local/xray"
    assert transport.sent[1].upload is None


def test_send_failure_stops_the_dispatcher():
    class BrokenTransport(FakeTransport):
        async def send(self, envelope):
            raise TransportReadError("broken pipe")

    async def scenario():
        memory = DisplayMemory()
        analyzer = FrameAnalyzer(detector=ScriptedDetector(), display_memory=memory)
        transport = BrokenTransport([binary(_frame_bytes(seed=i)) for i in range(3)])
        dispatcher = FrameDispatcher(transport, analyzer)
        answered = await dispatcher.serve()
        await memory.stop()
        return answered, transport, analyzer

    answered, transport, analyzer = asyncio.run(scenario())
    assert answered == 0
    # Only the first message was consumed before the loop stopped.
    assert len(transport._inbox) == 2
    assert len(analyzer.history) == 0


def test_cancelled_dispatcher_abandons_inflight_analysis():
    entered = threading.Event()
    release = threading.Event()

    class BlockingDetector(Detector):
        def detect(self, image_bytes):
            entered.set()
            release.wait(5)
            return []

    async def scenario():
        memory = DisplayMemory()
        analyzer = FrameAnalyzer(detector=BlockingDetector(), display_memory=memory)
        transport = FakeTransport([binary(_frame_bytes())])
        dispatcher = FrameDispatcher(transport, analyzer)

        serving = asyncio.create_task(dispatcher.serve())
        while not entered.is_set():
            await asyncio.sleep(0.001)
        inflight = dispatcher._inflight

        serving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await serving
        await asyncio.gather(inflight, return_exceptions=True)

        release.set()
        await memory.stop()
        return dispatcher, inflight, analyzer, transport

    dispatcher, inflight, analyzer, transport = asyncio.run(scenario())
    assert inflight.cancelled()
    assert dispatcher._inflight is None
    assert len(analyzer.history) == 0
    assert transport.sent == []
