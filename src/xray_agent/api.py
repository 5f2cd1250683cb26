from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket
from pydantic import BaseModel

from detect.detector import Detector, create_detector

from .config import XraySettings
from .dispatcher import FrameAnalyzer, FrameDispatcher, WebSocketTransport
from .display_memory import DisplayMemory
from .storage import ObjectStore

logger = logging.getLogger(__name__)


class HealthOut(BaseModel):
    status: str
    time_utc: datetime

    model_config = {"json_schema_extra": {"examples": [{"status": "ok", "time_utc": "2026-02-18T12:00:00Z"}]}}


class StatusOut(BaseModel):
    detector: str
    display_memory_scope: str
    storage_enabled: bool
    active_connections: int
    frames_answered: int
    uptime_seconds: int

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "detector": "haar",
                    "display_memory_scope": "shared",
                    "storage_enabled": False,
                    "active_connections": 1,
                    "frames_answered": 1250,
                    "uptime_seconds": 42,
                }
            ]
        }
    }


def create_app(
    cfg: XraySettings,
    detector: Optional[Detector] = None,
    store: Optional[ObjectStore] = None,
) -> FastAPI:
    """
    Create the X-Ray agent app.

    detector and store default to what cfg describes; tests pass their own.
    """
    if detector is None:
        detector = create_detector(
            cfg.detector_backend,
            pool_size=cfg.detector_pool_size,
            cascade_path=cfg.haar_cascade_path,
            url=cfg.detector_url,
            timeout=cfg.detector_timeout_sec,
        )
    if store is None:
        store = ObjectStore.from_settings(cfg)

    shared_memory = DisplayMemory(cfg.display_grace_frames)
    stats = {"active_connections": 0, "frames_answered": 0}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.store is not None:
            try:
                await asyncio.to_thread(app.state.store.ensure_bucket)
            except Exception:
                logger.exception("Object storage unavailable; frames will not be saved")
                app.state.store = None

        if cfg.display_memory_scope == "shared":
            shared_memory.start()

        logger.info("X-Ray agent ready (detector=%s, storage=%s)", detector.name, app.state.store is not None)
        yield

        await shared_memory.stop()
        if app.state.store is not None:
            await app.state.store.drain()
        detector.close()
        logger.info("Shutting down X-Ray agent")

    app = FastAPI(
        title="X-Ray Agent",
        version="0.1.0",
        description="Streams camera frames and sensor readings, answers with display and zoom decisions.",
        lifespan=lifespan,
    )
    app.state.store = store

    # Store start time for uptime calculation
    started_monotonic = time.monotonic()

    @app.get("/")
    def root():
        return {"status": "xray agent running"}

    @app.get("/health", response_model=HealthOut, tags=["health"])
    def health() -> HealthOut:
        """Liveness check: returns OK if the agent process is running."""
        return HealthOut(status="ok", time_utc=datetime.now(timezone.utc))

    @app.get("/status", response_model=StatusOut, tags=["health"])
    def status() -> StatusOut:
        """Detector in use, live connections and frames answered so far."""
        return StatusOut(
            detector=detector.name,
            display_memory_scope=cfg.display_memory_scope,
            storage_enabled=app.state.store is not None,
            active_connections=stats["active_connections"],
            frames_answered=stats["frames_answered"],
            uptime_seconds=int(time.monotonic() - started_monotonic),
        )

    async def stream(websocket: WebSocket) -> None:
        """One connection: frames and sensor readings in, envelopes out."""
        await websocket.accept()

        if cfg.display_memory_scope == "shared":
            memory = shared_memory
        else:
            memory = DisplayMemory(cfg.display_grace_frames)

        analyzer = FrameAnalyzer(
            detector=detector,
            display_memory=memory,
            store=app.state.store,
            sensor_threshold=cfg.sensor_motion_threshold,
            presign_uploads=cfg.presign_uploads,
            presign_expiry_days=cfg.presign_expiry_days,
        )
        dispatcher = FrameDispatcher(WebSocketTransport(websocket), analyzer, peer=websocket.client)

        stats["active_connections"] += 1
        try:
            await dispatcher.serve()
        finally:
            stats["active_connections"] -= 1
            stats["frames_answered"] += dispatcher.answered
            if memory is not shared_memory:
                await memory.stop()

    app.add_api_websocket_route("/", stream)
    app.add_api_websocket_route("/ws", stream)

    return app
