from __future__ import annotations

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class XraySettings(BaseSettings):
    """
    Configuration for the X-Ray agent.
    """

    # Tell pydantic-settings to load environment variables from .env if present.
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # ignore unknown env vars
    )

    # --- Server ---
    host: str = "0.0.0.0"
    port: int = 8080

    # --- Logging ---
    log_level: str = "INFO"
    debug: bool = False

    # --- Detector ---
    detector_backend: Literal["haar", "http"] = "haar"
    haar_cascade_path: Optional[str] = None  # None = OpenCV's bundled frontal face cascade
    detector_url: Optional[str] = None  # required for the http backend
    detector_timeout_sec: float = 5.0
    detector_pool_size: int = 8

    # --- Display memory ---
    # How many quiet frames keep the camera on screen after the last active one.
    display_grace_frames: int = 3
    # "shared": one debounce state for the whole process; "connection": one per client.
    display_memory_scope: Literal["shared", "connection"] = "shared"

    # --- Sensor branch ---
    # Largest per-axis change between two readings of the same sensor that is still "still".
    sensor_motion_threshold: float = 1.0

    # --- Object storage (frames with detections) ---
    # Storage is disabled when no endpoint is configured.
    s3_endpoint: Optional[str] = None
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_secure: bool = True
    s3_bucket: str = "xray"
    s3_region: str = "us-east-1"
    presign_uploads: bool = False
    presign_expiry_days: int = 10


# Convenience global settings object.
# This lets other modules do: from xray_agent.config import settings
settings = XraySettings()
