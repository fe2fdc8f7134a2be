"""Configuration helpers for replica and relay runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_IDENTITY_PATH = Path.home() / ".agilevibe" / "identity.json"


@dataclass(frozen=True)
class BackendSettings:
    room_id: str
    database_url: str | None
    host: str
    port: int
    heartbeat_interval: float
    liveness_window: float
    poll_interval: float
    identity_path: Path
    gemini_api_key: str | None
    insight_model: str
    log_level: str


def load_settings() -> BackendSettings:
    port_raw = os.getenv("AGILEVIBE_PORT", "8000")
    identity_raw = os.getenv("AGILEVIBE_IDENTITY_PATH")
    return BackendSettings(
        room_id=os.getenv("AGILEVIBE_ROOM_ID", "default-room"),
        database_url=os.getenv("AGILEVIBE_DATABASE_URL"),
        host=os.getenv("AGILEVIBE_HOST", "127.0.0.1"),
        port=int(port_raw),
        heartbeat_interval=float(os.getenv("AGILEVIBE_HEARTBEAT_INTERVAL", "10")),
        liveness_window=float(os.getenv("AGILEVIBE_LIVENESS_WINDOW", "30")),
        poll_interval=float(os.getenv("AGILEVIBE_POLL_INTERVAL", "1.0")),
        identity_path=Path(identity_raw) if identity_raw else DEFAULT_IDENTITY_PATH,
        gemini_api_key=os.getenv("AGILEVIBE_GEMINI_API_KEY") or os.getenv("API_KEY"),
        insight_model=os.getenv("AGILEVIBE_INSIGHT_MODEL", "gemini-3-flash-preview"),
        log_level=os.getenv("AGILEVIBE_LOG_LEVEL", "INFO").upper(),
    )
