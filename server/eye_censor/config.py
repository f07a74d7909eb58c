"""
Runtime configuration, read from environment variables.
"""

import os
import logging
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Service settings. Defaults match the original eye bar dimensions."""
    model_path: str = "models/face_landmarker.task"
    width_padding: float = 40.0
    height_padding: float = 20.0
    bar_color: str = "black"
    use_opencv: bool = False
    min_confidence: float = 0.5
    max_upload_bytes: int = 20 * 1024 * 1024
    max_sessions: int = 100
    session_ttl_seconds: float = 1800.0
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            model_path=os.getenv("EYE_CENSOR_MODEL_PATH", cls.model_path),
            width_padding=float(os.getenv("EYE_CENSOR_WIDTH_PADDING", cls.width_padding)),
            height_padding=float(os.getenv("EYE_CENSOR_HEIGHT_PADDING", cls.height_padding)),
            bar_color=os.getenv("EYE_CENSOR_BAR_COLOR", cls.bar_color),
            use_opencv=_env_bool("EYE_CENSOR_USE_OPENCV", cls.use_opencv),
            min_confidence=float(os.getenv("EYE_CENSOR_MIN_CONFIDENCE", cls.min_confidence)),
            max_upload_bytes=int(os.getenv("EYE_CENSOR_MAX_UPLOAD_BYTES", cls.max_upload_bytes)),
            max_sessions=int(os.getenv("EYE_CENSOR_MAX_SESSIONS", cls.max_sessions)),
            session_ttl_seconds=float(os.getenv("EYE_CENSOR_SESSION_TTL_SECONDS", cls.session_ttl_seconds)),
            log_level=os.getenv("EYE_CENSOR_LOG_LEVEL", cls.log_level).upper(),
            host=os.getenv("EYE_CENSOR_HOST", cls.host),
            port=int(os.getenv("EYE_CENSOR_PORT", cls.port)),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the service process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
