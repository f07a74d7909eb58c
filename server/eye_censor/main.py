"""
Eye Censor - FastAPI Backend
============================

Upload a photo, get it back with a black bar over the eyes.

Endpoints:
- POST   /censor                     - Censor an image, JSON + base64 result
- POST   /censor/raw                 - Censor an image, PNG download
- POST   /censor/rectangle           - Compute the bar from given keypoints
- POST   /sessions                   - Upload an image into a new session
- PUT    /sessions/{id}/image        - Replace the session's image
- POST   /sessions/{id}/process      - (Re-)process the session's image
- GET    /sessions/{id}/download     - Download the last censored image
- DELETE /sessions/{id}              - Discard a session
- GET    /health                     - Health check
"""

import asyncio
import logging
from typing import NamedTuple, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, UploadFile, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from eye_censor import __version__
from eye_censor.config import Settings, configure_logging
from eye_censor.censor import KeypointIndexOutOfRangeError, compute_censor_rectangle
from eye_censor.face_utils import FaceLandmarkDetectorInterface, MediaPipeFaceLandmarker
from eye_censor.image_processor import (
    CensorResult, ImageProcessor, InvalidImageError, image_to_base64, DOWNLOAD_FILENAME
)
from eye_censor.session import (
    ProcessingSession, SessionStore, SessionNotFoundError, SessionBusyError,
    StaleResultError, NotProcessedError
)
from eye_censor.models import (
    CensorResponse, RectangleInfo, RectangleRequest, SessionInfo,
    HealthResponse, ErrorResponse, ErrorCode
)

logger = logging.getLogger(__name__)


def _error(status_code: int, error_code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error_code": error_code, "message": message}
    )


def _to_http_error(e: Exception) -> HTTPException:
    """Map a processing exception onto the API's error responses."""
    if isinstance(e, InvalidImageError):
        return _error(400, ErrorCode.INVALID_IMAGE, str(e))
    if isinstance(e, KeypointIndexOutOfRangeError):
        return _error(422, ErrorCode.MALFORMED_KEYPOINTS, str(e))
    if isinstance(e, SessionNotFoundError):
        return _error(404, ErrorCode.SESSION_NOT_FOUND, str(e))
    if isinstance(e, SessionBusyError):
        return _error(409, ErrorCode.SESSION_BUSY, str(e))
    if isinstance(e, StaleResultError):
        return _error(409, ErrorCode.IMAGE_REPLACED, str(e))
    if isinstance(e, NotProcessedError):
        return _error(409, ErrorCode.NOT_PROCESSED, str(e))
    logger.exception("Unexpected processing error")
    return _error(500, ErrorCode.PROCESSING_ERROR, str(e))


def _censor_response(result: CensorResult) -> CensorResponse:
    return CensorResponse(
        status="success",
        faces_detected=result.faces_detected,
        censored=result.censored,
        rectangle=RectangleInfo.from_rectangle(result.rectangle) if result.censored else None,
        processed_image=image_to_base64(result.image_bytes, result.image_format),
        image_format=result.image_format,
        width=result.width,
        height=result.height,
        processing_time_ms=result.processing_time_ms,
    )


def _download_response(result: CensorResult) -> Response:
    return Response(
        content=result.image_bytes,
        media_type=f"image/{result.image_format}",
        headers={"Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"'},
    )


def _session_info(session: ProcessingSession) -> SessionInfo:
    return SessionInfo(
        session_id=session.id,
        filename=session.filename,
        created_at=session.created_at,
        is_processing=session.is_processing,
        processed=session.result is not None,
    )


# ============================================================================
# Dependencies
# ============================================================================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_processor(request: Request) -> ImageProcessor:
    return request.app.state.processor


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


class Upload(NamedTuple):
    data: bytes
    filename: Optional[str]


async def read_upload(
    image: UploadFile = File(..., description="Photo to censor"),
    settings: Settings = Depends(get_settings)
) -> Upload:
    """Read an uploaded file, enforcing the configured size limit."""
    image_bytes = await image.read(settings.max_upload_bytes + 1)
    if len(image_bytes) > settings.max_upload_bytes:
        raise _error(
            413,
            ErrorCode.IMAGE_TOO_LARGE,
            f"Image exceeds {settings.max_upload_bytes} bytes",
        )
    return Upload(image_bytes, image.filename)


# ============================================================================
# Application Setup
# ============================================================================

def _install_processor(app: FastAPI, detector: FaceLandmarkDetectorInterface) -> None:
    settings: Settings = app.state.settings
    processor = ImageProcessor(
        detector,
        color=settings.bar_color,
        use_opencv=settings.use_opencv,
        width_padding=settings.width_padding,
        height_padding=settings.height_padding,
    )
    app.state.detector = detector
    app.state.processor = processor
    app.state.sessions = SessionStore(
        processor,
        max_sessions=settings.max_sessions,
        ttl_seconds=settings.session_ttl_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings: Settings = app.state.settings
    logger.info("Eye Censor %s starting up", __version__)
    owns_detector = app.state.processor is None
    if owns_detector:
        _install_processor(app, MediaPipeFaceLandmarker(
            settings.model_path,
            max_faces=1,
            min_confidence=settings.min_confidence,
        ))
    logger.info(
        "Face detector: %s, surface: %s",
        type(app.state.detector).__name__,
        "opencv" if settings.use_opencv else "pillow",
    )
    yield
    if owns_detector:
        app.state.detector.close()
    logger.info("Eye Censor shutting down")


def create_app(
    detector: Optional[FaceLandmarkDetectorInterface] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the application.

    When no detector is given, a MediaPipe FaceLandmarker is loaded from
    `settings.model_path` at startup.
    """
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Eye Censor API",
        description="Detects a face and draws a rotated black bar over both eyes.",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.detector = None
    app.state.processor = None
    app.state.sessions = None
    if detector is not None:
        _install_processor(app, detector)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================================================
    # Health & Info Endpoints
    # ========================================================================

    @app.get("/", tags=["Info"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Eye Censor API",
            "version": __version__,
            "face_detector": type(app.state.detector).__name__,
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/health", response_model=HealthResponse, tags=["Info"])
    async def health_check(sessions: SessionStore = Depends(get_sessions)):
        """Check system health."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            face_detector_loaded=app.state.detector is not None,
            active_sessions=len(sessions),
        )

    # ========================================================================
    # Stateless Processing Endpoints
    # ========================================================================

    @app.post(
        "/censor",
        response_model=CensorResponse,
        responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
        tags=["Processing"]
    )
    async def censor_image(
        upload: Upload = Depends(read_upload),
        processor: ImageProcessor = Depends(get_processor)
    ):
        """Censor the eyes in an uploaded photo and return it base64-encoded."""
        try:
            result = await asyncio.to_thread(processor.process_image, upload.data)
        except Exception as e:
            raise _to_http_error(e)
        return _censor_response(result)

    @app.post("/censor/raw", tags=["Processing"])
    async def censor_image_raw(
        upload: Upload = Depends(read_upload),
        processor: ImageProcessor = Depends(get_processor)
    ):
        """Censor the eyes and return the PNG as a download."""
        try:
            result = await asyncio.to_thread(processor.process_image, upload.data)
        except Exception as e:
            raise _to_http_error(e)
        return _download_response(result)

    @app.post(
        "/censor/rectangle",
        response_model=RectangleInfo,
        responses={422: {"model": ErrorResponse}},
        tags=["Processing"]
    )
    async def censor_rectangle(
        request_data: RectangleRequest,
        settings: Settings = Depends(get_settings)
    ):
        """Compute the eye bar for keypoints produced by an external detector."""
        try:
            rectangle = compute_censor_rectangle(
                request_data.keypoints,
                request_data.right_eye_indices,
                request_data.left_eye_indices,
                width_padding=settings.width_padding,
                height_padding=settings.height_padding,
            )
        except ValueError as e:
            raise _error(422, ErrorCode.MALFORMED_KEYPOINTS, str(e))
        except KeypointIndexOutOfRangeError as e:
            raise _to_http_error(e)
        return RectangleInfo.from_rectangle(rectangle)

    # ========================================================================
    # Session Endpoints
    # ========================================================================

    @app.post("/sessions", response_model=SessionInfo, status_code=201, tags=["Sessions"])
    async def create_session(
        upload: Upload = Depends(read_upload),
        sessions: SessionStore = Depends(get_sessions)
    ):
        """Start a session for an uploaded image."""
        session = sessions.create(upload.data, upload.filename)
        return _session_info(session)

    @app.get("/sessions/{session_id}", response_model=SessionInfo, tags=["Sessions"])
    async def get_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
        try:
            return _session_info(sessions.get(session_id))
        except SessionNotFoundError as e:
            raise _to_http_error(e)

    @app.put("/sessions/{session_id}/image", response_model=SessionInfo, tags=["Sessions"])
    async def replace_session_image(
        session_id: str,
        upload: Upload = Depends(read_upload),
        sessions: SessionStore = Depends(get_sessions)
    ):
        """Replace the image; a pass still running for the old image is dropped."""
        try:
            session = sessions.replace_image(session_id, upload.data, upload.filename)
        except SessionNotFoundError as e:
            raise _to_http_error(e)
        return _session_info(session)

    @app.post(
        "/sessions/{session_id}/process",
        response_model=CensorResponse,
        responses={409: {"model": ErrorResponse}},
        tags=["Sessions"]
    )
    async def process_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
        """Run (or re-run) detection and censoring for the session's image."""
        try:
            result = await sessions.process(session_id)
        except Exception as e:
            raise _to_http_error(e)
        return _censor_response(result)

    @app.get("/sessions/{session_id}/download", tags=["Sessions"])
    async def download_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
        """Download the censored image of the last successful pass."""
        try:
            result = sessions.get(session_id).require_result()
        except Exception as e:
            raise _to_http_error(e)
        return _download_response(result)

    @app.delete("/sessions/{session_id}", status_code=204, tags=["Sessions"])
    async def delete_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
        try:
            sessions.discard(session_id)
        except SessionNotFoundError as e:
            raise _to_http_error(e)
        return Response(status_code=204)

    return app


def run() -> None:
    """Run the server with uvicorn."""
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
