"""
Pydantic Models for API Request/Response Validation
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from typing import Literal

from eye_censor.censor import CensorRectangle
from eye_censor.face_utils import Keypoint, RIGHT_EYE_INDICES, LEFT_EYE_INDICES


# ============================================================================
# Geometry Models
# ============================================================================

class Point(BaseModel):
    x: float
    y: float


class RectangleInfo(BaseModel):
    """The eye bar as drawn on the image."""
    center: Point
    width: float = Field(..., description="Bar width in pixels, padding included")
    height: float = Field(..., description="Bar height in pixels, padding included")
    angle: float = Field(..., description="Rotation in radians along the right-to-left eye axis")
    corners: List[Point] = Field(..., description="Image-space corners of the rotated bar")

    @classmethod
    def from_rectangle(cls, rectangle: CensorRectangle) -> "RectangleInfo":
        return cls(
            center=Point(x=rectangle.center_x, y=rectangle.center_y),
            width=rectangle.width,
            height=rectangle.height,
            angle=rectangle.angle,
            corners=[Point(x=x, y=y) for x, y in rectangle.corners()],
        )


class RectangleRequest(BaseModel):
    """Keypoints of one face, in detector order."""
    keypoints: List[Keypoint] = Field(..., description="Face landmarks in pixel coordinates")
    right_eye_indices: List[int] = Field(default_factory=lambda: list(RIGHT_EYE_INDICES))
    left_eye_indices: List[int] = Field(default_factory=lambda: list(LEFT_EYE_INDICES))


# ============================================================================
# Processing Models
# ============================================================================

class CensorResponse(BaseModel):
    """Response from image processing endpoints."""
    status: str = Field(..., examples=["success"])
    faces_detected: int = Field(..., description="Faces found in the image (0 or 1)")
    censored: bool = Field(..., description="Whether an eye bar was drawn")
    rectangle: Optional[RectangleInfo] = None
    processed_image: str = Field(..., description="Base64 data URL of the processed image")
    image_format: str = Field(..., examples=["png"])
    width: int
    height: int
    processing_time_ms: float


class SessionInfo(BaseModel):
    """State of a processing session."""
    session_id: str
    filename: Optional[str]
    created_at: datetime
    is_processing: bool
    processed: bool


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    status: str = Field(..., examples=["healthy"])
    version: str = Field(..., examples=["1.0.0"])
    face_detector_loaded: bool
    active_sessions: int


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    status: Literal["error"] = "error"
    error_code: str
    message: str


# Error codes
class ErrorCode:
    INVALID_IMAGE = "INVALID_IMAGE"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    MALFORMED_KEYPOINTS = "MALFORMED_KEYPOINTS"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_BUSY = "SESSION_BUSY"
    IMAGE_REPLACED = "IMAGE_REPLACED"
    NOT_PROCESSED = "NOT_PROCESSED"
    PROCESSING_ERROR = "PROCESSING_ERROR"
