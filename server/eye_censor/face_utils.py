"""
Face Landmark Utilities (MediaPipe Version)

Uses MediaPipe FaceLandmarker with refined landmarks, so every face comes
back as the 478-point mesh. The eye index sets below are positions in that
mesh.
"""

import os
import logging
import numpy as np
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

logger = logging.getLogger(__name__)


# Eye contours in the 478-point FaceMesh topology (subject's right / left)
RIGHT_EYE_INDICES = (33, 7, 163, 144, 145, 153, 154, 155, 133)
LEFT_EYE_INDICES = (263, 249, 390, 373, 374, 380, 381, 382, 362)

FACE_MESH_POINTS = 478


class Keypoint(BaseModel):
    """A single landmark in image pixel coordinates."""
    model_config = ConfigDict(frozen=True)

    x: float = Field(..., description="X coordinate in pixels")
    y: float = Field(..., description="Y coordinate in pixels")
    z: Optional[float] = Field(default=None, description="Relative depth, if provided")


class FaceLandmarks(BaseModel):
    """
    All landmarks of one detected face, in detector order.

    Order matters: the eye index sets address positions in `keypoints`.
    """
    model_config = ConfigDict(frozen=True)

    keypoints: List[Keypoint]

    def __len__(self) -> int:
        return len(self.keypoints)


# ============================================================================
# Detector Interface
# ============================================================================

class FaceLandmarkDetectorInterface:
    """Interface that landmark detector implementations must follow."""

    def detect(self, image: np.ndarray) -> List[FaceLandmarks]:
        """Detect faces in an RGB image array of shape (H, W, 3)."""
        raise NotImplementedError

    def close(self) -> None:
        pass


# ============================================================================
# MediaPipe Implementation
# ============================================================================

class MediaPipeFaceLandmarker(FaceLandmarkDetectorInterface):
    """
    Face landmark detector backed by MediaPipe Tasks FaceLandmarker.

    Args:
        model_path: Path to the `face_landmarker.task` bundle
        max_faces: Maximum number of faces to return
        min_confidence: Minimum detection / presence confidence
    """

    def __init__(
        self,
        model_path: str,
        max_faces: int = 1,
        min_confidence: float = 0.5
    ):
        if not os.path.exists(model_path):
            raise FileNotFoundError(
                f"MediaPipe model not found: {model_path}. "
                "Run `python -m eye_censor.download_models` first."
            )

        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        model_size_mb = os.path.getsize(model_path) / 1024 / 1024
        logger.info("MediaPipe FaceLandmarker: %s (%.1f MB)", model_path, model_size_mb)

        options = vision.FaceLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=max_faces,
            min_face_detection_confidence=min_confidence,
            min_face_presence_confidence=min_confidence,
        )
        self.max_faces = max_faces
        self._landmarker = vision.FaceLandmarker.create_from_options(options)

    def detect(self, image: np.ndarray) -> List[FaceLandmarks]:
        """Detect faces and convert normalized landmarks to pixel coordinates."""
        import mediapipe as mp

        height, width = image.shape[:2]
        mp_image = mp.Image(
            image_format=mp.ImageFormat.SRGB,
            data=np.ascontiguousarray(image, dtype=np.uint8),
        )
        result = self._landmarker.detect(mp_image)

        if not result or not result.face_landmarks:
            return []

        faces = []
        for face_lms in result.face_landmarks:
            faces.append(FaceLandmarks(keypoints=[
                Keypoint(x=lm.x * width, y=lm.y * height, z=lm.z)
                for lm in face_lms
            ]))

        logger.debug("Detected %d face(s) in %dx%d image", len(faces), width, height)
        return faces

    def close(self) -> None:
        self._landmarker.close()

