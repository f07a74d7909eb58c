import io
import threading
from typing import List, Sequence, Tuple

import numpy as np
import pytest
from PIL import Image

from eye_censor.face_utils import (
    FaceLandmarks, FaceLandmarkDetectorInterface, Keypoint,
    RIGHT_EYE_INDICES, LEFT_EYE_INDICES, FACE_MESH_POINTS
)


def eye_contour(cx: float, cy: float, half_w: float, half_h: float) -> List[Tuple[float, float]]:
    """Nine points whose bounding box is exactly [cx +- half_w] x [cy +- half_h]."""
    return [
        (cx - half_w, cy),
        (cx - half_w / 2, cy + half_h * 0.8),
        (cx - half_w / 4, cy + half_h * 0.9),
        (cx, cy + half_h),
        (cx + half_w / 2, cy + half_h * 0.7),
        (cx + half_w, cy),
        (cx + half_w / 2, cy - half_h * 0.8),
        (cx, cy - half_h),
        (cx - half_w / 2, cy - half_h * 0.7),
    ]


def make_keypoints(
    right_eye: Sequence[Tuple[float, float]],
    left_eye: Sequence[Tuple[float, float]],
    size: int = FACE_MESH_POINTS
) -> List[Keypoint]:
    points = [(0.0, 0.0)] * size
    for index, point in zip(RIGHT_EYE_INDICES, right_eye):
        points[index] = point
    for index, point in zip(LEFT_EYE_INDICES, left_eye):
        points[index] = point
    return [Keypoint(x=x, y=y) for x, y in points]


def png_bytes(width: int, height: int, color: str = "white") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeDetector(FaceLandmarkDetectorInterface):
    """Returns preset faces and remembers the images it was given."""

    def __init__(self, faces: List[FaceLandmarks]):
        self.faces = faces
        self.calls: List[Tuple[int, ...]] = []

    def detect(self, image: np.ndarray) -> List[FaceLandmarks]:
        self.calls.append(image.shape)
        return list(self.faces)


class BlockingDetector(FakeDetector):
    """Holds `detect` until `release` is set."""

    def __init__(self, faces: List[FaceLandmarks]):
        super().__init__(faces)
        self.started = threading.Event()
        self.release = threading.Event()

    def detect(self, image: np.ndarray) -> List[FaceLandmarks]:
        self.started.set()
        self.release.wait(timeout=5)
        return super().detect(image)


@pytest.fixture
def symmetric_keypoints() -> List[Keypoint]:
    # Right eye spans [90,110]x[95,105], left eye [190,210]x[95,105]
    return make_keypoints(eye_contour(100, 100, 10, 5), eye_contour(200, 100, 10, 5))


@pytest.fixture
def symmetric_face(symmetric_keypoints) -> FaceLandmarks:
    return FaceLandmarks(keypoints=symmetric_keypoints)


@pytest.fixture
def white_png() -> bytes:
    return png_bytes(320, 200)
