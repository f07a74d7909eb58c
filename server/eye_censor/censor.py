"""
Eye Bar Geometry - The "Censor" Engine

Turns the two eye contours of a detected face into one padded, rotated
rectangle and paints it onto a drawing surface.

Everything here is recomputed from scratch on each call; nothing is cached.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from eye_censor.face_utils import Keypoint, RIGHT_EYE_INDICES, LEFT_EYE_INDICES
from eye_censor.surface import Color, DrawingSurface

logger = logging.getLogger(__name__)

DEFAULT_WIDTH_PADDING = 40.0
DEFAULT_HEIGHT_PADDING = 20.0


class CensorError(Exception):
    """Base exception for censoring errors."""
    pass


class KeypointIndexOutOfRangeError(CensorError, IndexError):
    """An eye index does not address a keypoint of the detected face."""

    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(f"Keypoint index {index} out of range for {size} keypoints")


@dataclass(frozen=True)
class EyeRegion:
    """Axis-aligned bounding box of one eye's contour points."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Tuple[float, float]:
        # Box midpoint, not the centroid: the contour is denser along the lids.
        return (self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2

    @classmethod
    def from_points(cls, points: np.ndarray) -> "EyeRegion":
        xs, ys = points[:, 0], points[:, 1]
        return cls(
            min_x=float(xs.min()),
            max_x=float(xs.max()),
            min_y=float(ys.min()),
            max_y=float(ys.max()),
        )


@dataclass(frozen=True)
class CensorRectangle:
    """
    The bar drawn over both eyes.

    `angle` is in radians, measured from the image x axis with y pointing
    down, along the vector from the right eye center to the left eye center.
    """
    center_x: float
    center_y: float
    width: float
    height: float
    angle: float

    def to_local(self, x: float, y: float) -> Tuple[float, float]:
        """Express an image point in the rectangle's own frame."""
        dx, dy = x - self.center_x, y - self.center_y
        c, s = math.cos(self.angle), math.sin(self.angle)
        return dx * c + dy * s, -dx * s + dy * c

    def contains(self, x: float, y: float, tolerance: float = 1e-9) -> bool:
        lx, ly = self.to_local(x, y)
        return (abs(lx) <= self.width / 2 + tolerance
                and abs(ly) <= self.height / 2 + tolerance)

    def corners(self) -> List[Tuple[float, float]]:
        """Image-space corners, clockwise from the local top-left."""
        c, s = math.cos(self.angle), math.sin(self.angle)
        hw, hh = self.width / 2, self.height / 2
        return [
            (self.center_x + lx * c - ly * s, self.center_y + lx * s + ly * c)
            for lx, ly in ((-hw, -hh), (hw, -hh), (hw, hh), (-hw, hh))
        ]


def select_points(keypoints: Sequence[Keypoint], indices: Sequence[int]) -> np.ndarray:
    """
    Gather the (x, y) of `keypoints[i]` for each index.

    Raises:
        KeypointIndexOutOfRangeError: If an index is negative or past the end.
    """
    size = len(keypoints)
    selected = []
    for index in indices:
        if index < 0 or index >= size:
            raise KeypointIndexOutOfRangeError(index, size)
        point = keypoints[index]
        selected.append((point.x, point.y))
    return np.array(selected, dtype=np.float64)


def compute_censor_rectangle(
    keypoints: Sequence[Keypoint],
    right_eye_indices: Sequence[int] = RIGHT_EYE_INDICES,
    left_eye_indices: Sequence[int] = LEFT_EYE_INDICES,
    width_padding: float = DEFAULT_WIDTH_PADDING,
    height_padding: float = DEFAULT_HEIGHT_PADDING
) -> CensorRectangle:
    """
    Compute the bar covering both eyes.

    Args:
        keypoints: All landmarks of one face, in detector order
        right_eye_indices: Positions of the right eye contour
        left_eye_indices: Positions of the left eye contour
        width_padding: Added to the combined width of both eyes
        height_padding: Added to the taller eye's height

    Returns:
        CensorRectangle centered on the combined eye box, rotated along the
        inter-eye axis.

    Raises:
        KeypointIndexOutOfRangeError: If an index does not address a keypoint.
        ValueError: If an index set is empty.
    """
    if not right_eye_indices or not left_eye_indices:
        raise ValueError("Eye index sets must not be empty")

    right_points = select_points(keypoints, right_eye_indices)
    left_points = select_points(keypoints, left_eye_indices)

    right_eye = EyeRegion.from_points(right_points)
    left_eye = EyeRegion.from_points(left_points)

    right_cx, right_cy = right_eye.center
    left_cx, left_cy = left_eye.center
    angle = math.atan2(left_cy - right_cy, left_cx - right_cx)

    combined = EyeRegion.from_points(np.vstack((right_points, left_points)))
    center_x, center_y = combined.center

    return CensorRectangle(
        center_x=center_x,
        center_y=center_y,
        width=combined.width + width_padding,
        height=max(right_eye.height, left_eye.height) + height_padding,
        angle=angle,
    )


def render_rectangle(
    surface: DrawingSurface,
    rectangle: CensorRectangle,
    color: Color = "black"
) -> None:
    """
    Paint the bar onto `surface`.

    The surface's transform is the same after the call as before it, also
    when drawing fails.
    """
    if surface is None:
        raise ValueError("Drawing surface is not available")

    with surface.saved_transform():
        surface.translate(rectangle.center_x, rectangle.center_y)
        surface.rotate(rectangle.angle)
        surface.fill_rect(
            -rectangle.width / 2,
            -rectangle.height / 2,
            rectangle.width,
            rectangle.height,
            color,
        )

    logger.debug(
        "Drew %.1fx%.1f bar at (%.1f, %.1f), angle %.4f rad",
        rectangle.width, rectangle.height,
        rectangle.center_x, rectangle.center_y, rectangle.angle,
    )


def censor_eyes(
    surface: DrawingSurface,
    keypoints: Sequence[Keypoint],
    color: Color = "black",
    width_padding: float = DEFAULT_WIDTH_PADDING,
    height_padding: float = DEFAULT_HEIGHT_PADDING
) -> CensorRectangle:
    """Compute the bar for one face and draw it. Nothing is drawn if computing fails."""
    rectangle = compute_censor_rectangle(
        keypoints,
        RIGHT_EYE_INDICES,
        LEFT_EYE_INDICES,
        width_padding=width_padding,
        height_padding=height_padding,
    )
    render_rectangle(surface, rectangle, color)
    return rectangle
