"""
Drawing Surfaces

Canvas-like targets for the censor bar. A surface keeps a current affine
transform and a save stack, so callers draw in a translated / rotated frame
and put the frame back afterwards.

Two backends:
- PillowSurface: ImageDraw on a PIL image
- OpenCVSurface: cv2.fillPoly on a BGR numpy array
"""

import io
import math
from contextlib import contextmanager
from typing import Iterator, List, Sequence, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageColor, ImageDraw

Color = Union[str, Tuple[int, int, int]]
Point = Tuple[float, float]


def resolve_color(color: Color) -> Tuple[int, int, int]:
    """Turn a Pillow color name / hex string / RGB tuple into an RGB tuple."""
    if isinstance(color, str):
        rgb = ImageColor.getrgb(color)
        return rgb[0], rgb[1], rgb[2]
    return int(color[0]), int(color[1]), int(color[2])


class DrawingSurface:
    """
    Base surface with transform state.

    Subclasses implement `_fill_polygon` (image-space points) and `export`.
    """

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self._matrix = np.identity(3)
        self._stack: List[np.ndarray] = []

    @property
    def transform(self) -> np.ndarray:
        """Copy of the current 3x3 affine matrix (local -> image)."""
        return self._matrix.copy()

    @property
    def save_depth(self) -> int:
        return len(self._stack)

    def save(self) -> None:
        self._stack.append(self._matrix.copy())

    def restore(self) -> None:
        if not self._stack:
            raise RuntimeError("restore() called without a matching save()")
        self._matrix = self._stack.pop()

    @contextmanager
    def saved_transform(self) -> Iterator["DrawingSurface"]:
        """Scope a transform change; the previous frame comes back on exit, errors included."""
        self.save()
        try:
            yield self
        finally:
            self.restore()

    def translate(self, dx: float, dy: float) -> None:
        self._matrix = self._matrix @ np.array([
            [1.0, 0.0, dx],
            [0.0, 1.0, dy],
            [0.0, 0.0, 1.0],
        ])

    def rotate(self, angle: float) -> None:
        """Rotate the frame by `angle` radians (positive = clockwise on screen, y down)."""
        c, s = math.cos(angle), math.sin(angle)
        self._matrix = self._matrix @ np.array([
            [c, -s, 0.0],
            [s, c, 0.0],
            [0.0, 0.0, 1.0],
        ])

    def map_point(self, x: float, y: float) -> Point:
        """Map a point from the current frame to image coordinates."""
        px, py, _ = self._matrix @ np.array([x, y, 1.0])
        return float(px), float(py)

    def fill_rect(self, x: float, y: float, width: float, height: float, color: Color = "black") -> None:
        """Fill an axis-aligned rectangle of the current frame."""
        corners = [
            (x, y),
            (x + width, y),
            (x + width, y + height),
            (x, y + height),
        ]
        self._fill_polygon([self.map_point(cx, cy) for cx, cy in corners], resolve_color(color))

    def _fill_polygon(self, points: Sequence[Point], color: Tuple[int, int, int]) -> None:
        raise NotImplementedError

    def export(self, fmt: str = "PNG") -> bytes:
        raise NotImplementedError

    def to_image(self) -> Image.Image:
        raise NotImplementedError


class PillowSurface(DrawingSurface):
    """Draws directly onto the given PIL image (RGB)."""

    def __init__(self, image: Image.Image):
        super().__init__(image.width, image.height)
        self.image = image
        self._draw = ImageDraw.Draw(image)

    def _fill_polygon(self, points: Sequence[Point], color: Tuple[int, int, int]) -> None:
        self._draw.polygon(list(points), fill=color)

    def export(self, fmt: str = "PNG") -> bytes:
        buffer = io.BytesIO()
        self.image.save(buffer, format=fmt)
        return buffer.getvalue()

    def to_image(self) -> Image.Image:
        return self.image


class OpenCVSurface(DrawingSurface):
    """
    OpenCV-backed surface.

    Holds its own BGR copy of the image; polygon corners are rounded to
    whole pixels for cv2.fillPoly.
    """

    def __init__(self, image: Union[Image.Image, np.ndarray]):
        rgb = np.asarray(image.convert("RGB") if isinstance(image, Image.Image) else image)
        self.array = cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
        height, width = self.array.shape[:2]
        super().__init__(width, height)

    def _fill_polygon(self, points: Sequence[Point], color: Tuple[int, int, int]) -> None:
        pts = np.round(np.array(points)).astype(np.int32).reshape((-1, 1, 2))
        r, g, b = color
        cv2.fillPoly(self.array, [pts], (b, g, r))

    def export(self, fmt: str = "PNG") -> bytes:
        ok, buffer = cv2.imencode(f".{fmt.lower()}", self.array)
        if not ok:
            raise RuntimeError(f"OpenCV could not encode image as {fmt}")
        return buffer.tobytes()

    def to_image(self) -> Image.Image:
        return Image.fromarray(cv2.cvtColor(self.array, cv2.COLOR_BGR2RGB))


def get_surface(image: Image.Image, use_opencv: bool = False) -> DrawingSurface:
    """Factory function to get the configured surface backend."""
    if use_opencv:
        return OpenCVSurface(image)
    return PillowSurface(image)
