"""
Image Processing Module

Decode an upload, find the face, draw the eye bar, export PNG.

The original upload is never written anywhere; only the censored
rendering leaves this module.
"""

import io
import time
import base64
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pillow_heif
from PIL import Image, ImageOps, UnidentifiedImageError

from eye_censor.censor import (
    CensorError, CensorRectangle, DEFAULT_WIDTH_PADDING, DEFAULT_HEIGHT_PADDING, censor_eyes
)
from eye_censor.face_utils import FaceLandmarkDetectorInterface
from eye_censor.surface import Color, get_surface

# Register HEIF/HEIC opener for PIL (Apple photo support)
pillow_heif.register_heif_opener()

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "PNG"
DOWNLOAD_FILENAME = "censored-image.png"


class InvalidImageError(CensorError):
    """Uploaded bytes could not be decoded as an image."""
    pass


@dataclass(frozen=True)
class CensorResult:
    """Outcome of one detect-then-censor pass."""
    image_bytes: bytes
    image_format: str
    width: int
    height: int
    faces_detected: int
    rectangle: Optional[CensorRectangle]
    processing_time_ms: float

    @property
    def censored(self) -> bool:
        return self.rectangle is not None


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an RGB PIL image."""
    if not image_bytes:
        raise InvalidImageError("Empty image upload")
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise InvalidImageError(f"Could not decode image: {e}") from e

    # Match what a browser shows for phone photos
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


class ImageProcessor:
    """
    Core processing pipeline.

    Takes raw image bytes, runs the landmark detector and returns the
    censored PNG.
    """

    def __init__(
        self,
        detector: FaceLandmarkDetectorInterface,
        color: Color = "black",
        use_opencv: bool = False,
        width_padding: float = DEFAULT_WIDTH_PADDING,
        height_padding: float = DEFAULT_HEIGHT_PADDING
    ):
        self.detector = detector
        self.color = color
        self.use_opencv = use_opencv
        self.width_padding = width_padding
        self.height_padding = height_padding

    def process_image(self, image_bytes: bytes) -> CensorResult:
        """
        Censor the eyes of the first detected face.

        Args:
            image_bytes: Raw uploaded image data

        Returns:
            CensorResult with PNG bytes of the same pixel size as the upright
            (EXIF-oriented) input.
            With no face found the image is returned re-encoded, unchanged.

        Raises:
            InvalidImageError: If the bytes are not a decodable image
            KeypointIndexOutOfRangeError: If the detector returned too few keypoints
        """
        start_time = time.time()

        img = load_image(image_bytes)
        faces = self.detector.detect(np.asarray(img))

        surface = get_surface(img, use_opencv=self.use_opencv)
        rectangle = None
        if faces:
            rectangle = censor_eyes(
                surface,
                faces[0].keypoints,
                color=self.color,
                width_padding=self.width_padding,
                height_padding=self.height_padding,
            )
        else:
            logger.info("No face detected; no censoring applied")

        output = surface.export(OUTPUT_FORMAT)
        elapsed_ms = (time.time() - start_time) * 1000

        logger.info(
            "Processed %dx%d image: %d face(s), censored=%s, %.1f ms",
            img.width, img.height, len(faces), rectangle is not None, elapsed_ms,
        )

        return CensorResult(
            image_bytes=output,
            image_format=OUTPUT_FORMAT.lower(),
            width=img.width,
            height=img.height,
            faces_detected=len(faces),
            rectangle=rectangle,
            processing_time_ms=elapsed_ms,
        )


# ============================================================================
# Utility Functions
# ============================================================================

def image_to_base64(image_bytes: bytes, format: str = "png") -> str:
    """Convert image bytes to base64 data URL."""
    b64 = base64.b64encode(image_bytes).decode('utf-8')
    return f"data:image/{format};base64,{b64}"


def base64_to_image(data_url: str) -> bytes:
    """Convert base64 data URL to image bytes."""
    # Remove header if present
    if ',' in data_url:
        data_url = data_url.split(',')[1]
    return base64.b64decode(data_url)
