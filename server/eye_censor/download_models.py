"""Fetch the MediaPipe FaceLandmarker model bundle."""

import os
import sys
import logging
import urllib.request

from eye_censor.config import Settings, configure_logging

logger = logging.getLogger(__name__)

FACE_LANDMARKER_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)


def download_file(url: str, filename: str) -> None:
    logger.info("Downloading %s...", filename)
    urllib.request.urlretrieve(url, filename)
    logger.info("Downloaded %s", filename)


def ensure_model(model_path: str, url: str = FACE_LANDMARKER_URL) -> bool:
    """
    Make sure the model bundle exists at `model_path`.

    Returns False (and logs how to fix it) if the download fails.
    """
    if os.path.exists(model_path):
        logger.info("Model already present at %s", model_path)
        return True

    directory = os.path.dirname(model_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    try:
        download_file(url, model_path)
    except OSError as e:
        logger.error("Error downloading %s: %s", model_path, e)
        logger.error("Download %s manually and place it at %s", url, model_path)
        if os.path.exists(model_path):
            os.remove(model_path)
        return False
    return True


def main() -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return 0 if ensure_model(settings.model_path) else 1


if __name__ == "__main__":
    sys.exit(main())
