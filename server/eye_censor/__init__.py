"""
Eye Censor - Privacy Bar Engine
===============================

Detects a face with MediaPipe FaceLandmarker and draws a single opaque,
rotated bar over both eyes.

Components:
- censor.py: eye-bar geometry and scoped rendering
- surface.py: canvas-like drawing surfaces (Pillow, OpenCV)
- face_utils.py: keypoint models, eye indices, landmark detectors
- image_processor.py: decode -> detect -> censor -> PNG pipeline
- session.py: per-upload processing sessions
- models.py: Pydantic request/response models
- main.py: FastAPI application
"""

__version__ = "1.0.0"
