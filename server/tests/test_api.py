import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from eye_censor.config import Settings
from eye_censor.face_utils import FaceLandmarks
from eye_censor.image_processor import base64_to_image
from eye_censor.main import create_app

from tests.conftest import FakeDetector, png_bytes


def upload(data: bytes, filename: str = "photo.png"):
    return {"image": (filename, data, "image/png")}


@pytest.fixture
def make_client():
    clients = []

    def _make(faces, settings=None):
        app = create_app(detector=FakeDetector(faces), settings=settings or Settings())
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, symmetric_face):
    return make_client([symmetric_face])


def test_root_and_health(client):
    info = client.get("/").json()
    assert info["face_detector"] == "FakeDetector"

    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["face_detector_loaded"] is True
    assert response.json()["active_sessions"] == 0


def test_censor_returns_base64_png(client, white_png):
    response = client.post("/censor", files=upload(white_png))

    assert response.status_code == 200
    body = response.json()
    assert body["censored"] is True
    assert body["faces_detected"] == 1
    assert body["rectangle"]["width"] == 160
    assert body["rectangle"]["height"] == 30
    assert body["rectangle"]["center"] == {"x": 150, "y": 100}
    assert len(body["rectangle"]["corners"]) == 4
    assert body["processed_image"].startswith("data:image/png;base64,")
    image = Image.open(io.BytesIO(base64_to_image(body["processed_image"])))
    assert image.size == (320, 200)


def test_censor_raw_is_a_png_download(client, white_png):
    response = client.post("/censor/raw", files=upload(white_png))

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert 'filename="censored-image.png"' in response.headers["content-disposition"]
    image = Image.open(io.BytesIO(response.content)).convert("RGB")
    assert image.getpixel((150, 100)) == (0, 0, 0)


def test_no_face_is_not_an_error(make_client, white_png):
    response = make_client([]).post("/censor", files=upload(white_png))

    assert response.status_code == 200
    assert response.json()["censored"] is False
    assert response.json()["rectangle"] is None


def test_invalid_image(client):
    response = client.post("/censor", files=upload(b"garbage"))

    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "INVALID_IMAGE"


def test_upload_too_large(make_client, symmetric_face, white_png):
    client = make_client([symmetric_face], Settings(max_upload_bytes=16))

    response = client.post("/censor", files=upload(white_png))

    assert response.status_code == 413
    assert response.json()["detail"]["error_code"] == "IMAGE_TOO_LARGE"


def test_malformed_detector_output(make_client, symmetric_face, white_png):
    short_face = FaceLandmarks(keypoints=symmetric_face.keypoints[:50])

    response = make_client([short_face]).post("/censor/raw", files=upload(white_png))

    assert response.status_code == 422
    assert response.json()["detail"]["error_code"] == "MALFORMED_KEYPOINTS"


def test_rectangle_from_keypoints(client, symmetric_keypoints):
    payload = {"keypoints": [{"x": p.x, "y": p.y} for p in symmetric_keypoints]}

    response = client.post("/censor/rectangle", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["angle"] == 0
    assert (body["width"], body["height"]) == (160, 30)
    assert body["center"] == {"x": 150, "y": 100}


def test_rectangle_rejects_short_keypoints(client, symmetric_keypoints):
    payload = {"keypoints": [{"x": p.x, "y": p.y} for p in symmetric_keypoints[:10]]}

    response = client.post("/censor/rectangle", json=payload)

    assert response.status_code == 422
    assert response.json()["detail"]["error_code"] == "MALFORMED_KEYPOINTS"


def test_session_lifecycle(client, white_png):
    created = client.post("/sessions", files=upload(white_png, "me.png"))
    assert created.status_code == 201
    session_id = created.json()["session_id"]
    assert created.json()["filename"] == "me.png"
    assert created.json()["processed"] is False

    early = client.get(f"/sessions/{session_id}/download")
    assert early.status_code == 409
    assert early.json()["detail"]["error_code"] == "NOT_PROCESSED"

    processed = client.post(f"/sessions/{session_id}/process")
    assert processed.status_code == 200
    assert processed.json()["censored"] is True

    download = client.get(f"/sessions/{session_id}/download")
    assert download.status_code == 200
    assert Image.open(io.BytesIO(download.content)).size == (320, 200)

    replaced = client.put(f"/sessions/{session_id}/image", files=upload(png_bytes(64, 48), "new.png"))
    assert replaced.json()["processed"] is False
    assert client.get(f"/sessions/{session_id}").json()["filename"] == "new.png"

    assert client.get("/health").json()["active_sessions"] == 1
    assert client.delete(f"/sessions/{session_id}").status_code == 204
    missing = client.get(f"/sessions/{session_id}")
    assert missing.status_code == 404
    assert missing.json()["detail"]["error_code"] == "SESSION_NOT_FOUND"


def test_process_unknown_session(client):
    response = client.post("/sessions/ses_nope/process")

    assert response.status_code == 404


def test_decompression_bomb_is_rejected(client, white_png, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    response = client.post("/censor", files=upload(white_png))

    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "INVALID_IMAGE"


def test_oldest_session_evicted_at_limit(make_client, symmetric_face, white_png):
    client = make_client([symmetric_face], Settings(max_sessions=1))

    first = client.post("/sessions", files=upload(white_png)).json()["session_id"]
    second = client.post("/sessions", files=upload(white_png)).json()["session_id"]

    assert client.get(f"/sessions/{first}").status_code == 404
    assert client.get(f"/sessions/{second}").status_code == 200
    assert client.get("/health").json()["active_sessions"] == 1
