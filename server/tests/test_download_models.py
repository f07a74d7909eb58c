from eye_censor import download_models


def test_existing_model_is_kept(tmp_path, monkeypatch):
    model = tmp_path / "face_landmarker.task"
    model.write_bytes(b"model")

    def fail(url, filename):
        raise AssertionError("should not download")

    monkeypatch.setattr(download_models.urllib.request, "urlretrieve", fail)

    assert download_models.ensure_model(str(model)) is True


def test_downloads_into_new_directory(tmp_path, monkeypatch):
    model = tmp_path / "models" / "face_landmarker.task"
    seen = []

    def fake_retrieve(url, filename):
        seen.append(url)
        with open(filename, "wb") as f:
            f.write(b"model")

    monkeypatch.setattr(download_models.urllib.request, "urlretrieve", fake_retrieve)

    assert download_models.ensure_model(str(model)) is True
    assert model.read_bytes() == b"model"
    assert seen == [download_models.FACE_LANDMARKER_URL]


def test_failed_download(tmp_path, monkeypatch):
    model = tmp_path / "face_landmarker.task"

    def broken(url, filename):
        with open(filename, "wb") as f:
            f.write(b"partial")
        raise OSError("network down")

    monkeypatch.setattr(download_models.urllib.request, "urlretrieve", broken)

    assert download_models.ensure_model(str(model)) is False
    assert not model.exists()
