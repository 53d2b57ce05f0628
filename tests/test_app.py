import importlib.util
import io
import os
import zipfile

import pytest

import app as app_module
from conftest import build_course


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def client(upload_dir, scorm_api_file, monkeypatch):
    flask_app = app_module.app
    monkeypatch.setitem(flask_app.config, "UPLOAD_FOLDER", str(upload_dir))
    monkeypatch.setitem(flask_app.config, "SCORM_API_FILE_PATH", str(scorm_api_file))
    monkeypatch.setitem(flask_app.config, "AUTH_ENABLED", False)
    monkeypatch.setattr(app_module.limiter, "enabled", False)
    flask_app.config["TESTING"] = True
    with flask_app.test_client() as test_client:
        yield test_client


def zipped_course(tmp_path, name="course", **kwargs):
    source = tmp_path / "source"
    source.mkdir(exist_ok=True)
    folder = build_course(source, name, **kwargs)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for root, _, files in os.walk(folder):
            for filename in files:
                full_path = os.path.join(root, filename)
                zf.write(full_path, os.path.relpath(full_path, folder))
    buffer.seek(0)
    return buffer


def upload(client, tmp_path, filename="course.zip", **kwargs):
    data = {"file": (zipped_course(tmp_path, **kwargs), filename)}
    return client.post("/api/upload", data=data, content_type="multipart/form-data")


def test_upload_extracts_course(client, tmp_path, upload_dir):
    response = upload(client, tmp_path)
    assert response.status_code == 201
    assert response.get_json() == {"course": "course"}
    assert (upload_dir / "course" / "html5" / "data" / "js" / "data.js").exists()


def test_upload_rejects_non_zip(client):
    data = {"file": (io.BytesIO(b"not a zip"), "course.zip")}
    response = client.post("/api/upload", data=data, content_type="multipart/form-data")
    assert response.status_code == 400


def test_upload_requires_file(client):
    assert client.post("/api/upload", data={}).status_code == 400


def test_validate_reports_reasons(client, tmp_path):
    upload(client, tmp_path)
    body = client.post("/api/validate", json={"course": "course"}).get_json()
    assert body["completion_trigger"] is True
    assert body["compliant"] is False
    assert "Missing 'scormAPI.min.js'" in body["reasons"]


def test_unknown_course_is_404(client):
    assert client.post("/api/validate", json={"course": "ghost"}).status_code == 404
    assert client.post("/api/score", json={"course": "../etc"}).status_code == 404


def test_score(client, tmp_path):
    upload(client, tmp_path, points=(10, 20, 5))
    body = client.post("/api/score", json={"course": "course"}).get_json()
    assert body == {"course": "course", "score": 35}


def test_process_then_archive_then_download(client, tmp_path, upload_dir):
    upload(client, tmp_path)
    body = client.post("/api/process", json={"course": "course"}).get_json()
    assert body["status"] == "ready"
    assert body["score"] == 35

    body = client.post("/api/archive", json={"courses": ["course"]}).get_json()
    entry = body["courses"][0]
    assert entry["status"] == "success"
    assert entry["url"] == "/download/course.zip"
    assert (upload_dir / "ZippedFiles" / "course.zip").exists()

    response = client.get(entry["url"])
    assert response.status_code == 200
    assert zipfile.ZipFile(io.BytesIO(response.data)).testzip() is None


def test_process_non_compliant(client, tmp_path):
    upload(client, tmp_path, trigger=False)
    response = client.post("/api/process", json={"course": "course"})
    assert response.status_code == 422
    assert response.get_json()["error_kind"] == "non-compliant"


def test_bulk_lists_scores_and_failures(client, tmp_path):
    upload(client, tmp_path, filename="one.zip", name="one", points=(1, 2))
    upload(client, tmp_path, filename="two.zip", name="two", trigger=False)
    body = client.post("/api/bulk", json={}).get_json()
    by_name = {c["name"]: c for c in body["courses"]}
    assert by_name["one"]["status"] == "ready"
    assert by_name["one"]["score"] == 3
    assert by_name["two"]["status"] == "failure"


def test_archive_refuses_course_without_trigger(client, tmp_path, upload_dir):
    upload(client, tmp_path, trigger=False, with_api=True)
    body = client.post("/api/archive", json={"courses": ["course"]}).get_json()
    entry = body["courses"][0]
    assert entry["status"] == "failure"
    assert entry["error_kind"] == "non-compliant"
    assert "url" not in entry
    assert not (upload_dir / "ZippedFiles" / "course.zip").exists()


def test_archive_refuses_unprocessed_course(client, tmp_path, upload_dir):
    upload(client, tmp_path)
    body = client.post("/api/archive", json={"courses": ["course"]}).get_json()
    entry = body["courses"][0]
    assert entry["error_kind"] == "non-compliant"
    assert "Missing 'scormAPI.min.js'" in entry["error"]
    assert not (upload_dir / "ZippedFiles").exists()


def test_archive_unknown_course(client):
    body = client.post("/api/archive", json={"courses": ["ghost"]}).get_json()
    assert body["courses"][0]["error_kind"] == "missing-file"


def test_archive_requires_courses(client):
    assert client.post("/api/archive", json={}).status_code == 400


def test_purge_empties_workspace(client, tmp_path, upload_dir):
    upload(client, tmp_path)
    response = client.post("/api/purge")
    assert response.status_code == 200
    assert os.listdir(upload_dir) == []


def test_auth_header_required_when_enabled(client, monkeypatch):
    monkeypatch.setitem(app_module.app.config, "AUTH_ENABLED", True)
    monkeypatch.setitem(app_module.app.config, "AUTH0_DOMAIN", "example.auth0.com")
    response = client.post("/api/purge")
    assert response.status_code == 401
    assert response.get_json()["code"] == "authorization_header_missing"

    response = client.post("/api/purge", headers={"Authorization": "Token abc"})
    assert response.status_code == 401
    assert response.get_json()["code"] == "invalid_header"


def test_auth_is_on_by_default():
    assert app_module.app.config["AUTH_ENABLED"] is True


def test_import_without_auth0_settings_fails(monkeypatch):
    monkeypatch.delenv("AUTH0_DOMAIN", raising=False)
    monkeypatch.delenv("API_AUDIENCE", raising=False)
    location = importlib.util.spec_from_file_location("app_without_auth0", app_module.__file__)
    module = importlib.util.module_from_spec(location)
    with pytest.raises(RuntimeError, match="AUTH0_DOMAIN"):
        location.loader.exec_module(module)
