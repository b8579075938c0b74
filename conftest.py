import base64
import os
import tempfile

# Point the app at throw-away local backends before config is imported
_TMP_ROOT = tempfile.mkdtemp(prefix="smart-attendance-tests-")
os.environ["APP_ENV"] = "development"
os.environ["DB_TYPE"] = "file"
os.environ["STORAGE_TYPE"] = "file"
os.environ["FACE_PROVIDER"] = "local"
os.environ["EMAIL_PROVIDER"] = "console"
os.environ["DATA_DIR"] = os.path.join(_TMP_ROOT, "data")
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_ROOT, "uploads")

import pytest
from fastapi.testclient import TestClient

import main
from attendance_service import AttendanceService
from db_manager import DatabaseManager
from face_service import LocalFaceService
from image_store import LocalImageStore

FACE_IMAGE = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff\xe0 fake jpeg bytes").decode()
ROLL_RANGE = "2024179001-2024179060"


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(base_dir=str(tmp_path / "data"))


@pytest.fixture
def image_store(tmp_path):
    return LocalImageStore(base_dir=str(tmp_path / "uploads"))


@pytest.fixture
def client(db, image_store, monkeypatch):
    """TestClient wired to a fresh file database and the local face service"""
    monkeypatch.setattr(main, "db", db)
    monkeypatch.setattr(main, "attendance_service", AttendanceService(db, LocalFaceService(), image_store))
    with TestClient(main.app) as test_client:
        yield test_client


def register_teacher(client, email="asha@gmail.com", name="Asha Rao", password="secret123"):
    response = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.json()
    return response.json()["data"]


@pytest.fixture
def teacher(client):
    return register_teacher(client)


@pytest.fixture
def auth_headers(teacher):
    return {"Authorization": f"Bearer {teacher['token']}"}


@pytest.fixture
def class_data(client, auth_headers):
    response = client.post(
        "/classes",
        json={"subject": "Data Structures", "rollNumberRange": ROLL_RANGE, "section": "A"},
        headers=auth_headers,
    )
    assert response.status_code == 201, response.json()
    return response.json()["data"]


@pytest.fixture
def session_data(client, auth_headers, class_data):
    response = client.post(
        "/sessions",
        json={"classId": class_data["classId"], "sessionName": "Lecture 1", "duration": 30},
        headers=auth_headers,
    )
    assert response.status_code == 201, response.json()
    return response.json()["data"]
