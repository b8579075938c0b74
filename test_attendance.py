import os

import pytest

import helpers
import main
from attendance_service import AttendanceService
from conftest import FACE_IMAGE
from exceptions import AttendanceError, FaceNotDetectedError
from face_service import FaceVerification, LocalFaceService, FACE_MISMATCH


def submit(client, session_id, roll_number="2024179001", face_image=FACE_IMAGE, **extra):
    payload = {"sessionId": session_id, "rollNumber": roll_number, "faceImage": face_image, **extra}
    return client.post("/attendance/submit", json=payload)


def new_session(client, auth_headers, class_id, name="Lecture 2"):
    response = client.post(
        "/sessions", json={"classId": class_id, "sessionName": name, "duration": 15}, headers=auth_headers,
    )
    return response.json()["data"]


class RejectingFaceService(LocalFaceService):
    def verify_student_face(self, image_bytes, student_id):
        return FaceVerification(False, 42.0, FACE_MISMATCH)


class NoFaceService(LocalFaceService):
    def index_face(self, image_bytes, external_id):
        raise FaceNotDetectedError("No face detected in image")


def test_first_submission_auto_registers_student(client, session_data, db, image_store):
    response = submit(client, session_data["sessionId"], studentName="Meera")
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["isNewStudent"] is True
    assert data["studentName"] == "Meera"
    assert data["rollNumber"] == "2024179001"
    assert data["status"] == "Present"
    assert data["faceConfidence"] == "100.00"
    assert data["verificationStatus"] == "Verified"
    assert data["attendanceId"] == helpers.attendance_key(session_data["sessionId"], "2024179001")

    student = db.find_student("2024179001", session_data["classId"])
    assert student["attendanceCount"] == 1
    assert student["lastAttendance"] == data["timestamp"]
    assert student["rekognitionFaceId"] == f"local_face_{student['studentId']}"
    assert student["faceDataPath"] == f"faces/{student['studentId']}.jpg"
    assert os.path.exists(os.path.join(image_store.base_dir, student["faceDataPath"]))

    record = db.get_session_attendance(session_data["sessionId"])[0]
    assert record["verificationStatus"] == "Auto-registered"
    assert record["sessionName"] == "Lecture 1"
    assert record["isManual"] is False

    assert db.get_session(session_data["sessionId"])["attendanceCount"] == 1


def test_roll_number_with_trailing_newline_is_rejected(client, session_data, db):
    assert submit(client, session_data["sessionId"], roll_number="2024179030").status_code == 201

    response = submit(client, session_data["sessionId"], roll_number="2024179030\n")
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid roll number format. Expected format: 2024179001 (10 digits)"

    assert [s["rollNumber"] for s in db.get_students_for_class(session_data["classId"])] == ["2024179030"]
    assert len(db.get_session_attendance(session_data["sessionId"])) == 1


def test_default_student_name(client, session_data):
    data = submit(client, session_data["sessionId"], roll_number="2024179002").json()["data"]
    assert data["studentName"] == "Student 2024179002"


def test_duplicate_submission_is_rejected(client, session_data, db):
    assert submit(client, session_data["sessionId"]).status_code == 201

    response = submit(client, session_data["sessionId"])
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "Attendance already marked for this session"}

    assert len(db.get_session_attendance(session_data["sessionId"])) == 1
    assert db.get_session(session_data["sessionId"])["attendanceCount"] == 1


def test_existing_student_is_verified(client, auth_headers, session_data, db):
    submit(client, session_data["sessionId"], studentName="Meera")
    second = new_session(client, auth_headers, session_data["classId"])

    response = submit(client, second["sessionId"])
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["isNewStudent"] is False
    assert data["studentName"] == "Meera"
    assert data["faceConfidence"] == "95.50"

    assert len(db.get_students_for_class(session_data["classId"])) == 1
    assert db.find_student("2024179001", session_data["classId"])["attendanceCount"] == 2


def test_face_mismatch_is_rejected(client, auth_headers, session_data, db, image_store, monkeypatch):
    submit(client, session_data["sessionId"])
    second = new_session(client, auth_headers, session_data["classId"])

    monkeypatch.setattr(main, "attendance_service", AttendanceService(db, RejectingFaceService(), image_store))
    response = submit(client, second["sessionId"])
    assert response.status_code == 400
    assert response.json()["message"] == "Face does not match registered photo"
    assert db.get_session_attendance(second["sessionId"]) == []


def test_undetectable_face_creates_no_student(client, session_data, db, image_store, monkeypatch):
    monkeypatch.setattr(main, "attendance_service", AttendanceService(db, NoFaceService(), image_store))
    response = submit(client, session_data["sessionId"])
    assert response.status_code == 400
    assert "Unable to detect face" in response.json()["message"]
    assert db.get_students_for_class(session_data["classId"]) == []
    assert db.get_session_attendance(session_data["sessionId"]) == []
    faces_dir = os.path.join(image_store.base_dir, "faces")
    assert os.listdir(faces_dir) == []


@pytest.mark.parametrize("payload, message", [
    ({"rollNumber": "2024179001", "faceImage": FACE_IMAGE}, "Session ID, roll number, and face image are required"),
    ({"sessionId": "x", "rollNumber": "2024179001"}, "Session ID, roll number, and face image are required"),
    ({"sessionId": "x", "rollNumber": "12345", "faceImage": FACE_IMAGE},
     "Invalid roll number format. Expected format: 2024179001 (10 digits)"),
    ({"sessionId": "x", "rollNumber": "2024179001", "faceImage": "%%%"}, "Face image is not valid base64"),
])
def test_submission_input_validation(client, payload, message):
    response = client.post("/attendance/submit", json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == message


def test_unknown_session(client):
    response = submit(client, "no-such-session")
    assert response.status_code == 404
    assert response.json()["message"] == "Session not found"


def test_roll_number_outside_class_range(client, session_data, db):
    response = submit(client, session_data["sessionId"], roll_number="2024179061")
    assert response.status_code == 400
    assert response.json()["message"] == "Roll number not valid for this class"
    assert db.get_students_for_class(session_data["classId"]) == []


def test_ended_session_rejects_submissions(client, auth_headers, session_data):
    client.put(f"/sessions/{session_data['sessionId']}/end", headers=auth_headers)
    response = submit(client, session_data["sessionId"])
    assert response.status_code == 400
    assert response.json()["message"] == "Session has been ended"


def test_expired_session_rejects_submissions(client, session_data, db):
    session = db.get_session(session_data["sessionId"])
    session["endTime"] = "2020-01-01T00:00:00+00:00"
    db.create_session(session)

    response = submit(client, session_data["sessionId"])
    assert response.status_code == 400
    assert response.json()["message"] == "Session has expired"


def test_deleted_class_rejects_submissions(client, auth_headers, session_data):
    client.delete(f"/classes/{session_data['classId']}", headers=auth_headers)
    response = submit(client, session_data["sessionId"])
    assert response.status_code == 404
    assert response.json()["message"] == "Class not found"


def test_concurrent_duplicate_surfaces_as_conflict(db, session_data, image_store):
    """A record written between the duplicate check and the insert still yields 409"""
    service = AttendanceService(db, LocalFaceService(), image_store)
    service.submit(session_data["sessionId"], "2024179001", FACE_IMAGE)

    student = db.find_student("2024179001", session_data["classId"])
    session = db.get_session(session_data["sessionId"])
    with pytest.raises(AttendanceError) as exc_info:
        service.mark_attendance(session, student, FaceVerification(True, 99.0))
    assert exc_info.value.status_code == 409
    assert db.get_session(session_data["sessionId"])["attendanceCount"] == 1


def test_unexpected_failure_returns_500(client, session_data, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(main.attendance_service, "submit", explode)
    response = submit(client, session_data["sessionId"])
    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Internal server error"
    assert body["error"] == "disk on fire"


# ==================== TEACHER REGISTRATION ====================

def test_teacher_registers_student(client, auth_headers, class_data, db):
    payload = {
        "classId": class_data["classId"],
        "rollNumber": "2024179010",
        "name": "Kiran",
        "email": "kiran@gmail.com",
        "faceImage": FACE_IMAGE,
    }
    response = client.post("/students", json=payload, headers=auth_headers)
    assert response.status_code == 201
    student = response.json()["data"]
    assert student["name"] == "Kiran"
    assert student["attendanceCount"] == 0
    assert "faceDataPath" not in student
    assert "rekognitionFaceId" not in student

    response = client.post("/students", json=payload, headers=auth_headers)
    assert response.status_code == 409

    payload["rollNumber"] = "2024179999"
    response = client.post("/students", json=payload, headers=auth_headers)
    assert response.status_code == 400

    payload.update(rollNumber="2024179011", email="kiran@gmail..com")
    response = client.post("/students", json=payload, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"].startswith("Invalid request: email")
    assert db.find_student("2024179011", class_data["classId"]) is None

    response = client.get(f"/students/{student['studentId']}")
    assert response.status_code == 200
    assert response.json()["data"]["rollNumber"] == "2024179010"
    assert client.get("/students/unknown").status_code == 404


def test_class_students_sorted_by_roll(client, auth_headers, session_data):
    for roll in ("2024179005", "2024179002", "2024179009"):
        submit(client, session_data["sessionId"], roll_number=roll)

    response = client.get(f"/classes/{session_data['classId']}/students", headers=auth_headers)
    assert response.status_code == 200
    students = response.json()["data"]
    assert [s["rollNumber"] for s in students] == ["2024179002", "2024179005", "2024179009"]
    assert all("faceDataPath" not in s for s in students)


def test_student_attendance_history(client, auth_headers, session_data, db):
    submit(client, session_data["sessionId"])
    second = new_session(client, auth_headers, session_data["classId"])
    submit(client, second["sessionId"])

    student = db.find_student("2024179001", session_data["classId"])
    response = client.get(f"/students/{student['studentId']}/attendance")
    assert response.status_code == 200
    history = response.json()["data"]
    assert {h["sessionName"] for h in history} == {"Lecture 1", "Lecture 2"}
