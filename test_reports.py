import csv
import io

import config
from conftest import FACE_IMAGE


def submit(client, session_id, roll_number):
    response = client.post(
        "/attendance/submit",
        json={"sessionId": session_id, "rollNumber": roll_number, "faceImage": FACE_IMAGE},
    )
    assert response.status_code == 201, response.json()


def open_session(client, auth_headers, class_id, name):
    response = client.post(
        "/sessions", json={"classId": class_id, "sessionName": name, "duration": 20}, headers=auth_headers,
    )
    return response.json()["data"]["sessionId"]


def test_session_attendance_report(client, auth_headers, class_data):
    class_id = class_data["classId"]
    first = open_session(client, auth_headers, class_id, "Lecture 1")
    for roll in ("2024179001", "2024179002", "2024179003"):
        submit(client, first, roll)

    second = open_session(client, auth_headers, class_id, "Lecture 2")
    submit(client, second, "2024179002")

    response = client.get(f"/sessions/{second}/attendance", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["session"]["sessionName"] == "Lecture 2"
    assert data["summary"] == {
        "totalStudents": 3,
        "presentCount": 1,
        "absentCount": 2,
        "attendancePercentage": 33.33,
        "expectedStudents": 60,
    }
    assert [p["rollNumber"] for p in data["presentStudents"]] == ["2024179002"]
    assert [a["rollNumber"] for a in data["absentStudents"]] == ["2024179001", "2024179003"]


def test_session_report_requires_owner(client, session_data):
    from conftest import register_teacher

    other = register_teacher(client, email="other@gmail.com")
    response = client.get(
        f"/sessions/{session_data['sessionId']}/attendance",
        headers={"Authorization": f"Bearer {other['token']}"},
    )
    assert response.status_code == 403


def test_class_analytics(client, auth_headers, class_data):
    class_id = class_data["classId"]
    sessions = [open_session(client, auth_headers, class_id, f"Lecture {i}") for i in range(1, 5)]

    # 2024179001 attends all four, 2024179002 attends one
    for session_id in sessions:
        submit(client, session_id, "2024179001")
    submit(client, sessions[0], "2024179002")

    response = client.get(f"/classes/{class_id}/analytics", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalStudents"] == 2
    assert data["totalSessions"] == 4
    assert data["averageAttendance"] == 62.5
    assert data["lowAttendanceThreshold"] == config.LOW_ATTENDANCE_THRESHOLD
    assert [s["rollNumber"] for s in data["topAttenders"]] == ["2024179001", "2024179002"]
    assert [s["rollNumber"] for s in data["lowAttendance"]] == ["2024179002"]
    assert data["lowAttendance"][0]["attendancePercentage"] == 25.0


def test_analytics_for_empty_class(client, auth_headers, class_data):
    response = client.get(f"/classes/{class_data['classId']}/analytics", headers=auth_headers)
    data = response.json()["data"]
    assert data["totalStudents"] == 0
    assert data["averageAttendance"] == 0.0
    assert data["students"] == []


def test_class_report_json_and_csv(client, auth_headers, session_data):
    class_id = session_data["classId"]
    submit(client, session_data["sessionId"], "2024179004")

    response = client.get(f"/classes/{class_id}/report", headers=auth_headers)
    assert response.status_code == 200
    rows = response.json()["data"]["students"]
    assert rows[0]["rollNumber"] == "2024179004"
    assert rows[0]["attendancePercentage"] == 100.0

    response = client.get(f"/classes/{class_id}/report?format=csv", headers=auth_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]

    reader = list(csv.DictReader(io.StringIO(response.text)))
    assert reader[0]["rollNumber"] == "2024179004"
    assert reader[0]["name"] == "Student 2024179004"
    assert reader[0]["attendanceCount"] == "1"

    response = client.get(f"/classes/{class_id}/report?format=xml", headers=auth_headers)
    assert response.status_code == 400
