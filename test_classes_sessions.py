import json

from conftest import ROLL_RANGE, register_teacher


def other_teacher_headers(client):
    other = register_teacher(client, email="other@gmail.com", name="Other Teacher")
    return {"Authorization": f"Bearer {other['token']}"}


# ==================== CLASSES ====================

def test_create_class(client, teacher, class_data):
    assert class_data["teacherId"] == teacher["teacherId"]
    assert class_data["teacherName"] == teacher["name"]
    assert class_data["rollNumberRange"] == ROLL_RANGE
    assert class_data["totalSessions"] == 0
    assert class_data["isActive"] is True


def test_create_class_validation(client, auth_headers):
    response = client.post("/classes", json={"subject": "Maths"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Subject and roll number range are required"

    response = client.post(
        "/classes", json={"subject": "Maths", "rollNumberRange": "2024179060-2024179001"}, headers=auth_headers,
    )
    assert response.status_code == 400

    response = client.post("/classes", json={"subject": "Maths", "rollNumberRange": "²-5"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid roll number range. Expected format: 2024179001-2024179060"

    response = client.post("/classes", json={"subject": "Maths", "rollNumberRange": ROLL_RANGE})
    assert response.status_code == 401


def test_list_and_get_classes(client, auth_headers, class_data):
    response = client.get("/classes", headers=auth_headers)
    assert response.status_code == 200
    assert [c["classId"] for c in response.json()["data"]] == [class_data["classId"]]

    response = client.get(f"/classes/{class_data['classId']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["subject"] == "Data Structures"

    response = client.get("/classes/missing-class", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Class not found"


def test_other_teacher_cannot_access_class(client, class_data):
    headers = other_teacher_headers(client)

    assert client.get("/classes", headers=headers).json()["data"] == []

    response = client.get(f"/classes/{class_data['classId']}", headers=headers)
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied"

    response = client.delete(f"/classes/{class_data['classId']}", headers=headers)
    assert response.status_code == 403


def test_update_class_only_touches_allowed_fields(client, auth_headers, class_data, teacher):
    response = client.put(
        f"/classes/{class_data['classId']}",
        json={"subject": "Algorithms", "section": "B", "isActive": False},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["subject"] == "Algorithms"
    assert data["section"] == "B"
    assert data["isActive"] is False
    assert data["teacherId"] == teacher["teacherId"]
    assert data["totalSessions"] == 0

    response = client.put(
        f"/classes/{class_data['classId']}", json={"rollNumberRange": "oops"}, headers=auth_headers,
    )
    assert response.status_code == 400


def test_delete_class(client, auth_headers, class_data):
    response = client.delete(f"/classes/{class_data['classId']}", headers=auth_headers)
    assert response.status_code == 200
    response = client.get(f"/classes/{class_data['classId']}", headers=auth_headers)
    assert response.status_code == 404


# ==================== SESSIONS ====================

def test_create_session(client, auth_headers, class_data, session_data, db):
    assert session_data["classId"] == class_data["classId"]
    assert session_data["isActive"] is True
    assert session_data["attendanceCount"] == 0
    assert session_data["expectedStudents"] == 60
    assert session_data["duration"] == 30
    assert session_data["qrCode"].startswith("data:image/png;base64,")
    assert session_data["attendanceUrl"].endswith(f"/attendance?sessionId={session_data['sessionId']}")

    qr = json.loads(session_data["qrData"])
    assert qr["sessionId"] == session_data["sessionId"]
    assert qr["rollRange"] == ROLL_RANGE
    assert qr["validUntil"] == session_data["endTime"]

    assert db.get_class(class_data["classId"])["totalSessions"] == 1


def test_create_session_validation(client, auth_headers, class_data):
    response = client.post(
        "/sessions", json={"classId": class_data["classId"], "sessionName": "L1"}, headers=auth_headers,
    )
    assert response.status_code == 400

    response = client.post(
        "/sessions",
        json={"classId": class_data["classId"], "sessionName": "L1", "duration": -5},
        headers=auth_headers,
    )
    assert response.status_code == 400

    response = client.post(
        "/sessions",
        json={"classId": class_data["classId"], "sessionName": "L1", "duration": "soon"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["success"] is False

    response = client.post(
        "/sessions", json={"classId": "missing", "sessionName": "L1", "duration": 10}, headers=auth_headers,
    )
    assert response.status_code == 404


def test_list_sessions_newest_first(client, auth_headers, class_data, db):
    first = client.post(
        "/sessions", json={"classId": class_data["classId"], "sessionName": "L1", "duration": 10},
        headers=auth_headers,
    ).json()["data"]
    second = client.post(
        "/sessions", json={"classId": class_data["classId"], "sessionName": "L2", "duration": 10},
        headers=auth_headers,
    ).json()["data"]

    # Pin start times so ordering does not depend on clock resolution
    first["startTime"] = "2025-01-01T09:00:00+00:00"
    second["startTime"] = "2025-01-01T10:00:00+00:00"
    db.create_session(first)
    db.create_session(second)

    response = client.get(f"/classes/{class_data['classId']}/sessions", headers=auth_headers)
    assert response.status_code == 200
    assert [s["sessionName"] for s in response.json()["data"]] == ["L2", "L1"]
    assert db.get_class(class_data["classId"])["totalSessions"] == 2


def test_get_and_end_session(client, auth_headers, session_data):
    session_id = session_data["sessionId"]

    response = client.get(f"/sessions/{session_id}", headers=auth_headers)
    assert response.status_code == 200

    response = client.get(f"/sessions/{session_id}", headers=other_teacher_headers(client))
    assert response.status_code == 403

    response = client.put(f"/sessions/{session_id}/end", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["isActive"] is False
    assert data["endedAt"]

    response = client.get(f"/attendance/session/{session_id}")
    assert response.status_code == 400
    assert response.json()["message"] == "Session has been ended by teacher"


def test_public_session_info(client, session_data, class_data, db):
    response = client.get(f"/attendance/session/{session_data['sessionId']}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["subject"] == "Data Structures"
    assert data["section"] == "A"
    assert data["department"] == "N/A"
    assert data["validUntil"] == session_data["endTime"]

    session = db.get_session(session_data["sessionId"])
    session["endTime"] = "2020-01-01T00:00:00+00:00"
    db.create_session(session)
    response = client.get(f"/attendance/session/{session_data['sessionId']}")
    assert response.status_code == 400
    assert response.json()["message"] == "Session has expired"

    assert client.get("/attendance/session/unknown").status_code == 404
