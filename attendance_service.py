import logging
import uuid
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

import helpers
from exceptions import AttendanceError, DuplicateAttendanceError, FaceNotDetectedError
from face_service import FaceVerification

logger = logging.getLogger(__name__)

FACE_NOT_DETECTED = "Unable to detect face in the image. Please ensure your face is clearly visible."


class AttendanceService:
    """
    Student attendance submission and face registration.

    Works against any storage backend (file or DynamoDB), image store and
    face service; the concrete ones are chosen in main.py from config.
    """

    def __init__(self, db, face_service, image_store):
        self.db = db
        self.faces = face_service
        self.images = image_store

    # ==================== REGISTRATION ====================

    def register_student(self, roll_number: str, class_id: str, image_bytes: bytes,
                         name: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        """
        Index the face under a new student id, then store the image and create the student.

        Raises AttendanceError(400) when no face can be detected; nothing is stored
        in that case.
        """
        student_id = str(uuid.uuid4())

        try:
            face_id = self.faces.index_face(image_bytes, student_id)
            face_key = self.images.save_face_image(student_id, image_bytes)
        except FaceNotDetectedError:
            raise AttendanceError(400, f"Failed to register student: {FACE_NOT_DETECTED}")
        except (ClientError, BotoCoreError) as e:
            logger.error("[REGISTER_STUDENT] Face indexing failed for %s: %s", roll_number, e)
            raise AttendanceError(400, f"Failed to register student: {e}")

        student = {
            "studentId": student_id,
            "rollNumber": roll_number,
            "classId": class_id,
            "name": name or f"Student {roll_number}",
            "email": email,
            "faceDataPath": face_key,
            "rekognitionFaceId": face_id,
            "attendanceCount": 0,
            "isActive": True,
            "registeredAt": helpers.utc_now().isoformat(),
            "lastAttendance": None,
        }
        self.db.create_student(student)
        logger.info("[REGISTER_STUDENT] Registered %s in class %s as %s", roll_number, class_id, student_id)
        return student

    # ==================== SUBMISSION ====================

    def submit(self, session_id: str, roll_number: str, face_image: str,
               student_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate a submission, verify or register the face, and record attendance.

        Returns the response payload. Raises AttendanceError with the HTTP
        status and message for every rejected submission.
        """
        if not session_id or not roll_number or not face_image:
            raise AttendanceError(400, "Session ID, roll number, and face image are required")

        try:
            image_bytes = helpers.decode_image(face_image)
        except ValueError as e:
            raise AttendanceError(400, str(e))

        if not helpers.validate_roll_number(roll_number):
            raise AttendanceError(400, "Invalid roll number format. Expected format: 2024179001 (10 digits)")

        session = self.db.get_session(session_id)
        if not session:
            raise AttendanceError(404, "Session not found")

        status_error = helpers.session_status_error(session)
        if status_error:
            raise AttendanceError(400, status_error)

        class_data = self.db.get_class(session["classId"])
        if not class_data:
            raise AttendanceError(404, "Class not found")

        if not helpers.is_roll_in_range(roll_number, class_data.get("rollNumberRange")):
            raise AttendanceError(400, "Roll number not valid for this class")

        if self.db.find_attendance(session_id, roll_number):
            raise DuplicateAttendanceError()

        student = self.db.find_student(roll_number, session["classId"])
        is_new_student = student is None

        if is_new_student:
            logger.info("[SUBMIT_ATTENDANCE] New student registration: %s", roll_number)
            student = self.register_student(roll_number, session["classId"], image_bytes, name=student_name)
            verification = FaceVerification(True, 100.0, "New student registered")
        else:
            logger.info("[SUBMIT_ATTENDANCE] Existing student verification: %s", roll_number)
            verification = self.faces.verify_student_face(image_bytes, student["studentId"])
            if not verification.verified:
                raise AttendanceError(400, verification.message)

        record = self.mark_attendance(session, student, verification, is_new_student)

        return {
            "attendanceId": record["attendanceId"],
            "rollNumber": student["rollNumber"],
            "studentName": student["name"],
            "timestamp": record["markedAt"],
            "status": record["status"],
            "isNewStudent": is_new_student,
            "faceConfidence": record["faceConfidence"],
            "verificationStatus": "Verified",
        }

    def mark_attendance(self, session: Dict[str, Any], student: Dict[str, Any],
                        verification: FaceVerification, is_new_student: bool = False) -> Dict[str, Any]:
        """Write the attendance record, then bump the student and session counters"""
        marked_at = helpers.utc_now().isoformat()
        record = {
            "attendanceId": helpers.attendance_key(session["sessionId"], student["rollNumber"]),
            "sessionId": session["sessionId"],
            "classId": session["classId"],
            "studentId": student["studentId"],
            "rollNumber": student["rollNumber"],
            "studentName": student["name"],
            "sessionName": session.get("sessionName"),
            "markedAt": marked_at,
            "status": "Present",
            "faceConfidence": f"{verification.confidence:.2f}",
            "verificationStatus": "Auto-registered" if is_new_student else "Verified",
            "isManual": False,
        }

        # Raises DuplicateAttendanceError when a concurrent submission won the race
        self.db.create_attendance(record)

        # Counters are separate updates; a failure here leaves the record in place
        self.db.increment_student_attendance(student["studentId"], marked_at)
        self.db.increment_session_attendance(session["sessionId"])

        logger.info(
            "[SUBMIT_ATTENDANCE] Marked %s present in session %s (%s%%)",
            student["rollNumber"], session["sessionId"], record["faceConfidence"],
        )
        return record
