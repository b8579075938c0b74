from fastapi import FastAPI, HTTPException, Depends, status, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, EmailStr
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Optional, List, Dict, Any, Callable
from datetime import timedelta
import csv
import io
import logging
import time
import uuid

import config
import helpers
from helpers import api_response
from auth_utils import get_password_hash, verify_password, create_teacher_token, verify_token
from attendance_service import AttendanceService
from email_service import send_verification_email
from exceptions import AttendanceError
from face_service import create_face_service
from image_store import create_image_store

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("smart_attendance")

app = FastAPI(title="Smart Attendance API")

if config.DB_TYPE == "dynamodb":
    from dynamodb_manager import DynamoDBManager
    db = DynamoDBManager()
    logger.info("Using DynamoDB for storage")
else:
    from db_manager import DatabaseManager
    db = DatabaseManager(base_dir=config.DATA_DIR)
    logger.info("Using file-based storage in %s", config.DATA_DIR)

attendance_service = AttendanceService(db, create_face_service(), create_image_store())

# CORS Configuration
cors_kwargs: Dict[str, Any] = {
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
}

if config.CORS_ORIGINS:
    # Strict allow-list
    cors_kwargs["allow_origins"] = config.CORS_ORIGINS
else:
    # Dev-friendly defaults (localhost + LAN IPs for phones scanning the QR code)
    cors_kwargs["allow_origins"] = [config.FRONTEND_URL]
    cors_kwargs["allow_origin_regex"] = r"https?://(localhost|127\.0\.0\.1|\d+\.\d+\.\d+\.\d+)(:\d+)?$"

app.add_middleware(CORSMiddleware, **cors_kwargs)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            log = logger.info if response.status_code < 400 else logger.warning
            log("%s %s - %s (%.2fs)", request.method, request.url.path, response.status_code, duration)

            response.headers["X-Process-Time"] = f"{duration:.4f}"
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error("%s %s - ERROR (%.2fs): %s", request.method, request.url.path, duration, e)
            raise


app.add_middleware(RequestLoggingMiddleware)


# ==================== ERROR HANDLERS ====================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return api_response(exc.status_code, False, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", []) if p != "body")
        message = f"Invalid request: {field}: {first.get('msg')}" if field else f"Invalid request: {first.get('msg')}"
    else:
        message = "Invalid request"
    return api_response(status.HTTP_400_BAD_REQUEST, False, message)


@app.exception_handler(AttendanceError)
async def attendance_exception_handler(request: Request, exc: AttendanceError):
    return api_response(exc.status_code, False, exc.message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    return internal_error("UNHANDLED", exc)


def internal_error(tag: str, e: Exception):
    """500 envelope; the exception text is only exposed in development"""
    logger.exception("[%s] %s", tag, e)
    error = str(e) if config.APP_ENV == "development" else None
    return api_response(status.HTTP_500_INTERNAL_SERVER_ERROR, False, "Internal server error", error=error)


# ==================== PYDANTIC MODELS ====================

class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class VerifyEmailRequest(BaseModel):
    token: Optional[str] = None


class ResendVerificationRequest(BaseModel):
    email: Optional[str] = None


class ClassCreate(BaseModel):
    subject: Optional[str] = None
    rollNumberRange: Optional[str] = None
    description: Optional[str] = None
    department: Optional[str] = None
    section: Optional[str] = None


class ClassUpdate(BaseModel):
    subject: Optional[str] = None
    description: Optional[str] = None
    rollNumberRange: Optional[str] = None
    department: Optional[str] = None
    section: Optional[str] = None
    isActive: Optional[bool] = None


class SessionCreate(BaseModel):
    classId: Optional[str] = None
    sessionName: Optional[str] = None
    duration: Optional[float] = None
    description: Optional[str] = None


class StudentCreate(BaseModel):
    classId: Optional[str] = None
    rollNumber: Optional[str] = None
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    faceImage: Optional[str] = None


class AttendanceSubmit(BaseModel):
    sessionId: Optional[str] = None
    rollNumber: Optional[str] = None
    faceImage: Optional[str] = None
    studentName: Optional[str] = None


# ==================== HELPER FUNCTIONS ====================

TEACHER_PRIVATE_FIELDS = ("password", "verificationToken", "verificationTokenExpiry")
STUDENT_PRIVATE_FIELDS = ("faceDataPath", "rekognitionFaceId")
CLASS_UPDATABLE_FIELDS = ("subject", "description", "rollNumberRange", "department", "section", "isActive")
INVALID_RANGE_MESSAGE = "Invalid roll number range. Expected format: 2024179001-2024179060"


def public_teacher(teacher: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in teacher.items() if k not in TEACHER_PRIVATE_FIELDS}


def public_student(student: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in student.items() if k not in STUDENT_PRIVATE_FIELDS}


def get_owned_class(class_id: str, teacher_id: str) -> Dict[str, Any]:
    """Load a class or raise 404 / 403 when it belongs to another teacher"""
    class_data = db.get_class(class_id)
    if not class_data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")
    if class_data.get("teacherId") != teacher_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return class_data


def get_owned_session(session_id: str, teacher_id: str) -> Dict[str, Any]:
    session = db.get_session(session_id)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    if session.get("teacherId") != teacher_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return session


def build_student_report(class_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Per-student attendance rows for a class, sorted by roll number"""
    total_sessions = int(class_data.get("totalSessions") or 0)
    students = sorted(db.get_students_for_class(class_data["classId"]), key=lambda s: s["rollNumber"])

    rows = []
    for student in students:
        attended = int(student.get("attendanceCount") or 0)
        rows.append({
            "studentId": student["studentId"],
            "rollNumber": student["rollNumber"],
            "name": student.get("name"),
            "email": student.get("email"),
            "attendanceCount": attended,
            "totalSessions": total_sessions,
            "attendancePercentage": helpers.attendance_percentage(attended, total_sessions),
            "lastAttendance": student.get("lastAttendance"),
        })
    return rows


# ==================== API ENDPOINTS ====================

@app.get("/")
def read_root():
    return {
        "message": "Smart Attendance API",
        "version": "1.0.0",
        "status": "online",
        "environment": config.APP_ENV,
        "database": config.DB_TYPE,
        "faceProvider": config.FACE_PROVIDER,
    }


@app.get("/stats")
def get_stats():
    """Get database statistics"""
    return db.get_database_stats()


# ==================== AUTH ENDPOINTS ====================

@app.post("/auth/register")
async def register(request: RegisterRequest):
    """
    Register a teacher.

    Production: stored unverified and a verification link is emailed.
    Development: auto-verified and logged in straight away.
    """
    try:
        if not request.name or not request.email or not request.password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Name, email, and password are required"
            )

        email = request.email.strip().lower()
        email_ok, email_message = helpers.validate_email(email, strict=config.IS_PRODUCTION)
        if not email_ok:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=email_message)

        if len(request.password) < config.PASSWORD_MIN_LENGTH:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Password must be at least {config.PASSWORD_MIN_LENGTH} characters long"
            )

        if db.get_teacher_by_email(email):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Teacher with this email already exists"
            )

        now = helpers.utc_now()
        production = config.IS_PRODUCTION
        verification_token = helpers.generate_verification_token() if production else None

        teacher = {
            "teacherId": str(uuid.uuid4()),
            "name": request.name.strip(),
            "email": email,
            "password": get_password_hash(request.password),
            "phone": request.phone,
            "department": request.department,
            "isActive": True,
            "isVerified": not production,
            "canLogin": not production,
            "verificationToken": verification_token,
            "verificationTokenExpiry": (
                (now + timedelta(hours=config.VERIFICATION_TOKEN_HOURS)).isoformat() if production else None
            ),
            "verifiedAt": None if production else now.isoformat(),
            "lastLoginAt": None,
            "createdAt": now.isoformat(),
            "updatedAt": now.isoformat(),
        }
        db.create_teacher(teacher)
        logger.info("[REGISTER] Teacher %s registered (%s)", email, config.APP_ENV)

        if production:
            email_sent = send_verification_email(email, teacher["name"], verification_token)
            if not email_sent:
                logger.error("[REGISTER] Failed to send verification email to %s", email)
            return api_response(
                status.HTTP_201_CREATED, True,
                "Registration successful! Please check your email to verify your account before logging in.",
                {
                    "teacherId": teacher["teacherId"],
                    "name": teacher["name"],
                    "email": email,
                    "requiresVerification": True,
                    "verificationSent": email_sent,
                },
            )

        return api_response(
            status.HTTP_201_CREATED, True,
            "Registration successful! (Development mode: auto-verified)",
            {
                "teacherId": teacher["teacherId"],
                "name": teacher["name"],
                "email": email,
                "token": create_teacher_token(teacher),
                "developmentMode": True,
            },
        )
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("REGISTER", e)


@app.post("/auth/login")
async def login(request: LoginRequest):
    try:
        if not request.email or not request.password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email and password are required"
            )

        teacher = db.get_teacher_by_email(request.email)
        if not teacher or not verify_password(request.password, teacher.get("password")):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if config.IS_PRODUCTION and not teacher.get("canLogin"):
            return api_response(
                status.HTTP_403_FORBIDDEN, False,
                "Please verify your email address before logging in",
                {"requiresVerification": True},
            )

        db.update_teacher(teacher["teacherId"], {"lastLoginAt": helpers.utc_now().isoformat()})
        logger.info("[LOGIN] Teacher %s logged in", teacher["email"])

        return api_response(status.HTTP_200_OK, True, "Login successful", {
            "teacherId": teacher["teacherId"],
            "name": teacher["name"],
            "email": teacher["email"],
            "token": create_teacher_token(teacher),
        })
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("LOGIN", e)


@app.post("/auth/verify-email")
async def verify_email(request: VerifyEmailRequest):
    """Activate an account from the emailed verification link"""
    try:
        if not request.token:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Verification token is required")

        teacher = db.get_teacher_by_verification_token(request.token)
        if not teacher:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid or expired verification token"
            )

        expiry = teacher.get("verificationTokenExpiry")
        if expiry and helpers.utc_now() > helpers.parse_timestamp(expiry):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Verification token has expired. Please request a new one."
            )

        teacher = db.update_teacher(teacher["teacherId"], {
            "isVerified": True,
            "canLogin": True,
            "verificationToken": None,
            "verificationTokenExpiry": None,
            "verifiedAt": helpers.utc_now().isoformat(),
        })
        logger.info("[VERIFY_EMAIL] Teacher %s verified", teacher["email"])

        return api_response(status.HTTP_200_OK, True, "Email verified successfully! You can now log in.", {
            "teacherId": teacher["teacherId"],
            "name": teacher["name"],
            "email": teacher["email"],
            "token": create_teacher_token(teacher),
            "verified": True,
        })
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("VERIFY_EMAIL", e)


@app.post("/auth/resend-verification")
async def resend_verification(request: ResendVerificationRequest):
    try:
        if not request.email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

        teacher = db.get_teacher_by_email(request.email)
        if not teacher:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No account found with this email address"
            )

        if teacher.get("isVerified"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Account is already verified")

        token = helpers.generate_verification_token()
        db.update_teacher(teacher["teacherId"], {
            "verificationToken": token,
            "verificationTokenExpiry": (
                helpers.utc_now() + timedelta(hours=config.VERIFICATION_TOKEN_HOURS)
            ).isoformat(),
        })

        if not send_verification_email(teacher["email"], teacher["name"], token):
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to send verification email. Please try again."
            )

        return api_response(status.HTTP_200_OK, True, "Verification email sent. Please check your inbox.")
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("RESEND_VERIFICATION", e)


@app.get("/auth/me")
async def get_current_teacher(current: Dict[str, Any] = Depends(verify_token)):
    teacher = db.get_teacher(current["teacherId"])
    if not teacher:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher not found")
    return api_response(status.HTTP_200_OK, True, "Teacher retrieved successfully", public_teacher(teacher))


# ==================== CLASS ENDPOINTS ====================

@app.post("/classes")
async def create_class(request: ClassCreate, current: Dict[str, Any] = Depends(verify_token)):
    try:
        if not request.subject or not request.rollNumberRange:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Subject and roll number range are required"
            )

        if helpers.parse_roll_range(request.rollNumberRange) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RANGE_MESSAGE)

        now = helpers.utc_now().isoformat()
        class_data = {
            "classId": str(uuid.uuid4()),
            "teacherId": current["teacherId"],
            "teacherName": current.get("name"),
            "subject": request.subject.strip(),
            "description": request.description,
            "rollNumberRange": request.rollNumberRange.strip(),
            "department": request.department,
            "section": request.section,
            "isActive": True,
            "totalSessions": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        db.create_class(class_data)
        logger.info("[CREATE_CLASS] %s created class %s", current["teacherId"], class_data["classId"])

        return api_response(status.HTTP_201_CREATED, True, "Class created successfully", class_data)
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("CREATE_CLASS", e)


@app.get("/classes")
async def get_classes(current: Dict[str, Any] = Depends(verify_token)):
    classes = db.get_classes_for_teacher(current["teacherId"])
    classes.sort(key=lambda c: c.get("createdAt") or "", reverse=True)
    return api_response(status.HTTP_200_OK, True, "Classes retrieved successfully", classes)


@app.get("/classes/{class_id}")
async def get_class(class_id: str, current: Dict[str, Any] = Depends(verify_token)):
    class_data = get_owned_class(class_id, current["teacherId"])
    return api_response(status.HTTP_200_OK, True, "Class retrieved successfully", class_data)


@app.put("/classes/{class_id}")
async def update_class(class_id: str, request: ClassUpdate, current: Dict[str, Any] = Depends(verify_token)):
    try:
        get_owned_class(class_id, current["teacherId"])

        updates = {
            field: value
            for field, value in request.model_dump(exclude_unset=True).items()
            if field in CLASS_UPDATABLE_FIELDS
        }

        if "rollNumberRange" in updates and helpers.parse_roll_range(updates["rollNumberRange"]) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RANGE_MESSAGE)
        if "subject" in updates and not updates["subject"]:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subject cannot be empty")

        if not updates:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid fields to update")

        class_data = db.update_class(class_id, updates)
        return api_response(status.HTTP_200_OK, True, "Class updated successfully", class_data)
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("UPDATE_CLASS", e)


@app.delete("/classes/{class_id}")
async def delete_class(class_id: str, current: Dict[str, Any] = Depends(verify_token)):
    try:
        get_owned_class(class_id, current["teacherId"])
        db.delete_class(class_id)
        logger.info("[DELETE_CLASS] %s deleted class %s", current["teacherId"], class_id)
        return api_response(status.HTTP_200_OK, True, "Class deleted successfully")
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("DELETE_CLASS", e)


# ==================== SESSION ENDPOINTS ====================

@app.post("/sessions")
async def create_session(request: SessionCreate, current: Dict[str, Any] = Depends(verify_token)):
    """Open a timed attendance session with a QR code pointing at the student page"""
    try:
        if not request.classId or not request.sessionName or not request.duration:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Class ID, session name, and duration are required"
            )
        if request.duration <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Duration must be a positive number of minutes"
            )

        class_data = get_owned_class(request.classId, current["teacherId"])

        session_id = str(uuid.uuid4())
        start_time = helpers.utc_now()
        end_time = start_time + timedelta(minutes=request.duration)
        attendance_url = helpers.build_attendance_url(config.FRONTEND_URL, session_id)
        duration = int(request.duration) if float(request.duration).is_integer() else request.duration

        session = {
            "sessionId": session_id,
            "classId": class_data["classId"],
            "teacherId": current["teacherId"],
            "sessionName": request.sessionName.strip(),
            "description": request.description,
            "startTime": start_time.isoformat(),
            "endTime": end_time.isoformat(),
            "duration": duration,
            "qrCode": helpers.render_qr_data_url(attendance_url),
            "qrData": helpers.build_qr_payload(session_id, class_data, current["teacherId"], end_time),
            "attendanceUrl": attendance_url,
            "isActive": True,
            "endedAt": None,
            "attendanceCount": 0,
            "expectedStudents": helpers.calculate_expected_students(class_data.get("rollNumberRange")),
            "createdAt": start_time.isoformat(),
        }
        db.create_session(session)
        db.increment_class_sessions(class_data["classId"])
        logger.info("[CREATE_SESSION] Session %s for class %s until %s", session_id, class_data["classId"], session["endTime"])

        return api_response(status.HTTP_201_CREATED, True, "Session created successfully", session)
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("CREATE_SESSION", e)


@app.get("/classes/{class_id}/sessions")
async def get_class_sessions(class_id: str, current: Dict[str, Any] = Depends(verify_token)):
    get_owned_class(class_id, current["teacherId"])
    sessions = db.get_sessions_for_class(class_id)
    sessions.sort(key=lambda s: s.get("startTime") or "", reverse=True)
    return api_response(status.HTTP_200_OK, True, "Sessions retrieved successfully", sessions)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str, current: Dict[str, Any] = Depends(verify_token)):
    session = get_owned_session(session_id, current["teacherId"])
    return api_response(status.HTTP_200_OK, True, "Session retrieved successfully", session)


@app.put("/sessions/{session_id}/end")
async def end_session(session_id: str, current: Dict[str, Any] = Depends(verify_token)):
    try:
        get_owned_session(session_id, current["teacherId"])
        session = db.end_session(session_id)
        logger.info("[END_SESSION] Session %s ended with %s present", session_id, session.get("attendanceCount"))
        return api_response(status.HTTP_200_OK, True, "Session ended successfully", session)
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("END_SESSION", e)


# ==================== STUDENT ENDPOINTS ====================

@app.post("/students")
async def register_student(request: StudentCreate, current: Dict[str, Any] = Depends(verify_token)):
    """Teacher-side registration of a student with a reference face photo"""
    try:
        if not request.classId or not request.rollNumber or not request.name or not request.faceImage:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Class ID, roll number, name, and face image are required"
            )

        if not helpers.validate_roll_number(request.rollNumber):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid roll number format. Expected format: 2024179001 (10 digits)"
            )

        class_data = get_owned_class(request.classId, current["teacherId"])
        if not helpers.is_roll_in_range(request.rollNumber, class_data.get("rollNumberRange")):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Roll number not valid for this class")

        if request.email:
            email_ok, email_message = helpers.validate_email(request.email)
            if not email_ok:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=email_message)

        if db.find_student(request.rollNumber, class_data["classId"]):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Student with this roll number is already registered in this class"
            )

        try:
            image_bytes = helpers.decode_image(request.faceImage)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        student = attendance_service.register_student(
            request.rollNumber, class_data["classId"], image_bytes,
            name=request.name.strip(), email=request.email,
        )
        return api_response(status.HTTP_201_CREATED, True, "Student registered successfully", public_student(student))
    except (HTTPException, AttendanceError):
        raise
    except Exception as e:
        return internal_error("REGISTER_STUDENT", e)


@app.get("/classes/{class_id}/students")
async def get_class_students(class_id: str, current: Dict[str, Any] = Depends(verify_token)):
    get_owned_class(class_id, current["teacherId"])
    students = sorted(db.get_students_for_class(class_id), key=lambda s: s["rollNumber"])
    return api_response(
        status.HTTP_200_OK, True, "Students retrieved successfully",
        [public_student(s) for s in students],
    )


@app.get("/students/{student_id}")
async def get_student(student_id: str):
    student = db.get_student(student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return api_response(status.HTTP_200_OK, True, "Student retrieved successfully", public_student(student))


@app.get("/students/{student_id}/attendance")
async def get_student_attendance(student_id: str):
    records = db.get_student_attendance(student_id)
    records.sort(key=lambda r: r.get("markedAt") or "", reverse=True)
    data = [
        {
            "attendanceId": r["attendanceId"],
            "sessionId": r.get("sessionId"),
            "sessionName": r.get("sessionName"),
            "markedAt": r.get("markedAt"),
            "status": r.get("status"),
            "faceConfidence": r.get("faceConfidence"),
        }
        for r in records
    ]
    return api_response(status.HTTP_200_OK, True, "Student attendance retrieved successfully", data)


# ==================== ATTENDANCE ENDPOINTS ====================

@app.get("/attendance/session/{session_id}")
async def get_session_info(session_id: str):
    """Public session details for the student attendance page"""
    session = db.get_session(session_id)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    if not session.get("isActive"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session has been ended by teacher")
    if not helpers.session_accepts_submissions(session):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session has expired")

    class_data = db.get_class(session["classId"])
    if not class_data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")

    return api_response(status.HTTP_200_OK, True, "Session information retrieved", {
        "sessionId": session["sessionId"],
        "sessionName": session.get("sessionName"),
        "subject": class_data.get("subject"),
        "section": class_data.get("section") or "N/A",
        "department": class_data.get("department") or "N/A",
        "rollNumberRange": class_data.get("rollNumberRange"),
        "validUntil": session.get("endTime"),
        "description": session.get("description"),
        "classId": session["classId"],
    })


@app.post("/attendance/submit")
async def submit_attendance(request: AttendanceSubmit):
    try:
        data = attendance_service.submit(
            request.sessionId, request.rollNumber, request.faceImage, request.studentName
        )
        return api_response(status.HTTP_201_CREATED, True, "Attendance marked successfully", data)
    except AttendanceError as e:
        logger.info("[SUBMIT_ATTENDANCE] Rejected %s for session %s: %s", request.rollNumber, request.sessionId, e.message)
        return api_response(e.status_code, False, e.message)
    except Exception as e:
        return internal_error("SUBMIT_ATTENDANCE", e)


# ==================== REPORT ENDPOINTS ====================

@app.get("/sessions/{session_id}/attendance")
async def get_session_attendance(session_id: str, current: Dict[str, Any] = Depends(verify_token)):
    try:
        session = get_owned_session(session_id, current["teacherId"])

        records = sorted(db.get_session_attendance(session_id), key=lambda r: r.get("rollNumber") or "")
        students = db.get_students_for_class(session["classId"])
        present_ids = {r.get("studentId") for r in records}
        absent = sorted(
            (s for s in students if s["studentId"] not in present_ids),
            key=lambda s: s["rollNumber"],
        )

        data = {
            "session": {
                "sessionId": session["sessionId"],
                "sessionName": session.get("sessionName"),
                "startTime": session.get("startTime"),
                "endTime": session.get("endTime"),
                "isActive": session.get("isActive"),
            },
            "summary": {
                "totalStudents": len(students),
                "presentCount": len(records),
                "absentCount": len(absent),
                "attendancePercentage": helpers.attendance_percentage(len(records), len(students)),
                "expectedStudents": session.get("expectedStudents", 0),
            },
            "presentStudents": [
                {
                    "rollNumber": r.get("rollNumber"),
                    "studentName": r.get("studentName"),
                    "markedAt": r.get("markedAt"),
                    "faceConfidence": r.get("faceConfidence"),
                    "verificationStatus": r.get("verificationStatus"),
                }
                for r in records
            ],
            "absentStudents": [
                {"rollNumber": s["rollNumber"], "studentName": s.get("name")}
                for s in absent
            ],
        }
        return api_response(status.HTTP_200_OK, True, "Session attendance retrieved successfully", data)
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("SESSION_ATTENDANCE", e)


@app.get("/classes/{class_id}/analytics")
async def get_class_analytics(class_id: str, current: Dict[str, Any] = Depends(verify_token)):
    try:
        class_data = get_owned_class(class_id, current["teacherId"])
        rows = build_student_report(class_data)

        rates = [r["attendancePercentage"] for r in rows]
        average = round(sum(rates) / len(rates), 2) if rates else 0.0
        ranked = sorted(rows, key=lambda r: (-r["attendancePercentage"], r["rollNumber"]))

        data = {
            "classId": class_id,
            "subject": class_data.get("subject"),
            "totalStudents": len(rows),
            "totalSessions": int(class_data.get("totalSessions") or 0),
            "averageAttendance": average,
            "lowAttendanceThreshold": config.LOW_ATTENDANCE_THRESHOLD,
            "students": rows,
            "topAttenders": ranked[:5],
            "lowAttendance": [r for r in rows if r["attendancePercentage"] < config.LOW_ATTENDANCE_THRESHOLD],
        }
        return api_response(status.HTTP_200_OK, True, "Class analytics retrieved successfully", data)
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("CLASS_ANALYTICS", e)


REPORT_COLUMNS = ["rollNumber", "name", "email", "attendanceCount", "totalSessions",
                  "attendancePercentage", "lastAttendance"]


@app.get("/classes/{class_id}/report")
async def get_class_report(class_id: str, format: str = "json", current: Dict[str, Any] = Depends(verify_token)):
    try:
        if format not in ("json", "csv"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="format must be 'json' or 'csv'")

        class_data = get_owned_class(class_id, current["teacherId"])
        rows = build_student_report(class_data)

        if format == "json":
            return api_response(status.HTTP_200_OK, True, "Class report generated successfully", {
                "classId": class_id,
                "subject": class_data.get("subject"),
                "generatedAt": helpers.utc_now().isoformat(),
                "students": rows,
            })

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=REPORT_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)

        filename = f"attendance_report_{class_id}.csv"
        return StreamingResponse(
            iter([buffer.getvalue()]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    except HTTPException:
        raise
    except Exception as e:
        return internal_error("CLASS_REPORT", e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(config.PORT), reload=not config.IS_PRODUCTION)
