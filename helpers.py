import base64
import binascii
import io
import json
import re
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import email_validator
import qrcode
from fastapi.responses import JSONResponse

ROLL_NUMBER_PATTERN = re.compile(r"[0-9]{10}")
DIGITS_PATTERN = re.compile(r"[0-9]+")
DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")

# Rejected in production: test domains, temporary mail services and common typos
BLOCKED_EMAIL_DOMAINS = {
    "test.com", "example.com", "fake.com", "temp.com",
    "mailinator.com", "10minutemail.com", "guerrillamail.com", "tempmail.org",
    "throwaway.email", "temp-mail.org", "yopmail.com", "maildrop.cc",
    "sharklasers.com",
    "gmial.com", "yahooo.com", "gmai.com", "hotmial.com",
}

KNOWN_EMAIL_PROVIDERS = (
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "live.com",
    "msn.com", "aol.com", "icloud.com", "protonmail.com", "zoho.com", "mail.com",
)
EDUCATIONAL_MARKERS = (".edu", ".ac.", ".university", ".college")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored ISO timestamp; naive values are treated as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def api_response(status_code: int, success: bool, message: str,
                 data: Any = None, error: Optional[str] = None) -> JSONResponse:
    """Uniform response envelope: {success, message, data?, error?}"""
    body: Dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


# ==================== ROLL NUMBERS ====================

def validate_roll_number(roll_number: Any) -> bool:
    """Roll numbers are exactly 10 digits, e.g. 2024179001"""
    return isinstance(roll_number, str) and bool(ROLL_NUMBER_PATTERN.fullmatch(roll_number))


def parse_roll_range(roll_range: Any) -> Optional[Tuple[int, int]]:
    """
    Parse "2024179001-2024179060" into (2024179001, 2024179060).

    Returns None when the text is not two integers joined by '-' or when
    the start is greater than the end.
    """
    if not isinstance(roll_range, str) or "-" not in roll_range:
        return None

    parts = roll_range.split("-")
    if len(parts) != 2:
        return None

    start, end = (p.strip() for p in parts)
    if not (DIGITS_PATTERN.fullmatch(start) and DIGITS_PATTERN.fullmatch(end)):
        return None

    start_num, end_num = int(start), int(end)
    if start_num > end_num:
        return None
    return start_num, end_num


def is_roll_in_range(roll_number: Any, roll_range: Any) -> bool:
    """Numeric, inclusive range check."""
    bounds = parse_roll_range(roll_range)
    if bounds is None:
        return False
    if not isinstance(roll_number, str) or not DIGITS_PATTERN.fullmatch(roll_number):
        return False

    roll = int(roll_number)
    return bounds[0] <= roll <= bounds[1]


def calculate_expected_students(roll_range: Any) -> int:
    """"2024179001-2024179060" -> 60"""
    bounds = parse_roll_range(roll_range)
    if bounds is None:
        return 0
    return bounds[1] - bounds[0] + 1


def attendance_key(session_id: str, roll_number: str) -> str:
    """Attendance id derived from (session, roll number) so a second write collides"""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"attendance:{session_id}:{roll_number}"))


def attendance_percentage(present: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(present / total * 100.0, 2)


# ==================== EMAIL ====================

def validate_email(email: Any, strict: bool = False) -> Tuple[bool, str]:
    """
    Validate an email address.

    Format is always checked. With strict=True (production) throw-away domains
    are rejected and the domain must be a known provider or an educational one.
    """
    if not email or not isinstance(email, str):
        return False, "Email is required"

    try:
        checked = email_validator.validate_email(email, check_deliverability=False)
    except email_validator.EmailNotValidError:
        return False, "Invalid email format"

    if strict:
        domain = checked.domain.lower()
        legitimate = domain.endswith(KNOWN_EMAIL_PROVIDERS) or any(
            marker in domain for marker in EDUCATIONAL_MARKERS
        )
        if domain in BLOCKED_EMAIL_DOMAINS or not legitimate:
            return False, "Please use a valid email address from a legitimate domain"

    return True, "Email is valid"


def generate_verification_token() -> str:
    return secrets.token_hex(32)


# ==================== SESSIONS ====================

def session_status_error(session: Dict[str, Any], now: Optional[datetime] = None) -> Optional[str]:
    """Return why a session rejects submissions, or None when it accepts them."""
    if not session.get("isActive"):
        return "Session has been ended"

    now = now or utc_now()
    if now > parse_timestamp(session["endTime"]):
        return "Session has expired"
    return None


def session_accepts_submissions(session: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    return session_status_error(session, now) is None


def build_attendance_url(frontend_url: str, session_id: str) -> str:
    return f"{frontend_url.rstrip('/')}/attendance?sessionId={session_id}"


def build_qr_payload(session_id: str, class_data: Dict[str, Any], teacher_id: str,
                     valid_until: datetime) -> str:
    """Unsigned session metadata kept beside the QR image."""
    return json.dumps({
        "sessionId": session_id,
        "classId": class_data["classId"],
        "subject": class_data.get("subject"),
        "teacherId": teacher_id,
        "rollRange": class_data.get("rollNumberRange"),
        "validUntil": valid_until.isoformat(),
    })


def render_qr_data_url(content: str) -> str:
    """Render content as a PNG QR code and return it as a data URL"""
    qr = qrcode.QRCode(border=2, box_size=10)
    qr.add_data(content)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    qr_b64 = base64.b64encode(buf.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{qr_b64}"


# ==================== IMAGES ====================

def decode_image(image_b64: Any) -> bytes:
    """Decode a base64 image, with or without a data URL prefix."""
    if not image_b64 or not isinstance(image_b64, str):
        raise ValueError("Face image is required")

    cleaned = DATA_URL_PREFIX.sub("", image_b64.strip())
    try:
        data = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Face image is not valid base64")

    if not data:
        raise ValueError("Face image is empty")
    return data
