import os

from dotenv import load_dotenv

# Load environment variables from this file's directory so running uvicorn from another cwd still works
ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(dotenv_path=ENV_PATH)

# Environment
APP_ENV = os.getenv("APP_ENV", "development").lower()  # development | production
IS_PRODUCTION = APP_ENV == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))

# JWT
JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-this-in-production")
if IS_PRODUCTION and JWT_SECRET == "your-secret-key-change-this-in-production":
    raise ValueError("JWT_SECRET must be set in production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))

# Storage backends
DB_TYPE = os.getenv("DB_TYPE", "file")  # "file" or "dynamodb"
DATA_DIR = os.getenv("DATA_DIR", "data")
STORAGE_TYPE = os.getenv("STORAGE_TYPE", "file")  # "file" or "s3"
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
FACE_PROVIDER = os.getenv("FACE_PROVIDER", "local")  # "local" or "rekognition"
EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "console")  # "console", "brevo" or "ses"

# AWS
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
# Set to http://localhost:4566 to run against LocalStack
AWS_ENDPOINT_URL = os.getenv("AWS_ENDPOINT_URL") or None
S3_BUCKET = os.getenv("S3_BUCKET", "smart-attendance-faces")
FACE_COLLECTION_ID = os.getenv("FACE_COLLECTION_ID", "smart-attendance-faces")
FACE_MATCH_THRESHOLD = float(os.getenv("FACE_MATCH_THRESHOLD", "80"))

TABLES = {
    "teachers": os.getenv("TEACHERS_TABLE", "Teachers"),
    "classes": os.getenv("CLASSES_TABLE", "Classes"),
    "sessions": os.getenv("SESSIONS_TABLE", "Sessions"),
    "students": os.getenv("STUDENTS_TABLE", "Students"),
    "attendance": os.getenv("ATTENDANCE_TABLE", "Attendance"),
}

# Email
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@smartattendance.edu")
BREVO_API_KEY = os.getenv("BREVO_API_KEY")
VERIFICATION_TOKEN_HOURS = 24

# Validation
PASSWORD_MIN_LENGTH = 8
LOW_ATTENDANCE_THRESHOLD = float(os.getenv("LOW_ATTENDANCE_THRESHOLD", "75"))

# CORS: comma-separated allow-list in production, e.g.
#   CORS_ORIGINS=https://attendance.example.edu
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
