import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from helpers import utc_now

# auto_error=False so a missing header is reported as 401 rather than 403
security = HTTPBearer(auto_error=False)

PBKDF2_ITERATIONS = 240_000


# ==================== PASSWORDS ====================

def get_password_hash(password: str) -> str:
    """Hash a password with salted PBKDF2-SHA256"""
    if not isinstance(password, str):
        raise ValueError("password must be str")
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return "pbkdf2_sha256$%d$%s$%s" % (PBKDF2_ITERATIONS, salt.hex(), dk.hex())


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its stored hash"""
    try:
        algo, iter_s, salt_hex, hash_hex = hashed_password.split("$")
        if algo != "pbkdf2_sha256":
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
        iterations = int(iter_s)
    except (AttributeError, ValueError):
        return False

    dk = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(dk, expected)


# ==================== TOKENS ====================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    now = utc_now()
    expire = now + (expires_delta or timedelta(hours=config.JWT_EXPIRE_HOURS))
    to_encode.update({"iat": now, "exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def create_teacher_token(teacher: Dict[str, Any]) -> str:
    return create_access_token({
        "teacherId": teacher["teacherId"],
        "email": teacher["email"],
        "name": teacher["name"],
    })


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if not payload.get("teacherId"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return payload


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Dict[str, Any]:
    """Verify the bearer JWT and return its claims"""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
        )
    return decode_access_token(credentials.credentials)
