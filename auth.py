"""Password hashing, bearer-token sessions and the FastAPI auth dependencies."""

import base64
import hashlib
import hmac
import logging
import os
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Header, HTTPException

import database
from database import create_document, get_document, serialize, utc_naive
from schemas import Session

logger = logging.getLogger(__name__)

SESSION_HOURS = int(os.getenv("SESSION_HOURS", 24))
PBKDF2_ITERATIONS = 120_000
PBKDF2_ALGORITHM = "sha256"


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    derived = hashlib.pbkdf2_hmac(PBKDF2_ALGORITHM, password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    encoded_salt = base64.b64encode(salt).decode("ascii")
    encoded_hash = base64.b64encode(derived).decode("ascii")
    return f"pbkdf2${PBKDF2_ALGORITHM}${PBKDF2_ITERATIONS}${encoded_salt}${encoded_hash}"


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash or not stored_hash.startswith("pbkdf2$"):
        return False
    try:
        _, algorithm, iteration_str, salt_b64, hash_b64 = stored_hash.split("$")
        iterations = int(iteration_str)
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(hash_b64)
    except (ValueError, TypeError):
        return False
    derived = hashlib.pbkdf2_hmac(algorithm, password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(derived, expected)


def create_session(user: dict, ip: Optional[str] = None, user_agent: Optional[str] = None) -> str:
    token = secrets.token_urlsafe(32)
    data = Session(
        token=token,
        user_id=str(user["_id"]),
        role=user.get("role", "agent"),
        ip=ip,
        user_agent=user_agent,
        expires_at=database.now() + timedelta(hours=SESSION_HOURS),
    )
    create_document("sessions", data)
    return token


def revoke_sessions(user_id: str) -> int:
    return database.collection("sessions").delete_many({"user_id": user_id}).deleted_count


def _bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing token")
    return authorization.replace("Bearer ", "").strip()


def get_current_session(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> dict:
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    token = _bearer(authorization)
    session = database.collection("sessions").find_one({"token": token})
    if not session:
        raise HTTPException(status_code=401, detail="Invalid token")
    if session.get("expires_at") and utc_naive(session["expires_at"]) < utc_naive(database.now()):
        database.collection("sessions").delete_one({"_id": session["_id"]})
        raise HTTPException(status_code=401, detail="Session expired")
    return session


def get_current_user(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> dict:
    session = get_current_session(authorization)
    user = get_document("users", session["user_id"])
    if not user or not user.get("active", True):
        raise HTTPException(status_code=401, detail="Invalid token")
    user["_session_id"] = str(session["_id"])
    return user


def get_current_admin(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> dict:
    user = get_current_user(authorization)
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return user


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def public_user(user: dict) -> dict:
    data = serialize(user)
    data.pop("_session_id", None)
    data.pop("fcm_tokens", None)
    return data
