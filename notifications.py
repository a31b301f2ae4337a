"""
In-app notification feeds plus push delivery.

Push goes through Firebase Cloud Messaging when FIREBASE_CREDENTIALS points
at a service-account file; otherwise notifications are only stored.
"""

import logging
import os
from typing import Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, messaging

import database
from database import create_document, get_document
from schemas import AdminNotification, Notification

logger = logging.getLogger(__name__)

FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
FEED_LIMIT = 30


class FirebasePushGateway:
    def __init__(self, credentials_path: str):
        if not firebase_admin._apps:
            firebase_admin.initialize_app(credentials.Certificate(credentials_path))
            logger.info("Firebase Admin initialized.")

    def send(self, token: str, title: str, body: str, data: Dict[str, str]) -> str:
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data=data,
        )
        return messaging.send(message)


_gateway = None


def get_push_gateway():
    global _gateway
    if _gateway is None and FIREBASE_CREDENTIALS:
        _gateway = FirebasePushGateway(FIREBASE_CREDENTIALS)
    return _gateway


def set_push_gateway(gateway) -> None:
    global _gateway
    _gateway = gateway


def _stringify(data: Optional[dict]) -> Dict[str, str]:
    # FCM data payloads only carry strings
    return {str(k): "" if v is None else str(v) for k, v in (data or {}).items()}


def push_to_user(user: dict, title: str, body: str, data: Optional[dict] = None) -> int:
    """Send to every registered device of the user; returns the delivered count."""
    gateway = get_push_gateway()
    tokens: List[str] = user.get("fcm_tokens") or []
    if gateway is None or not tokens:
        logger.debug("Push skipped for user %s (gateway=%s, tokens=%d)", user.get("_id"), gateway is not None, len(tokens))
        return 0
    sent = 0
    payload = _stringify(data)
    for token in tokens:
        try:
            gateway.send(token, title, body, payload)
            sent += 1
        except Exception:
            logger.exception("Push to user %s failed for one device", user.get("_id"))
    return sent


def notify_user(user_id: str, title: str, message: str, type: Optional[str] = None, data: Optional[dict] = None) -> Optional[str]:
    user = get_document("users", user_id)
    if user is None:
        logger.warning("Notification for unknown user %s dropped: %s", user_id, title)
        return None
    notification_id = create_document(
        "notifications",
        Notification(user_id=user_id, title=title, message=message, type=type, data=_stringify(data)),
    )
    push_to_user(user, title, message, {**(data or {}), "type": type or "", "notification_id": notification_id})
    return notification_id


def notify_admins(title: str, message: str, type: Optional[str] = None, data: Optional[dict] = None) -> str:
    return create_document(
        "admin_notifications",
        AdminNotification(title=title, message=message, type=type, data=_stringify(data)),
    )


def user_feed(user_id: str) -> List[dict]:
    return database.get_documents("notifications", {"user_id": user_id}, limit=FEED_LIMIT, sort=[("created_at", -1)])


def mark_user_feed_read(user_id: str) -> int:
    result = database.collection("notifications").update_many(
        {"user_id": user_id, "read": False}, {"$set": {"read": True}}
    )
    return result.modified_count


def admin_feed() -> List[dict]:
    return database.get_documents("admin_notifications", {}, limit=FEED_LIMIT, sort=[("created_at", -1)])


def mark_admin_feed_read() -> int:
    result = database.collection("admin_notifications").update_many({"read": False}, {"$set": {"read": True}})
    return result.modified_count
