from typing import Any, Optional

from database import serialize_doc

# Fields that never leave the API
PRIVATE_FIELDS = ("password", "resetPasswordToken", "resetPasswordExpire")


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}


def envelope(data: Any = None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = serialize_doc(data)
    body.update(extra)
    return body


def error_envelope(message: str) -> dict:
    return {"success": False, "error": message}
