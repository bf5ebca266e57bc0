import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr

from database import create_document, get_db, utcnow
from errors import AuthenticationError, NotFoundError, ValidationError
from responses import envelope
from schemas import User
from security import (
    create_reset_token,
    create_user_token,
    get_current_user,
    get_password_hash,
    get_token,
    hash_token,
    revoke_token,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z\d]).{8,}$")
PASSWORD_RULE_MESSAGE = (
    "Password must contain at least 8 characters, one uppercase letter, "
    "one lowercase letter, one number, and one special character"
)


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    passwordConfirm: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str


def check_password_strength(password: str) -> None:
    if not PASSWORD_RULE.match(password):
        raise ValidationError(PASSWORD_RULE_MESSAGE)


def check_name(name: str) -> str:
    name = name.strip()
    if not 2 <= len(name) <= 50:
        raise ValidationError("Name must be between 2 and 50 characters")
    return name


def send_reset_token(user: dict, token: str) -> None:
    # TODO: hand the token to a mail transport once one is configured
    logger.info("Password reset requested for %s", user["email"])


def token_response(user: dict, message: Optional[str] = None) -> dict:
    return envelope(
        {"_id": user["_id"], "name": user["name"], "email": user["email"], "role": user.get("role", "user")},
        message,
        token=create_user_token(user),
    )


def register_user(db, payload: RegisterRequest) -> dict:
    if not payload.name or not payload.email or not payload.password or not payload.passwordConfirm:
        raise ValidationError("All fields are required")
    if payload.password != payload.passwordConfirm:
        raise ValidationError("Passwords do not match")
    check_password_strength(payload.password)
    name = check_name(payload.name)

    email = payload.email.lower().strip()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already in use")

    user = User(name=name, email=email, password=get_password_hash(payload.password))
    doc = create_document(db, "user", user.model_dump())
    logger.info("Registered user %s", doc["_id"])
    return doc


def authenticate(db, email: Optional[str], password: Optional[str]) -> dict:
    if not email or not password:
        raise ValidationError("Please provide email and password")
    user = db["user"].find_one({"email": email.lower().strip()})
    if not user or not verify_password(password, user.get("password")):
        raise AuthenticationError("Invalid email or password")
    if not user.get("active", True):
        raise AuthenticationError("User account is deactivated")
    return user


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db=Depends(get_db)):
    user = register_user(db, payload)
    return token_response(user, "User registered successfully")


@router.post("/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    return token_response(user, "Login successful")


@router.get("/me")
def me(user=Depends(get_current_user)):
    return token_response(user, "User profile retrieved successfully")


@router.post("/logout")
def logout(token: str = Depends(get_token), user=Depends(get_current_user), db=Depends(get_db)):
    revoke_token(db, token)
    logger.info("User %s logged out", user["_id"])
    return envelope(message="Successfully logged out")


@router.post("/refresh-token")
def refresh_token(user=Depends(get_current_user)):
    return token_response(user, "Token refreshed")


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db=Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise NotFoundError("User not found")
    raw, hashed, expires = create_reset_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"resetPasswordToken": hashed, "resetPasswordExpire": expires}},
    )
    send_reset_token(user, raw)
    return envelope(message="Password reset email sent")


@router.put("/reset-password/{reset_token}")
def reset_password(reset_token: str, payload: ResetPasswordRequest, db=Depends(get_db)):
    user = db["user"].find_one({
        "resetPasswordToken": hash_token(reset_token),
        "resetPasswordExpire": {"$gt": utcnow()},
    })
    if not user:
        raise ValidationError("Invalid token")
    check_password_strength(payload.password)
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password": get_password_hash(payload.password), "updatedAt": utcnow()},
            "$unset": {"resetPasswordToken": "", "resetPasswordExpire": ""},
        },
    )
    logger.info("Password reset for user %s", user["_id"])
    return token_response(user, "Password reset successful")
