import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel, EmailStr

from auth import check_name, check_password_strength
from database import create_document, get_db, get_documents, to_object_id, utcnow
from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from responses import envelope, public_user
from schemas import Role, User
from security import Principal, get_current_user, get_password_hash, get_principal, require_admin, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

PROFILE_FIELDS = ("name", "role")
PROTECTED_FIELDS = ("email", "password")


class UserCreate(BaseModel):
    name: str
    email: EmailStr
    password: str
    passwordConfirm: str
    role: Optional[Role] = None


class PasswordUpdate(BaseModel):
    currentPassword: str
    newPassword: str
    newPasswordConfirm: str


class StatusUpdate(BaseModel):
    active: bool


def _find_user(db, user_id) -> dict:
    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise NotFoundError(f"User not found with id of {user_id}")
    return user


def update_profile(db, principal: Principal, user_id: str, changes: dict) -> dict:
    fields = list(changes)
    if any(f in PROTECTED_FIELDS for f in fields):
        raise ValidationError("Cannot update protected fields")
    invalid = [f for f in fields if f not in PROFILE_FIELDS]
    if invalid:
        raise ValidationError(f"Invalid field(s): {', '.join(invalid)}")
    if user_id != principal.id and not principal.is_admin:
        raise AuthorizationError("You are not authorized to update this user.")
    if "role" in changes and not principal.is_admin:
        raise AuthorizationError("Only an admin can change a user's role.")

    if "name" in changes:
        if not isinstance(changes["name"], str):
            raise ValidationError("Name must be between 2 and 50 characters")
        changes["name"] = check_name(changes["name"])
    if "role" in changes and changes["role"] not in ("user", "admin"):
        raise ValidationError("Role must be either 'user' or 'admin'")

    user = _find_user(db, user_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {**changes, "updatedAt": utcnow()}})
    return db["user"].find_one({"_id": user["_id"]})


@router.get("", dependencies=[Depends(require_admin)])
def get_users(db=Depends(get_db)):
    users = [public_user(u) for u in get_documents(db, "user")]
    return envelope(users, "Users retrieved successfully")


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
def create_user(payload: UserCreate, db=Depends(get_db)):
    if payload.password != payload.passwordConfirm:
        raise ValidationError("Passwords do not match")
    check_password_strength(payload.password)
    name = check_name(payload.name)
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already exists")

    user = User(
        name=name,
        email=email,
        password=get_password_hash(payload.password),
        role=payload.role or "user",
    )
    doc = create_document(db, "user", user.model_dump())
    logger.info("Admin created user %s with role %s", doc["_id"], doc["role"])
    return envelope(
        {"_id": doc["_id"], "name": doc["name"], "email": doc["email"], "role": doc["role"]},
        "User created successfully",
    )


@router.put("/password")
def update_password(payload: PasswordUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    if not verify_password(payload.currentPassword, user.get("password")):
        raise AuthenticationError("Current password is incorrect")
    if payload.newPassword != payload.newPasswordConfirm:
        raise ValidationError("Passwords do not match")
    check_password_strength(payload.newPassword)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": get_password_hash(payload.newPassword), "updatedAt": utcnow()}},
    )
    return envelope(message="Password updated successfully")


@router.get("/{user_id}")
def get_user_by_id(user_id: str, principal: Principal = Depends(get_principal), db=Depends(get_db)):
    if user_id != principal.id and not principal.is_admin:
        raise AuthorizationError("You are not authorized to view this user.")
    return envelope(public_user(_find_user(db, user_id)), "User retrieved successfully")


@router.put("/{user_id}")
def update_profile_by_id(user_id: str, changes: Dict[str, Any] = Body(...),
                         principal: Principal = Depends(get_principal), db=Depends(get_db)):
    user = update_profile(db, principal, user_id, changes)
    return envelope(public_user(user), "User profile updated successfully")


@router.put("/{user_id}/status", dependencies=[Depends(require_admin)])
def update_user_status(user_id: str, payload: StatusUpdate, principal: Principal = Depends(get_principal),
                       db=Depends(get_db)):
    user = _find_user(db, user_id)
    if str(user["_id"]) == principal.id:
        raise ValidationError("Cannot deactivate your own account")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"active": payload.active, "updatedAt": utcnow()}})
    user["active"] = payload.active
    logger.info("User %s active=%s", user["_id"], payload.active)
    return envelope(public_user(user), "User status updated successfully")
