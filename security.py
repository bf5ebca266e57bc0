"""
Password hashing, JWT issuance and the request principal.

Logged-out tokens are kept in the "revoked_token" collection (hashed) until
they would have expired on their own.
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

import config
from database import get_db, to_object_id, utcnow
from errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{config.API_PREFIX}/auth/login", auto_error=False)


class Principal(BaseModel):
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def verify_password(plain_password, hashed_password):
    if not plain_password or not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "jti": secrets.token_hex(8)})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def create_user_token(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"])})


def create_reset_token():
    """Return (raw token, stored hash, expiry) for a password reset."""
    raw = secrets.token_hex(20)
    expires = utcnow() + timedelta(minutes=config.RESET_TOKEN_EXPIRE_MINUTES)
    return raw, hash_token(raw), expires


def revoke_token(db, token: str) -> None:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    except (JWTError, KeyError):
        expires_at = utcnow() + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    db["revoked_token"].update_one(
        {"tokenHash": hash_token(token)},
        {"$setOnInsert": {"expiresAt": expires_at, "revokedAt": utcnow()}},
        upsert=True,
    )


def is_token_revoked(db, token: str) -> bool:
    return db["revoked_token"].find_one({"tokenHash": hash_token(token)}) is not None


def get_token(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    if not token:
        raise AuthenticationError(
            "Authentication token is missing. Please provide a valid token to access this resource."
        )
    return token


def get_current_user(token: str = Depends(get_token), db=Depends(get_db)):
    if is_token_revoked(db, token):
        raise AuthenticationError("This token is invalid as the user has logged out.")
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id = payload.get("sub")
    except JWTError:
        raise AuthenticationError("Token verification failed. Please provide a valid token.")

    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise AuthenticationError("User associated with this token not found.")
    if not user.get("active", True):
        raise AuthenticationError("User account is deactivated")
    return user


def get_principal(user=Depends(get_current_user)) -> Principal:
    return Principal(id=str(user["_id"]), role=user.get("role", "user"))


def require_roles(*roles):
    def guard(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise AuthorizationError(
                f"Access denied. Your role ({principal.role}) is not authorized to access this resource."
            )
        return principal

    return guard


require_admin = require_roles("admin")
