"""Authentication utilities (JWT bearer tokens, password hashing, ownership checks)"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from jose import JWTError, jwt
from passlib.context import CryptContext

from storefront.config import settings
from storefront.errors import Unauthorized
from storefront.models.enums import Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    return pwd_context.verify(password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry; raise Unauthorized otherwise"""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise Unauthorized("Invalid or expired token")

    if "sub" not in payload:
        raise Unauthorized("Invalid or expired token")
    return payload


def can_access(role: Role, resource_owner_id: int, caller_id: int) -> bool:
    """Admins may touch anything; users only what they own"""
    if role == Role.ADMIN:
        return True
    return resource_owner_id == caller_id
