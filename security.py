import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import Settings, get_settings
from errors import Forbidden, Unauthorized
from schemas import Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class Identity(BaseModel):
    """The authenticated caller, as asserted by a verified token."""

    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(email: str, role: str, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token carrying email and role; used both for login and email verification."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode = {"email": email, "role": Role(role).value, "exp": expire}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> Identity:
    """Verify signature and expiry; raises JWTError or ValueError on a bad token."""
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    email = payload.get("email")
    if not email:
        raise JWTError("Token is missing email")
    return Identity(email=email, role=Role(payload.get("role")))


# Dependencies

def get_current_identity(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> Identity:
    if not authorization:
        raise Unauthorized("Authorization header missing")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise Unauthorized("Invalid Authorization header format")
    try:
        return decode_token(parts[1], settings)
    except (JWTError, ValueError) as e:
        logger.warning("Rejected bearer token: %s", e)
        raise Unauthorized("Invalid token")


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Forbidden: Admins only")
    return identity
