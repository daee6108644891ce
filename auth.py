import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header
from jose import JWTError, jwt
from pydantic import BaseModel

from errors import UnauthorizedError

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = 60 * 24  # 1 day


class Identity(BaseModel):
    """Caller resolved from the identity provider's session token."""
    id: str
    email: str = ""
    firstName: str = ""
    lastName: str = ""

    @property
    def name(self) -> str:
        return f"{self.firstName} {self.lastName}".strip()


def create_token(external_id: str, email: str = "", first_name: str = "", last_name: str = ""):
    payload = {
        "sub": external_id,
        "email": email,
        "given_name": first_name,
        "family_name": last_name,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=JWT_EXPIRE_MINUTES),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(authorization: Optional[str]) -> Optional[Identity]:
    """Return the identity carried by a bearer header, or None if there is none."""
    if not authorization:
        return None
    try:
        scheme, token = authorization.split(" ", 1)
    except ValueError:
        return None
    if scheme.lower() != "bearer":
        return None
    try:
        data = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        return None
    if not data.get("sub"):
        return None
    return Identity(
        id=data["sub"],
        email=data.get("email") or "",
        firstName=data.get("given_name") or "",
        lastName=data.get("family_name") or "",
    )


def current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    identity = decode_token(authorization)
    if identity is None:
        raise UnauthorizedError("Invalid or expired token")
    return identity


def optional_identity(authorization: Optional[str] = Header(None)) -> Optional[Identity]:
    return decode_token(authorization)
