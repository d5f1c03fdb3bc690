"""Signed bearer credentials (JWT) carrying the user's id, email and role."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from config import Settings
from errors import Unauthorized


def create_access_token(user, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_expire_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise Unauthorized("Not authorized, token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise Unauthorized("Not authorized, invalid token") from exc
    if "id" not in payload:
        raise Unauthorized("Not authorized, invalid token")
    return payload
