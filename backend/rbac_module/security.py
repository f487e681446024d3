from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from .config import settings

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


class AuthError(Exception):
    pass


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _encode(claims: dict[str, Any], secret: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    subject: str,
    role: str,
    *,
    school_id: str,
    email: str,
    expires_minutes: int | None = None,
) -> str:
    exp_minutes = expires_minutes or settings.jwt_exp_minutes
    claims = {"sub": subject, "role": role, "school_id": school_id, "email": email, "type": ACCESS_TOKEN}
    return _encode(claims, settings.jwt_secret, timedelta(minutes=exp_minutes))


def create_refresh_token(subject: str) -> str:
    claims = {"sub": subject, "type": REFRESH_TOKEN}
    return _encode(claims, settings.jwt_refresh_secret, timedelta(days=settings.jwt_refresh_exp_days))


def _decode(token: str, secret: str, expected_type: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc
    if "sub" not in payload or payload.get("type") != expected_type:
        raise AuthError("Invalid token payload")
    return payload


def decode_access_token(token: str) -> dict[str, Any]:
    payload = _decode(token, settings.jwt_secret, ACCESS_TOKEN)
    if "role" not in payload:
        raise AuthError("Invalid token payload")
    return payload


def decode_refresh_token(token: str) -> dict[str, Any]:
    return _decode(token, settings.jwt_refresh_secret, REFRESH_TOKEN)
