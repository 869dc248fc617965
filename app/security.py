from __future__ import annotations

import hmac
import threading
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from app.errors import ApiError
from app.settings import get_settings

ADMIN_SCOPE = "presence:admin"
TOKEN_ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


class LoginLockout:
    """Failed admin logins per client address.

    After ``admin_login_max_failures`` failures the address is locked until
    ``admin_login_lockout_minutes`` have passed since the first of them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failures: dict[str, list[datetime]] = {}

    def _recent(self, client: str, now: datetime) -> list[datetime]:
        window = timedelta(minutes=get_settings().admin_login_lockout_minutes)
        recent = [ts for ts in self._failures.get(client, []) if ts > now - window]
        if recent:
            self._failures[client] = recent
        else:
            self._failures.pop(client, None)
        return recent

    def ensure_allowed(self, client: str, now: datetime | None = None) -> None:
        now_utc = now or datetime.now(timezone.utc)
        settings = get_settings()
        with self._lock:
            recent = self._recent(client, now_utc)
            if len(recent) < settings.admin_login_max_failures:
                return
            unlock_at = recent[0] + timedelta(minutes=settings.admin_login_lockout_minutes)
        raise ApiError(
            status_code=429,
            code="LOGIN_LOCKED",
            message="Too many failed admin logins from this address.",
            details={"retry_after_seconds": max(int((unlock_at - now_utc).total_seconds()), 1)},
        )

    def record_failure(self, client: str, now: datetime | None = None) -> None:
        now_utc = now or datetime.now(timezone.utc)
        with self._lock:
            self._recent(client, now_utc)
            self._failures.setdefault(client, []).append(now_utc)

    def reset(self, client: str | None = None) -> None:
        with self._lock:
            if client is None:
                self._failures.clear()
            else:
                self._failures.pop(client, None)


login_lockout = LoginLockout()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def _env_value(raw: str | None) -> str:
    # Hosting dashboards often keep the quotes around pasted values.
    value = (raw or "").strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def verify_admin_credentials(username: str, password: str) -> bool:
    settings = get_settings()
    expected_user = _env_value(settings.admin_user)
    password_hash = _env_value(settings.admin_pass_hash)
    if not password_hash or not hmac.compare_digest(username, expected_user):
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def issue_admin_token(*, username: str, now: datetime | None = None) -> tuple[str, int]:
    """Signed admin token and its lifetime in seconds."""
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    lifetime = timedelta(minutes=settings.access_token_minutes)
    claims = {
        "sub": username,
        "scope": ADMIN_SCOPE,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
        "jti": str(uuid4()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=TOKEN_ALGORITHM), int(lifetime.total_seconds())


def read_admin_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[TOKEN_ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if not claims.get("sub"):
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    if claims.get("scope") != ADMIN_SCOPE:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Token does not grant admin access.")
    return claims


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    claims = read_admin_token(credentials.credentials)
    request.state.actor = "admin"
    request.state.actor_id = str(claims["sub"])
    return claims
