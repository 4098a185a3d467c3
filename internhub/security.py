from __future__ import annotations

import threading
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy.orm import Session

from internhub.db import get_db
from internhub.errors import AccountDeactivated, ApiError, Unauthenticated, Unauthorized
from internhub.models import User, UserRole
from internhub.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True, slots=True)
class AuthSession:
    """The authenticated principal of one request, passed explicitly to every handler."""

    principal_id: int
    role: UserRole
    email: str
    full_name: str
    token_id: str | None = None

    @property
    def actor_id(self) -> str:
        return str(self.principal_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(key: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[key]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(key, None)


def ensure_login_attempt_allowed(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        queue = _FAILED_ATTEMPTS.get(key, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        _FAILED_ATTEMPTS[key].append(now)


def register_login_success(key: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(key, None)


def reset_login_attempts() -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.clear()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def create_access_token(user: User) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": str(user.id),
        "role": user.role.value,
        "email": user.email,
        "full_name": user.full_name,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise Unauthenticated("Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise Unauthenticated("Token type is invalid.")
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise Unauthenticated("Token subject is invalid.")
    return payload


def resolve_principal(db: Session, principal_id: int | None) -> User:
    """Load the user behind a principal id and refuse deactivated accounts."""
    if principal_id is None:
        raise Unauthenticated()
    user = db.get(User, principal_id)
    if user is None:
        raise Unauthenticated("Account no longer exists.")
    if not user.is_active:
        raise AccountDeactivated()
    return user


def session_for_user(user: User, *, token_id: str | None = None) -> AuthSession:
    return AuthSession(
        principal_id=user.id,
        role=user.role,
        email=user.email,
        full_name=user.full_name,
        token_id=token_id,
    )


def require_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthSession:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Missing bearer token.")

    claims = decode_token(credentials.credentials)
    # Re-read the account on every request so a deactivation takes effect immediately.
    user = resolve_principal(db, int(claims["sub"]))

    request.state.actor = user.role.value
    request.state.actor_id = str(user.id)
    return session_for_user(user, token_id=claims.get("jti"))


def ensure_role(session: AuthSession, allowed: Iterable[UserRole]) -> None:
    if session.role not in set(allowed):
        raise Unauthorized("Insufficient permissions for this dashboard.")


def require_roles(*roles: UserRole) -> Callable[..., AuthSession]:
    if not roles:
        raise ValueError("require_roles needs at least one role")
    allowed = frozenset(roles)

    def _dependency(session: AuthSession = Depends(require_session)) -> AuthSession:
        ensure_role(session, allowed)
        return session

    return _dependency
