from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from internhub.audit import log_audit
from internhub.db import get_db
from internhub.errors import ApiError
from internhub.models import AuditActorType, User
from internhub.schemas import AuthResponse, LoginRequest, SignupRequest, UserRead
from internhub.security import (
    AuthSession,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_session,
)
from internhub.services.identity import authenticate, create_account, dashboard_for

router = APIRouter(tags=["auth"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


@router.post("/api/auth/signup", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def signup(
    payload: SignupRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    user = create_account(db, payload)
    request.state.actor = user.role.value
    request.state.actor_id = str(user.id)
    return user


@router.post("/api/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AuthResponse:
    ip = _client_ip(request)
    user_agent = _user_agent(request)
    request_id = getattr(request.state, "request_id", None)
    throttle_key = ip or payload.email

    try:
        ensure_login_attempt_allowed(throttle_key)
    except ApiError:
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=payload.email,
            action="LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent,
            details={"reason": "TOO_MANY_ATTEMPTS"},
            request_id=request_id,
        )
        raise

    try:
        session, token, expires_in = authenticate(db, email=payload.email, password=payload.password)
    except ApiError as exc:
        if exc.code == "INVALID_CREDENTIALS":
            register_login_failure(throttle_key)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=payload.email,
            action="LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent,
            details={"reason": exc.code},
            request_id=request_id,
        )
        raise

    register_login_success(throttle_key)
    request.state.actor = session.role.value
    request.state.actor_id = session.actor_id
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=session.actor_id,
        action="LOGIN_SUCCESS",
        success=True,
        ip=ip,
        user_agent=user_agent,
        details={"access_jti": session.token_id},
        request_id=request_id,
    )
    return AuthResponse(
        access_token=token,
        expires_in=expires_in,
        user_id=session.principal_id,
        role=session.role,
        dashboard=dashboard_for(session.role),
    )


@router.get("/api/auth/me", response_model=UserRead)
def me(
    session: AuthSession = Depends(require_session),
    db: Session = Depends(get_db),
) -> User:
    return db.get(User, session.principal_id)
