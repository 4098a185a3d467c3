from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from internhub.audit import record_audit
from internhub.errors import ApiError, NotFound, Unauthorized
from internhub.models import (
    AuditActorType,
    AttacheeProfile,
    InternProfile,
    Profile,
    TRAINEE_ROLES,
    User,
    UserRole,
)
from internhub.schemas import SignupRequest
from internhub.security import (
    AuthSession,
    create_access_token,
    ensure_role,
    hash_password,
    resolve_principal,
    session_for_user,
    verify_password,
)
from internhub.services.notifications import TEMPLATE_WELCOME, send_templated_email
from internhub.settings import get_login_url

DASHBOARD_BY_ROLE: dict[UserRole, str] = {
    UserRole.INTERN: "/intern-dashboard",
    UserRole.ATTACHEE: "/attachee-dashboard",
    UserRole.HR: "/hr-dashboard",
    UserRole.MENTOR: "/mentor-dashboard",
    UserRole.COUNTY_LIAISON: "/county-liaison-dashboard",
}


def dashboard_for(role: UserRole) -> str:
    return DASHBOARD_BY_ROLE[role]


def profile_model_for(role: UserRole) -> type[InternProfile] | type[AttacheeProfile] | None:
    if role == UserRole.INTERN:
        return InternProfile
    if role == UserRole.ATTACHEE:
        return AttacheeProfile
    return None


def get_profile(db: Session, user: User) -> Profile | None:
    model = profile_model_for(user.role)
    if model is None:
        return None
    return db.get(model, user.id)


def ensure_profile(db: Session, user: User) -> Profile:
    """Return the trainee's profile, staging an empty one when it is missing."""
    model = profile_model_for(user.role)
    if model is None:
        raise ApiError(status_code=422, code="NOT_A_TRAINEE", message="User is not an intern or attachee.")
    profile = db.get(model, user.id)
    if profile is None:
        profile = model(
            user_id=user.id,
            contract_terminated=False,
            checklist_progress=[],
            form_data={},
            documents={},
        )
        db.add(profile)
    return profile


def get_trainee(db: Session, user_id: int) -> tuple[User, Profile]:
    user = db.get(User, user_id)
    if user is None or user.role not in TRAINEE_ROLES:
        raise NotFound("Trainee not found.")
    return user, ensure_profile(db, user)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == email.strip().lower()))


def authenticate(db: Session, *, email: str, password: str) -> tuple[AuthSession, str, int]:
    """Check credentials and issue an access token; deactivated accounts get no token."""
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")
    user = resolve_principal(db, user.id)
    token, expires_in, claims = create_access_token(user)
    return session_for_user(user, token_id=str(claims["jti"])), token, expires_in


def create_account(db: Session, payload: SignupRequest) -> User:
    if get_user_by_email(db, payload.email) is not None:
        raise ApiError(status_code=409, code="EMAIL_IN_USE", message="An account with this email already exists.")

    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        full_name=payload.full_name,
        department=(payload.department or "").strip() or None,
        county_code=payload.county_code if payload.role in {UserRole.INTERN, UserRole.COUNTY_LIAISON} else None,
        institution=(payload.institution or "").strip() or None,
        is_active=True,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="EMAIL_IN_USE",
            message="An account with this email already exists.",
        ) from exc

    if user.role in TRAINEE_ROLES:
        ensure_profile(db, user)

    send_templated_email(
        db,
        to=user.email,
        template=TEMPLATE_WELCOME,
        data={
            "user_name": user.full_name,
            "user_role": user.role.value,
            "email": user.email,
            "login_url": get_login_url(),
        },
        user_id=user.id,
        idempotency_key=f"WELCOME:{user.id}",
    )
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action="ACCOUNT_CREATED",
        entity_type="user",
        entity_id=str(user.id),
        details={"role": user.role.value},
    )
    db.commit()
    db.refresh(user)
    return user


def list_users(
    db: Session,
    *,
    role: UserRole | None = None,
    is_active: bool | None = None,
    search: str | None = None,
) -> list[User]:
    stmt = select(User)
    if role is not None:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    needle = (search or "").strip()
    if needle:
        pattern = f"%{needle}%"
        stmt = stmt.where(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    stmt = stmt.order_by(User.full_name.asc(), User.id.asc())
    return list(db.scalars(stmt).all())


def set_user_active(db: Session, *, user_id: int, is_active: bool, actor: AuthSession) -> User:
    ensure_role(actor, {UserRole.HR})
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    if user.role == UserRole.HR and not is_active:
        raise Unauthorized("HR accounts cannot be deactivated.")

    if is_active and user.role in TRAINEE_ROLES:
        profile = get_profile(db, user)
        if profile is not None and profile.contract_terminated:
            raise ApiError(
                status_code=409,
                code="CONTRACT_TERMINATED",
                message="A trainee with a terminated contract cannot be reactivated.",
            )

    if user.is_active == is_active:
        return user

    now_utc = datetime.now(timezone.utc)
    user.is_active = is_active
    if is_active:
        user.reactivated_at = now_utc
        user.reactivated_by = actor.principal_id
    else:
        user.deactivated_at = now_utc
        user.deactivated_by = actor.principal_id
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="USER_REACTIVATED" if is_active else "USER_DEACTIVATED",
        entity_type="user",
        entity_id=str(user.id),
    )
    db.commit()
    db.refresh(user)
    return user


def list_county_interns(db: Session, *, actor: AuthSession) -> list[User]:
    ensure_role(actor, {UserRole.COUNTY_LIAISON})
    liaison = db.get(User, actor.principal_id)
    if liaison is None or liaison.county_code is None:
        return []
    stmt = (
        select(User)
        .where(User.role == UserRole.INTERN, User.county_code == liaison.county_code)
        .order_by(User.full_name.asc(), User.id.asc())
    )
    return list(db.scalars(stmt).all())
