from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from internhub.db import get_db
from internhub.models import User, UserRole
from internhub.schemas import UserActiveUpdateRequest, UserRead
from internhub.security import AuthSession, require_roles
from internhub.services.identity import list_county_interns, list_users, set_user_active

router = APIRouter(tags=["users"])


@router.get("/api/hr/users", response_model=list[UserRead])
def hr_list_users(
    role: UserRole | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=255),
    _session: AuthSession = Depends(require_roles(UserRole.HR)),
    db: Session = Depends(get_db),
) -> list[User]:
    return list_users(db, role=role, is_active=is_active, search=search)


@router.patch("/api/hr/users/{user_id}/active", response_model=UserRead)
def hr_set_user_active(
    user_id: int,
    payload: UserActiveUpdateRequest,
    session: AuthSession = Depends(require_roles(UserRole.HR)),
    db: Session = Depends(get_db),
) -> User:
    return set_user_active(db, user_id=user_id, is_active=payload.is_active, actor=session)


@router.get("/api/liaison/interns", response_model=list[UserRead])
def liaison_list_interns(
    session: AuthSession = Depends(require_roles(UserRole.COUNTY_LIAISON)),
    db: Session = Depends(get_db),
) -> list[User]:
    return list_county_interns(db, actor=session)
