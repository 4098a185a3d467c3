from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import date
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from internhub.db import Base
from internhub.models import AttacheeProfile, ContractType, InternProfile, User, UserRole
from internhub.security import AuthSession, create_access_token, hash_password, session_for_user

DEFAULT_PASSWORD = "correct-horse-9"


@lru_cache
def _password_hash() -> str:
    return hash_password(DEFAULT_PASSWORD)


def make_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def override_get_db(factory: sessionmaker[Session]) -> Callable[[], Generator[Session, None, None]]:
    def _override() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
        finally:
            db.close()

    return _override


def make_user(
    db: Session,
    *,
    role: UserRole,
    email: str,
    full_name: str = "Test User",
    department: str | None = None,
    county_code: int | None = None,
    institution: str | None = None,
    is_active: bool = True,
) -> User:
    user = User(
        email=email,
        password_hash=_password_hash(),
        role=role,
        full_name=full_name,
        department=department,
        county_code=county_code,
        institution=institution,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_trainee(
    db: Session,
    *,
    email: str,
    full_name: str = "Test Trainee",
    role: UserRole = UserRole.INTERN,
    department: str | None = "ICT",
    county_code: int | None = 47,
    mentor: User | None = None,
    contract_start: date | None = None,
    contract_end: date | None = None,
    is_active: bool = True,
) -> tuple[User, InternProfile | AttacheeProfile]:
    user = make_user(
        db,
        role=role,
        email=email,
        full_name=full_name,
        department=department,
        county_code=county_code if role == UserRole.INTERN else None,
        institution="Technical University" if role == UserRole.ATTACHEE else None,
        is_active=is_active,
    )
    model = InternProfile if role == UserRole.INTERN else AttacheeProfile
    profile = model(
        user_id=user.id,
        mentor_id=mentor.id if mentor is not None else None,
        contract_terminated=False,
        checklist_progress=[],
        form_data={},
        documents={},
    )
    if contract_start is not None and contract_end is not None:
        profile.contract_type = ContractType.MONTHLY
        profile.contract_start_date = contract_start
        profile.contract_end_date = contract_end
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return user, profile


def session_of(user: User) -> AuthSession:
    return session_for_user(user)


def bearer(user: User) -> dict[str, str]:
    token, _expires_in, _claims = create_access_token(user)
    return {"Authorization": f"Bearer {token}"}
