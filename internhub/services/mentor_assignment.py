from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from internhub.audit import record_audit
from internhub.errors import ApiError, NoEligibleMentor
from internhub.models import (
    PROFILE_MODELS,
    AuditActorType,
    ContractType,
    Profile,
    User,
    UserRole,
)
from internhub.security import AuthSession, ensure_role
from internhub.services.contracts import derive_end_date
from internhub.services.identity import get_trainee
from internhub.services.notifications import NOTIFICATION_TYPE_MENTOR_ASSIGNMENT, add_notification

MENTOR_CAPACITY = 5


@dataclass(frozen=True, slots=True)
class MentorCandidate:
    mentor: User
    load: int

    @property
    def capacity_left(self) -> int:
        return max(0, MENTOR_CAPACITY - self.load)


def mentor_loads(db: Session) -> Counter[int]:
    """Number of interns and attachees assigned to each mentor, keyed by mentor id."""
    loads: Counter[int] = Counter()
    for model in PROFILE_MODELS:
        rows = db.execute(
            select(model.mentor_id, func.count())
            .where(model.mentor_id.is_not(None))
            .group_by(model.mentor_id)
        ).all()
        for mentor_id, count in rows:
            loads[int(mentor_id)] += int(count)
    return loads


def list_department_mentors(db: Session, department: str) -> list[MentorCandidate]:
    mentors = db.scalars(
        select(User)
        .where(
            User.role == UserRole.MENTOR,
            User.is_active.is_(True),
            User.department == department,
        )
        .order_by(User.full_name.asc(), User.id.asc())
    ).all()
    loads = mentor_loads(db)
    return [MentorCandidate(mentor=mentor, load=loads.get(mentor.id, 0)) for mentor in mentors]


def eligible_mentors(
    db: Session,
    department: str | None,
    *,
    current_mentor_id: int | None = None,
) -> list[MentorCandidate]:
    """Active mentors of the department below capacity.

    The trainee's current mentor is judged without counting that trainee, so a
    re-assignment to the same mentor does not hit the cap.
    """
    if not department:
        return []
    eligible: list[MentorCandidate] = []
    for candidate in list_department_mentors(db, department):
        effective_load = candidate.load
        if current_mentor_id is not None and candidate.mentor.id == current_mentor_id:
            effective_load -= 1
        if effective_load < MENTOR_CAPACITY:
            eligible.append(MentorCandidate(mentor=candidate.mentor, load=effective_load))
    return eligible


def assign_mentor(
    db: Session,
    *,
    trainee_id: int,
    contract_type: ContractType,
    start_date: date,
    duration: int,
    actor: AuthSession,
    mentor_id: int | None = None,
) -> tuple[User, Profile, User]:
    ensure_role(actor, {UserRole.HR})
    trainee, profile = get_trainee(db, trainee_id)
    if profile.contract_terminated:
        raise ApiError(
            status_code=409,
            code="CONTRACT_TERMINATED",
            message="This contract has been terminated and can no longer be changed.",
        )

    candidates = eligible_mentors(db, trainee.department, current_mentor_id=profile.mentor_id)
    if not candidates:
        raise NoEligibleMentor(f"No mentor in department {trainee.department or '-'} has capacity.")

    if mentor_id is None:
        chosen = min(candidates, key=lambda item: (item.load, item.mentor.id))
    else:
        chosen = next((item for item in candidates if item.mentor.id == mentor_id), None)
        if chosen is None:
            raise NoEligibleMentor("The selected mentor is not eligible for this trainee.")

    end_date = derive_end_date(contract_type, start_date, duration)
    now_utc = datetime.now(timezone.utc)
    previous_mentor_id = profile.mentor_id

    profile.mentor_id = chosen.mentor.id
    profile.assigned_at = now_utc
    if profile.contract_end_date != end_date:
        profile.expiry_notice_threshold = None
        profile.expiry_notice_end_date = None
    profile.contract_type = contract_type
    profile.contract_start_date = start_date
    profile.contract_end_date = end_date
    profile.contract_duration = duration
    profile.contract_updated_at = now_utc
    profile.contract_updated_by = actor.principal_id

    if previous_mentor_id != chosen.mentor.id:
        add_notification(
            db,
            user_id=chosen.mentor.id,
            message=f"{trainee.full_name} has been assigned to you as a mentee.",
            type=NOTIFICATION_TYPE_MENTOR_ASSIGNMENT,
            related_user_id=trainee.id,
            related_user_role=trainee.role.value,
        )
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="MENTOR_ASSIGNED",
        entity_type="profile",
        entity_id=str(trainee.id),
        details={
            "mentor_id": chosen.mentor.id,
            "previous_mentor_id": previous_mentor_id,
            "contract_type": contract_type.value,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        },
    )
    # Mentor link and contract land together or not at all.
    db.commit()
    db.refresh(profile)
    return trainee, profile, chosen.mentor


def _trainees_where(db: Session, conditions: Callable[[Any], tuple]) -> list[tuple[User, Profile]]:
    rows: list[tuple[User, Profile]] = []
    for model in PROFILE_MODELS:
        stmt = select(User, model).join(model, model.user_id == User.id).where(*conditions(model))
        rows.extend((user, profile) for user, profile in db.execute(stmt).all())
    rows.sort(key=lambda item: (item[0].full_name, item[0].id))
    return rows


def list_unassigned_trainees(db: Session) -> list[tuple[User, Profile]]:
    return _trainees_where(
        db,
        lambda model: (
            model.mentor_id.is_(None),
            model.contract_terminated.is_(False),
            User.is_active.is_(True),
        ),
    )


def list_mentor_trainees(db: Session, *, mentor_id: int) -> list[tuple[User, Profile]]:
    return _trainees_where(db, lambda model: (model.mentor_id == mentor_id,))


def list_all_trainees(db: Session) -> list[tuple[User, Profile]]:
    return _trainees_where(db, lambda model: ())
