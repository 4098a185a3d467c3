from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from internhub.db import get_db
from internhub.errors import NotFound
from internhub.models import Profile, User, UserRole
from internhub.schemas import (
    ContractExtendRequest,
    ContractRead,
    ContractTerminateRequest,
    ContractUpsertRequest,
    MentorAssignmentRequest,
    MentorLoadRead,
    TraineeRead,
)
from internhub.security import AuthSession, require_roles
from internhub.services.contracts import (
    describe_contract,
    extend_contract,
    local_today,
    set_contract,
    terminate_contract,
)
from internhub.services.identity import get_profile, get_trainee
from internhub.services.mentor_assignment import (
    MentorCandidate,
    assign_mentor,
    eligible_mentors,
    list_all_trainees,
    list_department_mentors,
    list_mentor_trainees,
    list_unassigned_trainees,
)

router = APIRouter(tags=["contracts"])

_hr = require_roles(UserRole.HR)
_trainee = require_roles(UserRole.INTERN, UserRole.ATTACHEE)


def _trainee_read(user: User, profile: Profile) -> TraineeRead:
    return TraineeRead(
        user_id=user.id,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
        department=user.department,
        mentor_id=profile.mentor_id,
        assigned_at=profile.assigned_at,
    )


def _mentor_read(candidate: MentorCandidate) -> MentorLoadRead:
    return MentorLoadRead(
        mentor_id=candidate.mentor.id,
        full_name=candidate.mentor.full_name,
        email=candidate.mentor.email,
        department=candidate.mentor.department,
        load=candidate.load,
        capacity_left=candidate.capacity_left,
    )


@router.get("/api/hr/contracts", response_model=list[ContractRead])
def hr_list_contracts(
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    today = local_today()
    return [describe_contract(user, profile, today=today) for user, profile in list_all_trainees(db)]


@router.get("/api/hr/contracts/{trainee_id}", response_model=ContractRead)
def hr_get_contract(
    trainee_id: int,
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    user, profile = get_trainee(db, trainee_id)
    return describe_contract(user, profile)


@router.put("/api/hr/contracts/{trainee_id}", response_model=ContractRead)
def hr_set_contract(
    trainee_id: int,
    payload: ContractUpsertRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    user, profile = set_contract(
        db,
        trainee_id=trainee_id,
        contract_type=payload.contract_type,
        start_date=payload.contract_start_date,
        end_date=payload.contract_end_date,
        duration=payload.contract_duration,
        actor=session,
    )
    return describe_contract(user, profile)


@router.post("/api/hr/contracts/{trainee_id}/extend", response_model=ContractRead)
def hr_extend_contract(
    trainee_id: int,
    payload: ContractExtendRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    user, profile = extend_contract(db, trainee_id=trainee_id, new_end_date=payload.new_end_date, actor=session)
    return describe_contract(user, profile)


@router.post("/api/hr/contracts/{trainee_id}/terminate", response_model=ContractRead)
def hr_terminate_contract(
    trainee_id: int,
    payload: ContractTerminateRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    result = terminate_contract(db, trainee_id=trainee_id, reason=payload.reason, actor=session)
    return describe_contract(result.user, result.profile)


@router.get("/api/hr/trainees/unassigned", response_model=list[TraineeRead])
def hr_unassigned_trainees(
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> list[TraineeRead]:
    return [_trainee_read(user, profile) for user, profile in list_unassigned_trainees(db)]


@router.get("/api/hr/mentors", response_model=list[MentorLoadRead])
def hr_department_mentors(
    department: str = Query(min_length=1, max_length=255),
    eligible_only: bool = Query(default=False),
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> list[MentorLoadRead]:
    candidates = eligible_mentors(db, department) if eligible_only else list_department_mentors(db, department)
    return [_mentor_read(candidate) for candidate in candidates]


@router.post("/api/hr/trainees/{trainee_id}/mentor", response_model=ContractRead)
def hr_assign_mentor(
    trainee_id: int,
    payload: MentorAssignmentRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    trainee, profile, _mentor = assign_mentor(
        db,
        trainee_id=trainee_id,
        mentor_id=payload.mentor_id,
        contract_type=payload.contract_type,
        start_date=payload.contract_start_date,
        duration=payload.contract_duration,
        actor=session,
    )
    return describe_contract(trainee, profile)


@router.get("/api/mentor/trainees", response_model=list[ContractRead])
def mentor_trainees(
    session: AuthSession = Depends(require_roles(UserRole.MENTOR)),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    today = local_today()
    return [
        describe_contract(user, profile, today=today)
        for user, profile in list_mentor_trainees(db, mentor_id=session.principal_id)
    ]


@router.get("/api/me/contract", response_model=ContractRead)
def my_contract(
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    user = db.get(User, session.principal_id)
    profile = get_profile(db, user) if user is not None else None
    if user is None or profile is None:
        raise NotFound("Profile not found.")
    return describe_contract(user, profile)
