from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from internhub.db import get_db
from internhub.models import Timesheet, TimesheetStatus, UserRole
from internhub.schemas import TimesheetDecisionRequest, TimesheetRead, TimesheetSubmitRequest
from internhub.security import AuthSession, require_roles
from internhub.services.timesheets import (
    hr_decide,
    list_mentor_queue,
    list_own_timesheets,
    list_timesheets_for_hr,
    mentor_decide,
    submit_timesheet,
)

router = APIRouter(tags=["timesheets"])

_trainee = require_roles(UserRole.INTERN, UserRole.ATTACHEE)
_mentor = require_roles(UserRole.MENTOR)
_hr = require_roles(UserRole.HR)


@router.post("/api/timesheets", response_model=TimesheetRead, status_code=status.HTTP_201_CREATED)
def create_timesheet(
    payload: TimesheetSubmitRequest,
    request: Request,
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
) -> Timesheet:
    timesheet = submit_timesheet(
        db,
        actor=session,
        week=payload.week,
        daily_descriptions=payload.daily_descriptions,
        hours_worked=payload.hours_worked,
    )
    request.state.timesheet_id = timesheet.id
    return timesheet


@router.get("/api/timesheets/mine", response_model=list[TimesheetRead])
def my_timesheets(
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
) -> list[Timesheet]:
    return list_own_timesheets(db, actor=session)


@router.get("/api/mentor/timesheets", response_model=list[TimesheetRead])
def mentor_timesheets(
    status_filter: TimesheetStatus | None = Query(default=TimesheetStatus.PENDING, alias="status"),
    session: AuthSession = Depends(_mentor),
    db: Session = Depends(get_db),
) -> list[Timesheet]:
    return list_mentor_queue(db, actor=session, status=status_filter)


@router.post("/api/mentor/timesheets/{timesheet_id}/decision", response_model=TimesheetRead)
def mentor_timesheet_decision(
    timesheet_id: int,
    payload: TimesheetDecisionRequest,
    request: Request,
    session: AuthSession = Depends(_mentor),
    db: Session = Depends(get_db),
) -> Timesheet:
    request.state.timesheet_id = timesheet_id
    return mentor_decide(
        db,
        actor=session,
        timesheet_id=timesheet_id,
        approve=payload.approve,
        feedback=payload.feedback,
    )


@router.get("/api/hr/timesheets", response_model=list[TimesheetRead])
def hr_timesheets(
    status_filter: TimesheetStatus | None = Query(default=None, alias="status"),
    submitter_id: int | None = Query(default=None, ge=1),
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> list[Timesheet]:
    return list_timesheets_for_hr(db, actor=session, status=status_filter, submitter_id=submitter_id)


@router.post("/api/hr/timesheets/{timesheet_id}/decision", response_model=TimesheetRead)
def hr_timesheet_decision(
    timesheet_id: int,
    payload: TimesheetDecisionRequest,
    request: Request,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> Timesheet:
    request.state.timesheet_id = timesheet_id
    return hr_decide(
        db,
        actor=session,
        timesheet_id=timesheet_id,
        approve=payload.approve,
        feedback=payload.feedback,
        rejection_reason=payload.rejection_reason,
    )
