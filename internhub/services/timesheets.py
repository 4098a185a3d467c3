from __future__ import annotations

import re
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from internhub.audit import record_audit
from internhub.errors import ApiError, DuplicateSubmission, NotFound, Unauthorized
from internhub.models import (
    TRAINEE_ROLES,
    AuditActorType,
    Timesheet,
    TimesheetStatus,
    User,
    UserRole,
)
from internhub.security import AuthSession, ensure_role
from internhub.services.identity import get_profile
from internhub.services.notifications import NOTIFICATION_TYPE_TIMESHEET_DECISION, add_notification

WEEKDAY_COUNT = 5
MAX_WEEKLY_HOURS = 168
ISO_WEEK_PATTERN = re.compile(r"^(\d{4})-W(\d{2})$")

ALLOWED_TRANSITIONS: dict[TimesheetStatus, frozenset[TimesheetStatus]] = {
    TimesheetStatus.PENDING: frozenset(
        {TimesheetStatus.MENTOR_APPROVED, TimesheetStatus.APPROVED, TimesheetStatus.REJECTED}
    ),
    TimesheetStatus.MENTOR_APPROVED: frozenset({TimesheetStatus.APPROVED, TimesheetStatus.REJECTED}),
    TimesheetStatus.APPROVED: frozenset(),
    TimesheetStatus.REJECTED: frozenset(),
}

# Which role may move a timesheet out of which state, and where to.
ROLE_TRANSITIONS: dict[UserRole, dict[TimesheetStatus, frozenset[TimesheetStatus]]] = {
    UserRole.MENTOR: {
        TimesheetStatus.PENDING: frozenset({TimesheetStatus.MENTOR_APPROVED, TimesheetStatus.REJECTED}),
    },
    UserRole.HR: {
        TimesheetStatus.PENDING: frozenset({TimesheetStatus.APPROVED, TimesheetStatus.REJECTED}),
        TimesheetStatus.MENTOR_APPROVED: frozenset({TimesheetStatus.APPROVED, TimesheetStatus.REJECTED}),
    },
}


def can_transition(current: TimesheetStatus, target: TimesheetStatus, role: UserRole) -> bool:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        return False
    return target in ROLE_TRANSITIONS.get(role, {}).get(current, frozenset())


def _ensure_transition(timesheet: Timesheet, target: TimesheetStatus, role: UserRole) -> None:
    if not can_transition(timesheet.status, target, role):
        raise ApiError(
            status_code=409,
            code="INVALID_TRANSITION",
            message=f"Timesheet cannot move from {timesheet.status.value} to {target.value}.",
        )


def iso_week_label(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def normalize_week(value: str) -> str:
    """Accept ``YYYY-Www`` or any ISO date inside the week."""
    raw = (value or "").strip().upper()
    match = ISO_WEEK_PATTERN.match(raw)
    if match:
        year, week = int(match.group(1)), int(match.group(2))
        try:
            date.fromisocalendar(year, week, 1)
        except ValueError as exc:
            raise ApiError(status_code=422, code="INVALID_WEEK", message="Week number is out of range.") from exc
        return f"{year}-W{week:02d}"
    try:
        return iso_week_label(date.fromisoformat(raw))
    except ValueError as exc:
        raise ApiError(status_code=422, code="INVALID_WEEK", message="Week must look like 2024-W05.") from exc


def submit_timesheet(
    db: Session,
    *,
    actor: AuthSession,
    week: str,
    daily_descriptions: list[str],
    hours_worked: float | None = None,
) -> Timesheet:
    ensure_role(actor, TRAINEE_ROLES)
    if len(daily_descriptions) != WEEKDAY_COUNT:
        raise ApiError(
            status_code=422,
            code="INVALID_DESCRIPTIONS",
            message="Exactly five weekday descriptions are required.",
        )
    if hours_worked is not None and not (0 < hours_worked <= MAX_WEEKLY_HOURS):
        raise ApiError(status_code=422, code="INVALID_HOURS", message="Hours worked must be between 0 and 168.")

    user = db.get(User, actor.principal_id)
    if user is None:
        raise NotFound("User not found.")
    profile = get_profile(db, user)
    if profile is None or profile.mentor_id is None:
        raise ApiError(
            status_code=422,
            code="MENTOR_NOT_ASSIGNED",
            message="A mentor must be assigned before timesheets can be submitted.",
        )

    week_label = normalize_week(week)
    existing_id = db.scalar(
        select(Timesheet.id).where(Timesheet.submitter_id == user.id, Timesheet.week == week_label)
    )
    if existing_id is not None:
        raise DuplicateSubmission()

    timesheet = Timesheet(
        submitter_id=user.id,
        submitter_role=user.role,
        mentor_id=profile.mentor_id,
        week=week_label,
        daily_descriptions=[item.strip() for item in daily_descriptions],
        hours_worked=hours_worked,
        status=TimesheetStatus.PENDING,
        submitted_at=datetime.now(timezone.utc),
    )
    db.add(timesheet)
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="TIMESHEET_SUBMITTED",
        entity_type="timesheet",
        details={"week": week_label, "mentor_id": profile.mentor_id},
    )
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent submission for the same week won the unique constraint.
        db.rollback()
        raise DuplicateSubmission() from exc
    db.refresh(timesheet)
    return timesheet


def get_timesheet(db: Session, timesheet_id: int) -> Timesheet:
    timesheet = db.get(Timesheet, timesheet_id)
    if timesheet is None:
        raise NotFound("Timesheet not found.")
    return timesheet


def _notify_submitter(db: Session, timesheet: Timesheet, message: str) -> None:
    add_notification(
        db,
        user_id=timesheet.submitter_id,
        message=message,
        type=NOTIFICATION_TYPE_TIMESHEET_DECISION,
    )


def mentor_decide(
    db: Session,
    *,
    actor: AuthSession,
    timesheet_id: int,
    approve: bool,
    feedback: str | None = None,
) -> Timesheet:
    ensure_role(actor, {UserRole.MENTOR})
    timesheet = get_timesheet(db, timesheet_id)
    if timesheet.mentor_id != actor.principal_id:
        raise Unauthorized("Only the assigned mentor can review this timesheet.")

    target = TimesheetStatus.MENTOR_APPROVED if approve else TimesheetStatus.REJECTED
    _ensure_transition(timesheet, target, actor.role)

    now_utc = datetime.now(timezone.utc)
    cleaned_feedback = (feedback or "").strip() or None
    timesheet.status = target
    timesheet.mentor_feedback = cleaned_feedback
    if approve:
        timesheet.mentor_approved_at = now_utc
        timesheet.mentor_approved_by = actor.principal_id
        _notify_submitter(db, timesheet, f"Your timesheet for {timesheet.week} was approved by your mentor.")
    else:
        timesheet.rejected_at = now_utc
        timesheet.rejected_by = actor.principal_id
        timesheet.rejected_by_role = actor.role.value
        timesheet.rejection_reason = cleaned_feedback
        _notify_submitter(db, timesheet, f"Your timesheet for {timesheet.week} was rejected by your mentor.")

    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="TIMESHEET_MENTOR_APPROVED" if approve else "TIMESHEET_MENTOR_REJECTED",
        entity_type="timesheet",
        entity_id=str(timesheet.id),
    )
    db.commit()
    db.refresh(timesheet)
    return timesheet


def hr_decide(
    db: Session,
    *,
    actor: AuthSession,
    timesheet_id: int,
    approve: bool,
    feedback: str | None = None,
    rejection_reason: str | None = None,
) -> Timesheet:
    ensure_role(actor, {UserRole.HR})
    timesheet = get_timesheet(db, timesheet_id)
    target = TimesheetStatus.APPROVED if approve else TimesheetStatus.REJECTED
    _ensure_transition(timesheet, target, actor.role)

    now_utc = datetime.now(timezone.utc)
    timesheet.status = target
    timesheet.hr_feedback = (feedback or "").strip() or None
    if approve:
        timesheet.approved_at = now_utc
        timesheet.approved_by = actor.principal_id
        timesheet.approved_by_role = actor.role.value
        _notify_submitter(db, timesheet, f"Your timesheet for {timesheet.week} has been approved.")
    else:
        timesheet.rejected_at = now_utc
        timesheet.rejected_by = actor.principal_id
        timesheet.rejected_by_role = actor.role.value
        timesheet.rejection_reason = (rejection_reason or feedback or "").strip() or None
        _notify_submitter(db, timesheet, f"Your timesheet for {timesheet.week} has been rejected by HR.")

    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="TIMESHEET_APPROVED" if approve else "TIMESHEET_REJECTED",
        entity_type="timesheet",
        entity_id=str(timesheet.id),
    )
    db.commit()
    db.refresh(timesheet)
    return timesheet


def list_own_timesheets(db: Session, *, actor: AuthSession) -> list[Timesheet]:
    ensure_role(actor, TRAINEE_ROLES)
    stmt = (
        select(Timesheet)
        .where(Timesheet.submitter_id == actor.principal_id)
        .order_by(Timesheet.week.desc(), Timesheet.id.desc())
    )
    return list(db.scalars(stmt).all())


def list_mentor_queue(
    db: Session,
    *,
    actor: AuthSession,
    status: TimesheetStatus | None = TimesheetStatus.PENDING,
) -> list[Timesheet]:
    ensure_role(actor, {UserRole.MENTOR})
    stmt = select(Timesheet).where(Timesheet.mentor_id == actor.principal_id)
    if status is not None:
        stmt = stmt.where(Timesheet.status == status)
    stmt = stmt.order_by(Timesheet.submitted_at.asc(), Timesheet.id.asc())
    return list(db.scalars(stmt).all())


def list_timesheets_for_hr(
    db: Session,
    *,
    actor: AuthSession,
    status: TimesheetStatus | None = None,
    submitter_id: int | None = None,
) -> list[Timesheet]:
    ensure_role(actor, {UserRole.HR})
    stmt = select(Timesheet)
    if status is not None:
        stmt = stmt.where(Timesheet.status == status)
    if submitter_id is not None:
        stmt = stmt.where(Timesheet.submitter_id == submitter_id)
    stmt = stmt.order_by(Timesheet.submitted_at.desc(), Timesheet.id.desc())
    return list(db.scalars(stmt).all())
