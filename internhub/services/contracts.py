from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from internhub.audit import record_audit
from internhub.errors import ApiError, InvalidDateRange, InvalidExtension, MissingReason, NotFound
from internhub.models import AuditActorType, ContractStatus, ContractType, Profile, User, UserRole
from internhub.security import AuthSession, ensure_role
from internhub.services.identity import get_trainee
from internhub.services.notifications import (
    NOTIFICATION_TYPE_CONTRACT_TERMINATION,
    TEMPLATE_CONTRACT_TERMINATION,
    add_notification,
    send_templated_email,
)
from internhub.settings import get_settings

EXPIRING_SOON_DAYS = 7
_NAIROBI_FALLBACK = timezone(timedelta(hours=3), "EAT")


@lru_cache
def programme_timezone() -> ZoneInfo | timezone:
    raw_name = (get_settings().programme_timezone or "").strip() or "Africa/Nairobi"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return _NAIROBI_FALLBACK


def local_today(now_utc: datetime | None = None) -> date:
    reference = now_utc or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return reference.astimezone(programme_timezone()).date()


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the end of a shorter month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def derive_end_date(contract_type: ContractType, start_date: date, duration: int) -> date:
    if duration < 1:
        raise InvalidDateRange("Contract duration must be at least 1.")
    if contract_type == ContractType.MONTHLY:
        return add_months(start_date, duration)
    if contract_type == ContractType.YEARLY:
        return add_months(start_date, duration * 12)
    # Early contracts are short placements measured in weeks.
    return start_date + timedelta(weeks=duration)


def contract_duration_for(contract_type: ContractType, start_date: date, end_date: date) -> int | None:
    """Whole number of contract units spanning the dates, or ``None`` when they do not line up."""
    if contract_type == ContractType.EARLY:
        units, remainder = divmod((end_date - start_date).days, 7)
        return units if units >= 1 and remainder == 0 else None
    months = (end_date.year - start_date.year) * 12 + end_date.month - start_date.month
    if contract_type == ContractType.YEARLY:
        if months % 12:
            return None
        months //= 12
    if months < 1 or derive_end_date(contract_type, start_date, months) != end_date:
        return None
    return months


@dataclass(frozen=True, slots=True)
class ContractTerms:
    contract_type: ContractType | None
    start_date: date | None
    end_date: date | None
    terminated: bool = False

    @classmethod
    def from_profile(cls, profile: Profile) -> "ContractTerms":
        return cls(
            contract_type=profile.contract_type,
            start_date=profile.contract_start_date,
            end_date=profile.contract_end_date,
            terminated=bool(profile.contract_terminated),
        )


def derive_contract_status(now: date, contract: ContractTerms) -> ContractStatus:
    """Status is computed on read from the stored dates and never persisted."""
    today = local_today(now) if isinstance(now, datetime) else now
    if contract.terminated:
        return ContractStatus.TERMINATED
    if contract.contract_type is None or contract.start_date is None or contract.end_date is None:
        return ContractStatus.NO_CONTRACT
    if today < contract.start_date:
        return ContractStatus.UPCOMING
    if today > contract.end_date:
        return ContractStatus.EXPIRED
    if (contract.end_date - today).days <= EXPIRING_SOON_DAYS:
        return ContractStatus.EXPIRING_SOON
    return ContractStatus.ACTIVE


def days_remaining(today: date, contract: ContractTerms) -> int | None:
    if contract.terminated or contract.end_date is None:
        return None
    return (contract.end_date - today).days


def _ensure_not_terminated(profile: Profile) -> None:
    if profile.contract_terminated:
        raise ApiError(
            status_code=409,
            code="CONTRACT_TERMINATED",
            message="This contract has been terminated and can no longer be changed.",
        )


def _reset_expiry_notices(profile: Profile) -> None:
    profile.expiry_notice_threshold = None
    profile.expiry_notice_end_date = None


def set_contract(
    db: Session,
    *,
    trainee_id: int,
    contract_type: ContractType,
    start_date: date,
    end_date: date | None = None,
    duration: int | None = None,
    actor: AuthSession,
) -> tuple[User, Profile]:
    ensure_role(actor, {UserRole.HR})
    user, profile = get_trainee(db, trainee_id)
    _ensure_not_terminated(profile)

    if end_date is None:
        if duration is None:
            raise InvalidDateRange("Provide an end date or a duration.")
        end_date = derive_end_date(contract_type, start_date, duration)
    if start_date >= end_date:
        raise InvalidDateRange()

    if profile.contract_end_date != end_date:
        _reset_expiry_notices(profile)
    profile.contract_type = contract_type
    profile.contract_start_date = start_date
    profile.contract_end_date = end_date
    profile.contract_duration = contract_duration_for(contract_type, start_date, end_date)
    profile.contract_updated_at = datetime.now(timezone.utc)
    profile.contract_updated_by = actor.principal_id
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="CONTRACT_SET",
        entity_type="contract",
        entity_id=str(user.id),
        details={
            "contract_type": contract_type.value,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "duration": duration,
        },
    )
    db.commit()
    db.refresh(profile)
    return user, profile


def extend_contract(
    db: Session,
    *,
    trainee_id: int,
    new_end_date: date,
    actor: AuthSession,
) -> tuple[User, Profile]:
    ensure_role(actor, {UserRole.HR})
    user, profile = get_trainee(db, trainee_id)
    _ensure_not_terminated(profile)
    if profile.contract_end_date is None:
        raise NotFound("This trainee has no contract to extend.")
    if new_end_date <= profile.contract_end_date:
        raise InvalidExtension()

    previous_end_date = profile.contract_end_date
    profile.contract_end_date = new_end_date
    if profile.contract_type is None or profile.contract_start_date is None:
        profile.contract_duration = None
    else:
        profile.contract_duration = contract_duration_for(
            profile.contract_type, profile.contract_start_date, new_end_date
        )
    profile.contract_updated_at = datetime.now(timezone.utc)
    profile.contract_updated_by = actor.principal_id
    _reset_expiry_notices(profile)
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="CONTRACT_EXTENDED",
        entity_type="contract",
        entity_id=str(user.id),
        details={
            "previous_end_date": previous_end_date.isoformat(),
            "new_end_date": new_end_date.isoformat(),
        },
    )
    db.commit()
    db.refresh(profile)
    return user, profile


@dataclass(frozen=True, slots=True)
class TerminationResult:
    user: User
    profile: Profile
    mentor_notified: bool
    email_queued: bool


def terminate_contract(
    db: Session,
    *,
    trainee_id: int,
    reason: str,
    actor: AuthSession,
) -> TerminationResult:
    """Terminate a contract and deactivate the trainee in a single commit.

    The mentor's in-app notification and the trainee's email are staged in the same
    transaction, so a failed commit leaves no partial termination behind.
    """
    ensure_role(actor, {UserRole.HR})
    cleaned_reason = " ".join((reason or "").split())
    if not cleaned_reason:
        raise MissingReason()

    user, profile = get_trainee(db, trainee_id)
    _ensure_not_terminated(profile)

    now_utc = datetime.now(timezone.utc)
    profile.contract_terminated = True
    profile.termination_reason = cleaned_reason
    profile.terminated_at = now_utc
    profile.terminated_by = actor.principal_id
    user.is_active = False
    user.deactivated_at = now_utc
    user.deactivated_by = actor.principal_id

    mentor_notified = False
    if profile.mentor_id is not None:
        add_notification(
            db,
            user_id=profile.mentor_id,
            message=f"{user.full_name}'s contract has been terminated.",
            type=NOTIFICATION_TYPE_CONTRACT_TERMINATION,
            related_user_id=user.id,
            related_user_role=user.role.value,
        )
        mentor_notified = True

    job = send_templated_email(
        db,
        to=user.email,
        template=TEMPLATE_CONTRACT_TERMINATION,
        data={
            "user_name": user.full_name,
            "termination_reason": cleaned_reason,
        },
        user_id=user.id,
        idempotency_key=f"CONTRACT_TERMINATION:{user.id}",
        now_utc=now_utc,
    )
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action="CONTRACT_TERMINATED",
        entity_type="contract",
        entity_id=str(user.id),
        details={"reason": cleaned_reason, "mentor_id": profile.mentor_id},
    )
    db.commit()
    db.refresh(profile)
    db.refresh(user)
    return TerminationResult(
        user=user,
        profile=profile,
        mentor_notified=mentor_notified,
        email_queued=job is not None,
    )


def describe_contract(user: User, profile: Profile, *, today: date | None = None) -> dict:
    reference = today or local_today()
    terms = ContractTerms.from_profile(profile)
    return {
        "user_id": user.id,
        "full_name": user.full_name,
        "role": user.role,
        "department": user.department,
        "mentor_id": profile.mentor_id,
        "assigned_at": profile.assigned_at,
        "contract_type": profile.contract_type,
        "contract_start_date": profile.contract_start_date,
        "contract_end_date": profile.contract_end_date,
        "contract_duration": profile.contract_duration,
        "contract_terminated": bool(profile.contract_terminated),
        "termination_reason": profile.termination_reason,
        "status": derive_contract_status(reference, terms),
        "days_remaining": days_remaining(reference, terms),
    }
