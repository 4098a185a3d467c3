from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from internhub.audit import record_audit
from internhub.db import SessionLocal
from internhub.models import PROFILE_MODELS, AuditActorType, User
from internhub.services.contracts import local_today
from internhub.services.notifications import (
    NOTIFICATION_TYPE_CONTRACT_EXPIRY_1WEEK,
    NOTIFICATION_TYPE_CONTRACT_EXPIRY_2WEEKS,
    TEMPLATE_CONTRACT_EXPIRY,
    add_notification,
    send_templated_email,
)

logger = logging.getLogger("internhub.contract_expiry")

TWO_WEEK_THRESHOLD = 14
ONE_WEEK_THRESHOLD = 7


@dataclass(frozen=True, slots=True)
class ExpiryNotice:
    user_id: int
    threshold: int
    end_date: date
    days_until_expiry: int


def expiry_threshold(end_date: date, today: date) -> int | None:
    """14 for an end date 8-14 days out, 7 for 1-7 days out, otherwise ``None``."""
    days_left = (end_date - today).days
    if days_left <= 0:
        return None
    if days_left <= ONE_WEEK_THRESHOLD:
        return ONE_WEEK_THRESHOLD
    if days_left <= TWO_WEEK_THRESHOLD:
        return TWO_WEEK_THRESHOLD
    return None


def _notice_message(threshold: int, end_date: date) -> tuple[str, str]:
    when = "1 week" if threshold == ONE_WEEK_THRESHOLD else "2 weeks"
    notification_type = (
        NOTIFICATION_TYPE_CONTRACT_EXPIRY_1WEEK
        if threshold == ONE_WEEK_THRESHOLD
        else NOTIFICATION_TYPE_CONTRACT_EXPIRY_2WEEKS
    )
    return f"Your contract will expire in {when} on {end_date.strftime('%d/%m/%Y')}", notification_type


def scan_contract_expiries(
    now_utc: datetime | None = None,
    *,
    db: Session | None = None,
) -> list[ExpiryNotice]:
    """Send each due 14-day and 7-day expiry notice exactly once per contract end date.

    The last notified ``(threshold, end_date)`` pair is stored on the profile, so
    repeated scans are no-ops until the end date changes.
    """
    if db is None:
        with SessionLocal() as managed_db:
            return scan_contract_expiries(now_utc, db=managed_db)

    reference_utc = now_utc or datetime.now(timezone.utc)
    today = local_today(reference_utc)
    notices: list[ExpiryNotice] = []

    for model in PROFILE_MODELS:
        rows = db.execute(
            select(model, User)
            .join(User, User.id == model.user_id)
            .where(
                model.contract_terminated.is_(False),
                model.contract_end_date.is_not(None),
            )
            .order_by(model.user_id.asc())
        ).all()
        for profile, user in rows:
            end_date = profile.contract_end_date
            threshold = expiry_threshold(end_date, today)
            if threshold is None:
                continue
            if profile.expiry_notice_threshold == threshold and profile.expiry_notice_end_date == end_date:
                continue

            days_left = (end_date - today).days
            message, notification_type = _notice_message(threshold, end_date)
            add_notification(db, user_id=user.id, message=message, type=notification_type)
            send_templated_email(
                db,
                to=user.email,
                template=TEMPLATE_CONTRACT_EXPIRY,
                data={
                    "user_name": user.full_name,
                    "days_until_expiry": days_left,
                    "contract_end_date": end_date.strftime("%d/%m/%Y"),
                    "is_urgent": days_left <= ONE_WEEK_THRESHOLD,
                },
                user_id=user.id,
                idempotency_key=f"CONTRACT_EXPIRY:{user.id}:{end_date.isoformat()}:{threshold}",
                now_utc=reference_utc,
            )
            profile.expiry_notice_threshold = threshold
            profile.expiry_notice_end_date = end_date
            record_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id="contract_expiry_scan",
                action="CONTRACT_EXPIRY_NOTICE",
                entity_type="contract",
                entity_id=str(user.id),
                details={"threshold": threshold, "end_date": end_date.isoformat(), "days_left": days_left},
            )
            notices.append(
                ExpiryNotice(
                    user_id=user.id,
                    threshold=threshold,
                    end_date=end_date,
                    days_until_expiry=days_left,
                )
            )

    db.commit()
    if notices:
        logger.info(
            "contract_expiry_scan_complete",
            extra={"notice_count": len(notices), "local_day": today.isoformat()},
        )
    return notices
