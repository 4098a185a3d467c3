from __future__ import annotations

import logging
import re
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from internhub.audit import log_audit
from internhub.db import SessionLocal
from internhub.errors import NotFound
from internhub.models import AuditActorType, Notification, NotificationJob
from internhub.settings import get_login_url, get_settings

logger = logging.getLogger("internhub.notifications")

TEMPLATE_WELCOME = "welcome"
TEMPLATE_CONTRACT_TERMINATION = "contract_termination"
TEMPLATE_CONTRACT_EXPIRY = "contract_expiry"

NOTIFICATION_TYPE_CONTRACT_TERMINATION = "contract_termination"
NOTIFICATION_TYPE_CONTRACT_EXPIRY_2WEEKS = "contract_expiry_2weeks"
NOTIFICATION_TYPE_CONTRACT_EXPIRY_1WEEK = "contract_expiry_1week"
NOTIFICATION_TYPE_TIMESHEET_DECISION = "timesheet_decision"
NOTIFICATION_TYPE_MENTOR_ASSIGNMENT = "mentor_assignment"

JOB_STATUS_PENDING = "PENDING"
JOB_STATUS_SENDING = "SENDING"
JOB_STATUS_SENT = "SENT"
JOB_STATUS_FAILED = "FAILED"
JOB_STATUS_SKIPPED = "SKIPPED"

EMAIL_ADDRESS_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    recipients: list[str]
    subject: str
    body: str


class NotificationChannel:
    configured: bool = False

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        raise NotImplementedError


def normalize_notification_email(value: str) -> str | None:
    normalized = " ".join((value or "").strip().lower().split())
    if not normalized:
        return None
    if not EMAIL_ADDRESS_PATTERN.match(normalized):
        return None
    return normalized


class EmailChannel(NotificationChannel):
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = bool(settings.notification_email_enabled)
        self.smtp_host = (settings.smtp_host or "").strip()
        self.smtp_port = int(settings.smtp_port or 587)
        self.smtp_user = (settings.smtp_user or "").strip()
        self.smtp_pass = settings.smtp_pass or ""
        self.smtp_from = (settings.smtp_from or "").strip()
        self.smtp_use_tls = bool(settings.smtp_use_tls)
        self.configured = bool(self.smtp_host and self.smtp_from)

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        recipients = [item.strip() for item in message.recipients if item and item.strip()]
        if not self.enabled:
            logger.info(
                "email_channel_disabled",
                extra={
                    "subject": message.subject,
                    "recipient_count": len(recipients),
                },
            )
            return {
                "mode": "disabled",
                "sent": 0,
                "recipients": recipients,
            }
        if not recipients:
            logger.info(
                "email_channel_skip_no_recipients",
                extra={
                    "subject": message.subject,
                },
            )
            return {
                "mode": "skipped_no_recipients",
                "sent": 0,
                "recipients": [],
            }

        if not self.configured:
            logger.info(
                "email_channel_placeholder_send",
                extra={
                    "subject": message.subject,
                    "recipients": recipients,
                },
            )
            return {
                "mode": "not_configured",
                "sent": 0,
                "recipients": recipients,
            }

        email_message = EmailMessage()
        email_message["From"] = self.smtp_from
        email_message["To"] = ", ".join(recipients)
        email_message["Subject"] = message.subject
        email_message.set_content(message.body)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as smtp_client:
            if self.smtp_use_tls:
                smtp_client.starttls()
            if self.smtp_user:
                smtp_client.login(self.smtp_user, self.smtp_pass)
            smtp_client.send_message(email_message)
        return {
            "mode": "sent",
            "sent": len(recipients),
            "recipients": recipients,
        }

    def config_status(self) -> dict[str, Any]:
        missing_fields: list[str] = []
        if not self.smtp_host:
            missing_fields.append("SMTP_HOST")
        if not self.smtp_from:
            missing_fields.append("SMTP_FROM")
        return {
            "enabled": bool(self.enabled),
            "configured": self.configured,
            "smtp_host_set": bool(self.smtp_host),
            "smtp_from_set": bool(self.smtp_from),
            "smtp_user_set": bool(self.smtp_user),
            "smtp_use_tls": bool(self.smtp_use_tls),
            "missing_fields": missing_fields,
        }


def _safe_send_email(channel: NotificationChannel, message: NotificationMessage) -> dict[str, Any]:
    try:
        return channel.send(message)
    except Exception as exc:
        logger.exception(
            "notification_email_send_failed",
            extra={
                "subject": message.subject,
                "recipients": list(message.recipients),
            },
        )
        return {
            "mode": "send_exception",
            "sent": 0,
            "recipients": list(message.recipients),
            "error": str(exc)[:500],
        }


# In-app notifications


def add_notification(
    db: Session,
    *,
    user_id: int,
    message: str,
    type: str,
    related_user_id: int | None = None,
    related_user_role: str | None = None,
) -> Notification:
    """Stage an in-app notification; the caller's commit persists it."""
    notification = Notification(
        user_id=user_id,
        message=message,
        type=type,
        read=False,
        related_user_id=related_user_id,
        related_user_role=related_user_role,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    return notification


def list_notifications(db: Session, *, user_id: int, unread_only: bool = False) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
    return list(db.scalars(stmt).all())


def count_unread_notifications(db: Session, *, user_id: int) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
        or 0
    )


def mark_notification_read(db: Session, *, user_id: int, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    # Another user's notification is reported as missing.
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification not found.")
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_notifications_read(db: Session, *, user_id: int) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    db.commit()
    return int(result.rowcount or 0)


# Email outbox


def _days_label(days: int) -> str:
    return f"{days} Day{'s' if days != 1 else ''}"


def render_email(template: str, data: dict[str, Any]) -> tuple[str, str]:
    settings = get_settings()
    organisation = settings.organisation_name
    hr_contact = settings.hr_contact_email
    user_name = str(data.get("user_name") or "-")
    footer = (
        f"\n\nHR Department Contact: {hr_contact}\n"
        f"This is an automated message from {organisation}. Please do not reply to this email."
    )

    if template == TEMPLATE_CONTRACT_TERMINATION:
        subject = f"Contract Termination Notification - {organisation}"
        body = (
            f"Dear {user_name},\n\n"
            "We regret to inform you that your contract with our organization has been "
            "terminated effective immediately.\n\n"
            f"Reason for Termination: {data.get('termination_reason') or '-'}\n\n"
            "Your access to company systems and facilities has been deactivated. "
            "If you have any company property, please arrange for its return as soon as possible.\n\n"
            "For any questions regarding this decision, please contact the HR department."
        )
        return subject, body + footer

    if template == TEMPLATE_CONTRACT_EXPIRY:
        days = int(data.get("days_until_expiry") or 0)
        is_urgent = days <= 7
        urgency = "URGENT" if is_urgent else "REMINDER"
        subject = f"{urgency}: Contract Expiry Notice - {days} days remaining"
        advice = (
            "Please contact HR immediately to discuss contract renewal or transition arrangements."
            if is_urgent
            else "Please contact HR to discuss contract renewal options or any questions about your contract."
        )
        body = (
            f"Dear {user_name},\n\n"
            f"This is a {'final ' if is_urgent else ''}reminder that your contract will expire soon.\n\n"
            f"{_days_label(days)} Remaining\n"
            f"Contract End Date: {data.get('contract_end_date') or '-'}\n\n"
            f"{advice}\n\n"
            "Next steps:\n"
            "1. Contact HR to discuss renewal options\n"
            "2. Complete any pending work or handovers\n"
            "3. Prepare for a transition if renewal is not confirmed"
        )
        return subject, body + footer

    if template == TEMPLATE_WELCOME:
        role = str(data.get("user_role") or "").replace("_", " ")
        subject = f"Welcome to {organisation}"
        body = (
            f"Dear {user_name},\n\n"
            f"Welcome! We're excited to have you join us as a {role}.\n\n"
            f"Email: {data.get('email') or '-'}\n"
            f"Role: {role.title()}\n\n"
            f"You can sign in at {data.get('login_url') or get_login_url()}"
        )
        return subject, body + footer

    raise ValueError(f"Unknown email template: {template}")


def _has_job(db: Session, *, idempotency_key: str) -> bool:
    # Sessions run with autoflush off, so unflushed jobs are checked directly.
    for pending in db.new:
        if isinstance(pending, NotificationJob) and pending.idempotency_key == idempotency_key:
            return True
    existing_id = db.scalar(select(NotificationJob.id).where(NotificationJob.idempotency_key == idempotency_key))
    return existing_id is not None


def send_templated_email(
    db: Session,
    *,
    to: str,
    template: str,
    data: dict[str, Any],
    idempotency_key: str,
    user_id: int | None = None,
    now_utc: datetime | None = None,
) -> NotificationJob | None:
    """Queue a templated email in the outbox.

    The job is staged on ``db`` and committed together with the change that caused it.
    Returns ``None`` when a job with the same idempotency key already exists or the
    address is unusable.
    """
    recipient = normalize_notification_email(to)
    if recipient is None:
        logger.warning(
            "notification_email_invalid_recipient",
            extra={"template": template, "user_id": user_id},
        )
        return None
    if _has_job(db, idempotency_key=idempotency_key):
        return None
    render_email(template, data)

    job = NotificationJob(
        user_id=user_id,
        recipient=recipient,
        template=template,
        payload=dict(data),
        scheduled_at_utc=now_utc or datetime.now(timezone.utc),
        status=JOB_STATUS_PENDING,
        attempts=0,
        last_error=None,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    return job


def _claim_due_pending_jobs(db: Session, *, now_utc: datetime, limit: int) -> list[NotificationJob]:
    stmt = (
        select(NotificationJob)
        .where(
            NotificationJob.status == JOB_STATUS_PENDING,
            NotificationJob.scheduled_at_utc <= now_utc,
        )
        .order_by(NotificationJob.scheduled_at_utc.asc(), NotificationJob.id.asc())
        .limit(limit)
    )
    jobs = list(db.scalars(stmt).all())
    for job in jobs:
        job.status = JOB_STATUS_SENDING
    db.commit()
    return jobs


def _finish_job(
    db: Session,
    job: NotificationJob,
    *,
    status: str,
    result: dict[str, Any],
    now_utc: datetime,
) -> NotificationJob:
    job.attempts = (job.attempts or 0) + 1
    job.status = status
    payload = dict(job.payload or {})
    payload["delivery"] = {
        "mode": str(result.get("mode") or "unknown"),
        "sent": int(result.get("sent") or 0),
    }
    job.payload = payload
    if status == JOB_STATUS_SENT:
        job.sent_at_utc = now_utc
        job.last_error = None
    else:
        job.last_error = str(result.get("error") or result.get("mode") or "EMAIL_NOT_SENT")[:4000]
    db.commit()
    db.refresh(job)
    return job


def send_pending_notifications(
    limit: int = 100,
    *,
    now_utc: datetime | None = None,
    db: Session | None = None,
    channel: NotificationChannel | None = None,
) -> list[NotificationJob]:
    if db is None:
        with SessionLocal() as managed_db:
            return send_pending_notifications(
                limit=limit,
                now_utc=now_utc,
                db=managed_db,
                channel=channel,
            )

    reference_utc = now_utc or datetime.now(timezone.utc)
    email_channel = channel or EmailChannel()

    claimed_jobs = _claim_due_pending_jobs(db, now_utc=reference_utc, limit=max(1, limit))
    processed: list[NotificationJob] = []
    for job in claimed_jobs:
        try:
            subject, body = render_email(job.template, job.payload or {})
        except ValueError as exc:
            result: dict[str, Any] = {"mode": "render_failed", "sent": 0, "error": str(exc)}
        else:
            message = NotificationMessage(recipients=[job.recipient], subject=subject, body=body)
            result = _safe_send_email(email_channel, message)

        sent_count = int(result.get("sent") or 0)
        if sent_count > 0:
            status = JOB_STATUS_SENT
        elif result.get("mode") == "disabled":
            status = JOB_STATUS_SKIPPED
        else:
            # Delivery failures are final; there is no retry schedule.
            status = JOB_STATUS_FAILED

        finished = _finish_job(db, job, status=status, result=result, now_utc=reference_utc)
        processed.append(finished)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id="notification_runner",
            action=f"NOTIFICATION_JOB_{status}",
            success=status != JOB_STATUS_FAILED,
            entity_type="notification_job",
            entity_id=str(finished.id),
            details={
                "template": finished.template,
                "user_id": finished.user_id,
                "idempotency_key": finished.idempotency_key,
                "email_mode": result.get("mode"),
                "error": finished.last_error,
            },
        )
        if status == JOB_STATUS_FAILED:
            logger.warning(
                "notification_job_failed",
                extra={
                    "job_id": finished.id,
                    "template": finished.template,
                    "error": finished.last_error,
                },
            )

    return processed


def get_notification_channel_health() -> dict[str, Any]:
    email_channel = EmailChannel()
    with SessionLocal() as session:
        pending_count = session.scalar(
            select(func.count()).select_from(NotificationJob).where(NotificationJob.status == JOB_STATUS_PENDING)
        )
        failed_count = session.scalar(
            select(func.count()).select_from(NotificationJob).where(NotificationJob.status == JOB_STATUS_FAILED)
        )
    return {
        "email_enabled": bool(get_settings().notification_email_enabled),
        "email": email_channel.config_status(),
        "pending_jobs": int(pending_count or 0),
        "failed_jobs": int(failed_count or 0),
    }
