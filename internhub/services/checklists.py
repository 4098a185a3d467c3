from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from internhub.audit import record_audit
from internhub.errors import ApiError, NotFound, Unauthorized
from internhub.models import (
    AuditActorType,
    Checklist,
    ChecklistItemType,
    Profile,
    User,
    UserRole,
)
from internhub.schemas import ChecklistItem
from internhub.security import AuthSession, ensure_role
from internhub.services.identity import ensure_profile
from internhub.storage.provider import StorageProvider, document_key

logger = logging.getLogger("internhub.checklists")

ATTACHEE_CHECKLIST_KEY = "attachee"
DEFAULT_COUNTY_CODE = 47


def _item(name: str, item_type: ChecklistItemType = ChecklistItemType.CHECKBOX) -> dict[str, Any]:
    return {"name": name, "type": item_type.value, "required": True}


def _file(name: str) -> dict[str, Any]:
    return _item(name, ChecklistItemType.FILE)


DEFAULT_COUNTY_ITEMS: list[dict[str, Any]] = [
    _file("Submit National ID Copy"),
    _file("Submit KRA PIN Certificate"),
    _item("Sign Internship Agreement"),
    _file("Submit Bank Account Details"),
    _item("Complete Personal Information Form"),
    _file("Submit Academic Documents"),
]

DEFAULT_ATTACHEE_ITEMS: list[dict[str, Any]] = [
    _file("Submit National ID Copy"),
    _file("Submit Institution Introduction Letter"),
    _file("Submit Insurance Cover"),
    _item("Sign Attachment Agreement"),
    _file("Submit Bank Account Details"),
    _item("Complete Personal Information Form"),
]

COUNTY_TEMPLATES: dict[int, list[dict[str, Any]]] = {
    47: [
        _file("Submit National ID Copy"),
        _file("Submit KRA PIN Certificate"),
        _item("Sign Non-Disclosure Agreement"),
        _file("Submit Bank Account Details"),
        _item("Complete Medical Examination"),
        _file("Submit Academic Transcripts"),
    ],
    1: [
        _file("Submit National ID Copy"),
        _file("Submit KRA PIN Certificate"),
        _item("Sign Employment Contract"),
        _file("Submit Bank Account Details"),
        _item("Complete Security Clearance"),
        _file("Submit Academic Certificates"),
    ],
    22: [
        _file("Submit National ID Copy"),
        _file("Submit KRA PIN Certificate"),
        _item("Sign Code of Conduct"),
        _file("Submit Bank Account Details"),
        _item("Complete Health Insurance Form"),
        _file("Submit Academic Transcripts"),
        _file("Submit Passport Photo"),
    ],
    32: [
        _file("Submit National ID Copy"),
        _file("Submit KRA PIN Certificate"),
        _item("Sign Internship Agreement"),
        _file("Submit Bank Account Details"),
        _item("Complete Emergency Contact Form"),
        _file("Submit Academic Records"),
    ],
    42: [
        _file("Submit National ID Copy"),
        _file("Submit KRA PIN Certificate"),
        _item("Sign Confidentiality Agreement"),
        _file("Submit Bank Account Details"),
        _item("Complete Background Check Form"),
        _file("Submit Academic Certificates"),
        _file("Submit Reference Letters"),
    ],
}

NEW_CHECKLIST_ITEMS: list[dict[str, Any]] = [
    _item("National ID Number", ChecklistItemType.TEXT),
    _file("Submit National ID Copy"),
    _item("KRA PIN Number", ChecklistItemType.TEXT),
    _file("Submit KRA PIN Certificate"),
    _item("Bank Name", ChecklistItemType.TEXT),
    _item("Bank Branch", ChecklistItemType.TEXT),
    _item("Account Number", ChecklistItemType.TEXT),
    _file("Submit Bank Account Details"),
]


def normalize_items(raw_items: list[Any] | None) -> list[dict[str, Any]]:
    """Validate checklist items; legacy plain-string items become required checkboxes."""
    normalized: list[dict[str, Any]] = []
    seen: set[str] = set()
    for raw in raw_items or []:
        if isinstance(raw, str):
            raw = {"name": raw, "type": ChecklistItemType.CHECKBOX.value, "required": True}
        elif isinstance(raw, ChecklistItem):
            raw = raw.model_dump(mode="json")
        try:
            item = ChecklistItem.model_validate(raw)
        except ValidationError as exc:
            raise ApiError(status_code=422, code="INVALID_CHECKLIST_ITEM", message=str(exc.errors()[0]["msg"])) from exc
        if item.name in seen:
            raise ApiError(
                status_code=409,
                code="DUPLICATE_ITEM",
                message=f"Checklist already contains an item named {item.name!r}.",
            )
        seen.add(item.name)
        normalized.append(item.model_dump(mode="json", exclude_none=True))
    return normalized


def checklist_key_for(user: User) -> str:
    if user.role == UserRole.INTERN:
        if user.county_code is None:
            raise NotFound("No county is assigned to this intern.")
        return str(user.county_code)
    if user.role == UserRole.ATTACHEE:
        return ATTACHEE_CHECKLIST_KEY
    raise Unauthorized("Only interns and attachees have an onboarding checklist.")


def get_or_create_checklist(db: Session, key: str) -> Checklist:
    checklist = db.get(Checklist, key)
    if checklist is not None:
        return checklist
    items = DEFAULT_ATTACHEE_ITEMS if key == ATTACHEE_CHECKLIST_KEY else DEFAULT_COUNTY_ITEMS
    checklist = Checklist(key=key, items=[dict(item) for item in items])
    db.add(checklist)
    db.commit()
    db.refresh(checklist)
    logger.info("checklist_default_created", extra={"checklist_key": key, "item_count": len(items)})
    return checklist


def seed_county_checklists(db: Session, *, overwrite: bool = False) -> list[str]:
    """Store the known county templates; existing checklists are kept unless ``overwrite``."""
    written: list[str] = []
    for county_code, items in COUNTY_TEMPLATES.items():
        key = str(county_code)
        checklist = db.get(Checklist, key)
        if checklist is None:
            db.add(Checklist(key=key, items=[dict(item) for item in items]))
        elif overwrite:
            checklist.items = [dict(item) for item in items]
        else:
            continue
        written.append(key)
    db.commit()
    return written


@dataclass(slots=True)
class ChecklistProgress:
    key: str
    items: list[dict[str, Any]]
    completed_items: list[str]
    percentage: float
    form_data: dict[str, Any] = field(default_factory=dict)
    documents: dict[str, str | None] = field(default_factory=dict)


def completed_item_names(items: list[dict[str, Any]], progress: list[str] | None) -> list[str]:
    done = set(progress or [])
    return [item["name"] for item in items if item["name"] in done]


def progress_percentage(completed_count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(100.0 * completed_count / total, 2)


def _load_for_user(db: Session, user: User) -> tuple[Checklist, list[dict[str, Any]], Profile]:
    key = checklist_key_for(user)
    checklist = get_or_create_checklist(db, key)
    profile = ensure_profile(db, user)
    if profile in db.new:
        db.commit()
        db.refresh(profile)
    return checklist, normalize_items(checklist.items), profile


def get_progress(db: Session, user: User, *, storage: StorageProvider | None = None) -> ChecklistProgress:
    checklist, items, profile = _load_for_user(db, user)
    completed = completed_item_names(items, profile.checklist_progress)
    documents = dict(profile.documents or {})
    return ChecklistProgress(
        key=checklist.key,
        items=items,
        completed_items=completed,
        percentage=progress_percentage(len(completed), len(items)),
        form_data=dict(profile.form_data or {}),
        documents={
            name: (storage.get_url(ref) if storage is not None else ref) for name, ref in documents.items()
        },
    )


def _find_item(items: list[dict[str, Any]], item_name: str) -> dict[str, Any]:
    wanted = item_name.strip()
    for item in items:
        if item["name"] == wanted:
            return item
    raise NotFound(f"Checklist item {wanted!r} not found.")


def _mark_done(profile: Profile, item_name: str) -> None:
    progress = list(profile.checklist_progress or [])
    if item_name not in progress:
        # Assign a new list so the JSON column is flagged dirty.
        profile.checklist_progress = progress + [item_name]


def mark_item_done(db: Session, user: User, item_name: str) -> ChecklistProgress:
    _, items, profile = _load_for_user(db, user)
    item = _find_item(items, item_name)
    _mark_done(profile, item["name"])
    db.commit()
    return get_progress(db, user)


def set_form_value(db: Session, user: User, item_name: str, value: Any) -> ChecklistProgress:
    _, items, profile = _load_for_user(db, user)
    item = _find_item(items, item_name)
    item_type = ChecklistItemType(item["type"])
    if item_type == ChecklistItemType.FILE:
        raise ApiError(status_code=422, code="ITEM_REQUIRES_UPLOAD", message="This item requires a document upload.")
    if item_type == ChecklistItemType.SELECT and value not in (item.get("options") or []):
        raise ApiError(status_code=422, code="INVALID_OPTION", message="Value is not one of the item's options.")
    if isinstance(value, str):
        value = value.strip()

    form_data = dict(profile.form_data or {})
    form_data[item["name"]] = value
    profile.form_data = form_data
    if value:
        _mark_done(profile, item["name"])
    db.commit()
    return get_progress(db, user)


def upload_document(
    db: Session,
    user: User,
    item_name: str,
    *,
    filename: str,
    data: bytes,
    storage: StorageProvider,
    content_type: str | None = None,
) -> ChecklistProgress:
    _, items, profile = _load_for_user(db, user)
    item = _find_item(items, item_name)
    if ChecklistItemType(item["type"]) != ChecklistItemType.FILE:
        raise ApiError(status_code=422, code="ITEM_NOT_FILE", message="This item does not accept documents.")
    if not data:
        raise ApiError(status_code=422, code="EMPTY_UPLOAD", message="Uploaded file is empty.")

    ref = storage.upload(document_key(user.id, item["name"], filename), data, content_type)
    documents = dict(profile.documents or {})
    documents[item["name"]] = ref
    profile.documents = documents
    _mark_done(profile, item["name"])
    db.commit()
    return get_progress(db, user, storage=storage)


# HR checklist management


def list_checklists(db: Session) -> list[Checklist]:
    return list(db.scalars(select(Checklist).order_by(Checklist.key.asc())).all())


def get_checklist(db: Session, key: str) -> Checklist:
    checklist = db.get(Checklist, key.strip())
    if checklist is None:
        raise NotFound("Checklist not found.")
    return checklist


def _audit_checklist(db: Session, actor: AuthSession, action: str, key: str, **details: Any) -> None:
    record_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=actor.actor_id,
        action=action,
        entity_type="checklist",
        entity_id=key,
        details=details,
    )


def create_checklist(
    db: Session,
    *,
    key: str,
    items: list[Any] | None,
    actor: AuthSession,
) -> Checklist:
    ensure_role(actor, {UserRole.HR})
    clean_key = key.strip()
    if not clean_key:
        raise ApiError(status_code=422, code="INVALID_CHECKLIST_KEY", message="Checklist key must not be blank.")
    if db.get(Checklist, clean_key) is not None:
        raise ApiError(status_code=409, code="CHECKLIST_EXISTS", message="A checklist with this key already exists.")
    normalized = normalize_items(items if items is not None else NEW_CHECKLIST_ITEMS)
    checklist = Checklist(key=clean_key, items=normalized, created_at=datetime.now(timezone.utc))
    db.add(checklist)
    _audit_checklist(db, actor, "CHECKLIST_CREATED", clean_key, item_count=len(normalized))
    db.commit()
    db.refresh(checklist)
    return checklist


def replace_items(db: Session, *, key: str, items: list[Any], actor: AuthSession) -> Checklist:
    ensure_role(actor, {UserRole.HR})
    checklist = get_checklist(db, key)
    checklist.items = normalize_items(items)
    _audit_checklist(db, actor, "CHECKLIST_ITEMS_REPLACED", checklist.key, item_count=len(checklist.items))
    db.commit()
    db.refresh(checklist)
    return checklist


def add_item(db: Session, *, key: str, item: ChecklistItem, actor: AuthSession) -> Checklist:
    ensure_role(actor, {UserRole.HR})
    checklist = get_checklist(db, key)
    checklist.items = normalize_items([*normalize_items(checklist.items), item])
    _audit_checklist(db, actor, "CHECKLIST_ITEM_ADDED", checklist.key, item=item.name)
    db.commit()
    db.refresh(checklist)
    return checklist


def _checked_index(items: list[dict[str, Any]], index: int) -> int:
    if index < 0 or index >= len(items):
        raise NotFound("Checklist item not found.")
    return index


def update_item(
    db: Session,
    *,
    key: str,
    index: int,
    changes: dict[str, Any],
    actor: AuthSession,
) -> Checklist:
    ensure_role(actor, {UserRole.HR})
    checklist = get_checklist(db, key)
    items = normalize_items(checklist.items)
    position = _checked_index(items, index)
    merged = {**items[position], **{name: value for name, value in changes.items() if value is not None}}
    if merged.get("type") != ChecklistItemType.SELECT.value:
        merged.pop("options", None)
    items[position] = merged
    checklist.items = normalize_items(items)
    _audit_checklist(db, actor, "CHECKLIST_ITEM_UPDATED", checklist.key, index=position, item=merged["name"])
    db.commit()
    db.refresh(checklist)
    return checklist


def remove_item(db: Session, *, key: str, index: int, actor: AuthSession) -> Checklist:
    ensure_role(actor, {UserRole.HR})
    checklist = get_checklist(db, key)
    items = normalize_items(checklist.items)
    removed = items.pop(_checked_index(items, index))
    checklist.items = items
    _audit_checklist(db, actor, "CHECKLIST_ITEM_REMOVED", checklist.key, item=removed["name"])
    db.commit()
    db.refresh(checklist)
    return checklist


def delete_checklist(db: Session, *, key: str, actor: AuthSession) -> None:
    ensure_role(actor, {UserRole.HR})
    checklist = get_checklist(db, key)
    _audit_checklist(db, actor, "CHECKLIST_DELETED", checklist.key)
    db.delete(checklist)
    db.commit()
