from typing import Any

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from internhub.db import get_db
from internhub.errors import ApiError, NotFound, Unauthorized
from internhub.models import Checklist, User, UserRole
from internhub.schemas import (
    ChecklistCreateRequest,
    ChecklistFormValueRequest,
    ChecklistItem,
    ChecklistItemsReplaceRequest,
    ChecklistItemUpdateRequest,
    ChecklistMarkRequest,
    ChecklistProgressRead,
    ChecklistRead,
)
from internhub.security import AuthSession, require_roles, require_session
from internhub.services.checklists import (
    ChecklistProgress,
    add_item,
    create_checklist,
    delete_checklist,
    get_checklist,
    get_progress,
    list_checklists,
    mark_item_done,
    normalize_items,
    remove_item,
    replace_items,
    seed_county_checklists,
    set_form_value,
    update_item,
    upload_document,
)
from internhub.services.identity import get_profile, get_trainee
from internhub.storage.local_provider import LocalStorageProvider, get_storage_provider
from internhub.storage.provider import StorageError, StorageProvider

router = APIRouter(tags=["onboarding"])

_trainee = require_roles(UserRole.INTERN, UserRole.ATTACHEE)
_hr = require_roles(UserRole.HR)
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _progress_read(progress: ChecklistProgress) -> ChecklistProgressRead:
    return ChecklistProgressRead(
        key=progress.key,
        items=[ChecklistItem.model_validate(item) for item in progress.items],
        completed_items=progress.completed_items,
        percentage=progress.percentage,
        form_data=progress.form_data,
        documents=progress.documents,
    )


def _checklist_read(checklist: Checklist) -> ChecklistRead:
    return ChecklistRead(
        key=checklist.key,
        items=[ChecklistItem.model_validate(item) for item in normalize_items(checklist.items)],
        updated_at=checklist.updated_at,
    )


def _current_user(db: Session, session: AuthSession) -> User:
    user = db.get(User, session.principal_id)
    if user is None:
        raise NotFound("User not found.")
    return user


@router.get("/api/onboarding/checklist", response_model=ChecklistProgressRead)
def my_checklist(
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage_provider),
) -> ChecklistProgressRead:
    return _progress_read(get_progress(db, _current_user(db, session), storage=storage))


@router.post("/api/onboarding/checklist/mark", response_model=ChecklistProgressRead)
def mark_checklist_item(
    payload: ChecklistMarkRequest,
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
) -> ChecklistProgressRead:
    return _progress_read(mark_item_done(db, _current_user(db, session), payload.item_name))


@router.put("/api/onboarding/checklist/form", response_model=ChecklistProgressRead)
def set_checklist_form_value(
    payload: ChecklistFormValueRequest,
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
) -> ChecklistProgressRead:
    return _progress_read(set_form_value(db, _current_user(db, session), payload.item_name, payload.value))


@router.post(
    "/api/onboarding/checklist/documents",
    response_model=ChecklistProgressRead,
    status_code=status.HTTP_201_CREATED,
)
def upload_checklist_document(
    item_name: str = Form(min_length=1, max_length=255),
    file: UploadFile = File(...),
    session: AuthSession = Depends(_trainee),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage_provider),
) -> ChecklistProgressRead:
    data = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise ApiError(status_code=413, code="UPLOAD_TOO_LARGE", message="Uploaded file exceeds 10 MB.")
    progress = upload_document(
        db,
        _current_user(db, session),
        item_name,
        filename=file.filename or "upload",
        data=data,
        storage=storage,
        content_type=file.content_type,
    )
    return _progress_read(progress)


@router.get("/files/{ref:path}")
def download_document(
    ref: str,
    session: AuthSession = Depends(require_session),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage_provider),
) -> FileResponse:
    parts = ref.split("/")
    if len(parts) < 4 or parts[0] != "documents" or not parts[1].isdigit():
        raise NotFound("Document not found.")
    owner_id = int(parts[1])
    if session.principal_id != owner_id and session.role != UserRole.HR:
        owner = db.get(User, owner_id)
        profile = get_profile(db, owner) if owner is not None else None
        if profile is None or profile.mentor_id != session.principal_id:
            raise Unauthorized("You cannot view this document.")
    if not isinstance(storage, LocalStorageProvider) or not storage.exists(ref):
        raise NotFound("Document not found.")
    try:
        path = storage.path_for(ref)
    except StorageError as exc:
        raise NotFound("Document not found.") from exc
    return FileResponse(path, filename=parts[-1])


@router.get("/api/hr/onboarding/{trainee_id}", response_model=ChecklistProgressRead)
def hr_trainee_progress(
    trainee_id: int,
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage_provider),
) -> ChecklistProgressRead:
    user, _profile = get_trainee(db, trainee_id)
    return _progress_read(get_progress(db, user, storage=storage))


@router.get("/api/hr/checklists", response_model=list[ChecklistRead])
def hr_list_checklists(
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> list[ChecklistRead]:
    return [_checklist_read(checklist) for checklist in list_checklists(db)]


@router.post("/api/hr/checklists", response_model=ChecklistRead, status_code=status.HTTP_201_CREATED)
def hr_create_checklist(
    payload: ChecklistCreateRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> ChecklistRead:
    return _checklist_read(create_checklist(db, key=payload.key, items=payload.items, actor=session))


@router.post("/api/hr/checklists/seed", response_model=list[str])
def hr_seed_checklists(
    overwrite: bool = False,
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> list[str]:
    return seed_county_checklists(db, overwrite=overwrite)


@router.get("/api/hr/checklists/{key}", response_model=ChecklistRead)
def hr_get_checklist(
    key: str,
    _session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> ChecklistRead:
    return _checklist_read(get_checklist(db, key))


@router.put("/api/hr/checklists/{key}/items", response_model=ChecklistRead)
def hr_replace_checklist_items(
    key: str,
    payload: ChecklistItemsReplaceRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> ChecklistRead:
    return _checklist_read(replace_items(db, key=key, items=payload.items, actor=session))


@router.post("/api/hr/checklists/{key}/items", response_model=ChecklistRead, status_code=status.HTTP_201_CREATED)
def hr_add_checklist_item(
    key: str,
    payload: ChecklistItem,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> ChecklistRead:
    return _checklist_read(add_item(db, key=key, item=payload, actor=session))


@router.patch("/api/hr/checklists/{key}/items/{index}", response_model=ChecklistRead)
def hr_update_checklist_item(
    key: str,
    index: int,
    payload: ChecklistItemUpdateRequest,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> ChecklistRead:
    changes: dict[str, Any] = payload.model_dump(mode="json", exclude_unset=True)
    return _checklist_read(update_item(db, key=key, index=index, changes=changes, actor=session))


@router.delete("/api/hr/checklists/{key}/items/{index}", response_model=ChecklistRead)
def hr_remove_checklist_item(
    key: str,
    index: int,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> ChecklistRead:
    return _checklist_read(remove_item(db, key=key, index=index, actor=session))


@router.delete("/api/hr/checklists/{key}", status_code=status.HTTP_204_NO_CONTENT)
def hr_delete_checklist(
    key: str,
    session: AuthSession = Depends(_hr),
    db: Session = Depends(get_db),
) -> None:
    delete_checklist(db, key=key, actor=session)
