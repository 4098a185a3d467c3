import re
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from internhub.models import (
    ChecklistItemType,
    ContractStatus,
    ContractType,
    TimesheetStatus,
    UserRole,
)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _normalize_email(value: str) -> str:
    normalized = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError("email address is invalid")
    return normalized


class SignupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=8, max_length=128)
    full_name: str = Field(min_length=2, max_length=255)
    role: UserRole
    department: str | None = Field(default=None, max_length=255)
    county_code: int | None = Field(default=None, ge=1, le=47)
    institution: str | None = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, value: str) -> str:
        stripped = " ".join(value.split())
        if len(stripped) < 2:
            raise ValueError("full_name is too short")
        return stripped

    @model_validator(mode="after")
    def _role_specific_fields(self) -> "SignupRequest":
        if self.role == UserRole.INTERN and self.county_code is None:
            raise ValueError("county_code is required for interns")
        if self.role == UserRole.ATTACHEE and not (self.institution or "").strip():
            raise ValueError("institution is required for attachees")
        if self.role == UserRole.COUNTY_LIAISON and self.county_code is None:
            raise ValueError("county_code is required for county liaisons")
        return self


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _normalize_email(value)


class AuthResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    user_id: int
    role: UserRole
    dashboard: str


class UserRead(BaseModel):
    id: int
    email: str
    role: UserRole
    full_name: str
    department: str | None = None
    county_code: int | None = None
    institution: str | None = None
    is_active: bool
    created_at: datetime | None = None
    deactivated_at: datetime | None = None
    deactivated_by: int | None = None

    model_config = ConfigDict(from_attributes=True)


class UserActiveUpdateRequest(BaseModel):
    is_active: bool


class ContractRead(BaseModel):
    user_id: int
    full_name: str
    role: UserRole
    department: str | None = None
    mentor_id: int | None = None
    assigned_at: datetime | None = None
    contract_type: ContractType | None = None
    contract_start_date: date | None = None
    contract_end_date: date | None = None
    contract_duration: int | None = None
    contract_terminated: bool = False
    termination_reason: str | None = None
    status: ContractStatus
    days_remaining: int | None = None


class ContractUpsertRequest(BaseModel):
    contract_type: ContractType
    contract_start_date: date
    contract_end_date: date | None = None
    contract_duration: int | None = Field(default=None, ge=1, le=120)

    @model_validator(mode="after")
    def _end_or_duration(self) -> "ContractUpsertRequest":
        if self.contract_end_date is None and self.contract_duration is None:
            raise ValueError("contract_end_date or contract_duration is required")
        return self


class ContractExtendRequest(BaseModel):
    new_end_date: date


class ContractTerminateRequest(BaseModel):
    reason: str = Field(default="", max_length=2000)


class MentorAssignmentRequest(BaseModel):
    mentor_id: int | None = Field(default=None, ge=1)
    contract_type: ContractType
    contract_start_date: date
    contract_duration: int = Field(ge=1, le=120)


class MentorLoadRead(BaseModel):
    mentor_id: int
    full_name: str
    email: str
    department: str | None = None
    load: int
    capacity_left: int


class TraineeRead(BaseModel):
    user_id: int
    full_name: str
    email: str
    role: UserRole
    department: str | None = None
    mentor_id: int | None = None
    assigned_at: datetime | None = None


class TimesheetSubmitRequest(BaseModel):
    week: str = Field(min_length=8, max_length=16)
    daily_descriptions: list[str] = Field(min_length=5, max_length=5)
    hours_worked: float | None = Field(default=None, gt=0, le=168)

    @field_validator("daily_descriptions")
    @classmethod
    def _strip_descriptions(cls, value: list[str]) -> list[str]:
        stripped = [item.strip() for item in value]
        if not any(stripped):
            raise ValueError("at least one weekday description is required")
        return stripped


class TimesheetDecisionRequest(BaseModel):
    approve: bool
    feedback: str | None = Field(default=None, max_length=2000)
    rejection_reason: str | None = Field(default=None, max_length=2000)


class TimesheetRead(BaseModel):
    id: int
    submitter_id: int
    submitter_role: UserRole
    mentor_id: int
    week: str
    daily_descriptions: list[str]
    hours_worked: float | None = None
    status: TimesheetStatus
    submitted_at: datetime
    mentor_approved_at: datetime | None = None
    mentor_approved_by: int | None = None
    approved_at: datetime | None = None
    approved_by: int | None = None
    approved_by_role: str | None = None
    rejected_at: datetime | None = None
    rejected_by: int | None = None
    rejected_by_role: str | None = None
    mentor_feedback: str | None = None
    hr_feedback: str | None = None
    rejection_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ChecklistItem(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: ChecklistItemType = ChecklistItemType.TEXT
    required: bool = True
    options: list[str] | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("item name must not be blank")
        return stripped

    @model_validator(mode="after")
    def _select_needs_options(self) -> "ChecklistItem":
        if self.type == ChecklistItemType.SELECT and not self.options:
            raise ValueError("select items need at least one option")
        return self


class ChecklistRead(BaseModel):
    key: str
    items: list[ChecklistItem]
    updated_at: datetime | None = None


class ChecklistCreateRequest(BaseModel):
    key: str = Field(min_length=1, max_length=100)
    items: list[ChecklistItem] | None = None


class ChecklistItemsReplaceRequest(BaseModel):
    items: list[ChecklistItem]


class ChecklistItemUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: ChecklistItemType | None = None
    required: bool | None = None
    options: list[str] | None = None


class ChecklistMarkRequest(BaseModel):
    item_name: str = Field(min_length=1, max_length=255)


class ChecklistFormValueRequest(BaseModel):
    item_name: str = Field(min_length=1, max_length=255)
    value: Any = None


class ChecklistProgressRead(BaseModel):
    key: str
    items: list[ChecklistItem]
    completed_items: list[str]
    percentage: float
    form_data: dict[str, Any] = Field(default_factory=dict)
    documents: dict[str, str | None] = Field(default_factory=dict)


class NotificationRead(BaseModel):
    id: int
    message: str
    type: str
    read: bool
    created_at: datetime
    related_user_id: int | None = None
    related_user_role: str | None = None

    model_config = ConfigDict(from_attributes=True)
