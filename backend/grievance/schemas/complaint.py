import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from grievance.schemas.common import PaginationMeta

Category = Literal["roads", "water", "electricity", "documents", "health", "education"]
Priority = Literal["low", "medium", "high", "urgent"]
Status = Literal["pending", "in_progress", "resolved", "rejected"]


class ComplaintCreate(BaseModel):
    model_config = {"str_strip_whitespace": True}

    title: str = Field(min_length=5, max_length=255)
    description: str = Field(min_length=20, max_length=5000)
    category: Category
    sub_category: str | None = Field(default=None, max_length=100)
    priority: Priority = "medium"
    location: str | None = Field(default=None, max_length=500)

    district_code: str = Field(min_length=1, max_length=50)
    district_name: str = Field(min_length=1, max_length=100)
    subdistrict_code: str | None = Field(default=None, max_length=50)
    subdistrict_name: str = Field(min_length=1, max_length=100)
    village_code: str | None = Field(default=None, max_length=50)
    village_name: str | None = Field(default=None, max_length=200)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    contact_name: str = Field(min_length=2, max_length=100)
    contact_email: EmailStr
    contact_phone: str | None = Field(default=None, pattern=r"^\+?[\d\s-]{10,15}$")

    time_boundary: int | None = Field(default=None, ge=1, le=365)


class AttachmentRef(BaseModel):
    storage_key: str = Field(min_length=1, max_length=500)
    file_name: str | None = Field(default=None, max_length=255)
    content_type: str | None = Field(default=None, max_length=100)


class CloseRequest(BaseModel):
    remarks: str = Field(min_length=1, max_length=2000)
    attachments: list[AttachmentRef] = Field(default_factory=list)
    proof_reference: str | None = Field(default=None, max_length=500)


class ClosingDetails(CloseRequest):
    """What close() persists: the request plus who closed it and when."""

    closed_at: datetime
    closed_by_id: uuid.UUID | None = None
    closed_by_name: str | None = None
    closed_by_role: str


class AssignRequest(BaseModel):
    officer_id: uuid.UUID


class StatusUpdate(BaseModel):
    status: Status


class PriorityUpdate(BaseModel):
    priority: Priority


class NoteCreate(BaseModel):
    note: str = Field(min_length=5, max_length=2000)


class NoteResponse(BaseModel):
    id: uuid.UUID
    complaint_id: uuid.UUID
    note: str
    author_id: uuid.UUID | None
    author_role: str
    author_name: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AttachmentCreate(AttachmentRef):
    file_size_bytes: int | None = Field(default=None, ge=0)


class AttachmentResponse(BaseModel):
    id: uuid.UUID
    complaint_id: uuid.UUID
    storage_key: str
    file_name: str | None
    content_type: str | None
    file_size_bytes: int | None
    uploaded_by_user_id: uuid.UUID | None
    uploaded_at: datetime

    model_config = {"from_attributes": True}


class ComplaintResponse(BaseModel):
    id: uuid.UUID
    complaint_code: str
    title: str
    description: str
    category: str
    sub_category: str | None
    priority: str
    status: str
    location: str | None
    district_code: str
    district_name: str
    subdistrict_code: str | None
    subdistrict_name: str
    village_code: str | None
    village_name: str | None
    latitude: float
    longitude: float
    contact_name: str
    contact_email: str
    contact_phone: str | None
    assigned_officer_id: uuid.UUID | None
    is_officer_assigned: bool
    arrival_time: datetime | None
    assigned_time: datetime | None
    time_boundary: int
    is_extended: bool
    deadline: datetime | None
    is_overdue: bool = False
    is_complaint_closed: bool
    closing_details: ClosingDetails | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_complaint(cls, complaint, now: datetime) -> "ComplaintResponse":
        from grievance.services.complaints import is_overdue_at

        data = cls.model_validate(complaint)
        data.is_overdue = is_overdue_at(complaint, now)
        return data


class ComplaintListResponse(PaginationMeta):
    items: list[ComplaintResponse]
