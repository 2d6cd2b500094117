import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, StrictInt


class ExtensionRequestCreate(BaseModel):
    # Strict: "5" is refused. Range is checked by the arbiter against EXTENSION_MAX_DAYS
    days_requested: StrictInt
    reason: str | None = Field(default=None, max_length=2000)


class ExtensionDecisionCreate(BaseModel):
    outcome: Literal["approved", "rejected"]
    notes: str | None = Field(default=None, max_length=1000)


class ExtensionRequestResponse(BaseModel):
    id: uuid.UUID
    complaint_id: uuid.UUID
    requested_by: uuid.UUID | None
    requested_by_role: str
    days_requested: int
    reason: str | None
    status: str
    decided_by: uuid.UUID | None
    decided_by_role: str | None
    decided_at: datetime | None
    notes: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
