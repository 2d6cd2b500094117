import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class LifecycleEventResponse(BaseModel):
    """Wire form of a lifecycle event; also the body published to SQS."""

    id: uuid.UUID
    complaint_id: uuid.UUID
    sequence: int
    event_type: str
    actor_id: uuid.UUID | None
    actor_role: str
    actor_name: str | None
    occurred_at: datetime
    payload: dict[str, Any]

    model_config = {"from_attributes": True}
