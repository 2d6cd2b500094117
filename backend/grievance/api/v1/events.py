"""
Outbox maintenance.

POST /events/redeliver re-queues committed lifecycle events for the
notification collaborator, e.g. after the queue dropped hand-offs or SQS was
unreachable.  Consumers de-duplicate on the event id.
"""
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.core.db import get_db
from grievance.core.rbac import ROLE_ADMIN, Actor, require_role
from grievance.services.events import EventPublisher, get_publisher, redeliver

router = APIRouter(prefix="/events", tags=["events"])


class RedeliverRequest(BaseModel):
    since: datetime
    complaint_id: uuid.UUID | None = None


class RedeliverResponse(BaseModel):
    queued: int
    backlog: int


@router.post("/redeliver", response_model=RedeliverResponse)
async def redeliver_events(
    payload: RedeliverRequest,
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    _admin: Actor = Depends(require_role(ROLE_ADMIN)),
) -> RedeliverResponse:
    since = payload.since
    if since.tzinfo is not None:
        # Stored timestamps are naive UTC
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    queued = await redeliver(db, publisher, since, payload.complaint_id)
    return RedeliverResponse(queued=queued, backlog=publisher.backlog)
