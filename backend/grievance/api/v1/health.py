"""
GET /health — load balancer health check.

No authentication required. Reports DB connectivity and the event publisher's
backlog so a stuck notification path is visible without failing the check.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from grievance.core.db import check_db_connection
from grievance.services.events import EventPublisher, get_publisher

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    db: str
    event_backlog: int
    events_dropped: int


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(publisher: EventPublisher = Depends(get_publisher)) -> HealthResponse:
    db_ok = await check_db_connection()
    return HealthResponse(
        status="ok",
        db="ok" if db_ok else "error",
        event_backlog=publisher.backlog,
        events_dropped=publisher.dropped,
    )
