"""
Service factories for FastAPI endpoints.

Each request gets fresh service objects bound to its DB session; the clock and
event publisher come from their own dependencies so tests can override them.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.core.clock import Clock, get_clock
from grievance.core.db import get_db
from grievance.services.complaints import ComplaintService
from grievance.services.events import EventPublisher, get_publisher
from grievance.services.extensions import ExtensionArbiter
from grievance.services.snapshots import SnapshotAggregator


async def get_complaint_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    publisher: EventPublisher = Depends(get_publisher),
) -> ComplaintService:
    return ComplaintService(db, publisher=publisher, clock=clock)


async def get_extension_arbiter(
    complaints: ComplaintService = Depends(get_complaint_service),
) -> ExtensionArbiter:
    return ExtensionArbiter(complaints.db, complaints=complaints)


async def get_snapshot_aggregator(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SnapshotAggregator:
    return SnapshotAggregator(db, clock=clock)
