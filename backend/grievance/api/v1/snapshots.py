"""
Snapshot endpoints.

POST computes and appends a snapshot on demand (admins only); the scheduler
does the same every day for all districts.  Repeating a POST for the same
entity, period and date appends another row.
"""
from datetime import date

from fastapi import APIRouter, Depends, Query, status

from grievance.api.deps import get_snapshot_aggregator
from grievance.core.rbac import ROLE_ADMIN, ROLE_OFFICER, Actor, require_role
from grievance.schemas.snapshot import (
    EntityType,
    HistoricalComparison,
    Period,
    SnapshotCreate,
    SnapshotResponse,
)
from grievance.services.snapshots import SnapshotAggregator

router = APIRouter(prefix="/snapshots", tags=["snapshots"])


@router.post("", response_model=SnapshotResponse, status_code=status.HTTP_201_CREATED)
async def compute_snapshot(
    payload: SnapshotCreate,
    aggregator: SnapshotAggregator = Depends(get_snapshot_aggregator),
    _admin: Actor = Depends(require_role(ROLE_ADMIN)),
) -> SnapshotResponse:
    snapshot = await aggregator.compute_snapshot(
        payload.entity_type,
        payload.entity_code,
        payload.period,
        payload.as_of,
        entity_name=payload.entity_name,
    )
    return SnapshotResponse.model_validate(snapshot)


@router.get("/{entity_type}/{entity_code}", response_model=list[SnapshotResponse])
async def list_snapshots(
    entity_type: EntityType,
    entity_code: str,
    period: Period | None = None,
    limit: int = Query(default=30, ge=1, le=365),
    aggregator: SnapshotAggregator = Depends(get_snapshot_aggregator),
    _actor: Actor = Depends(require_role(ROLE_ADMIN, ROLE_OFFICER)),
) -> list[SnapshotResponse]:
    """Newest first."""
    snapshots = await aggregator.list_snapshots(entity_type, entity_code, period, limit)
    return [SnapshotResponse.model_validate(s) for s in snapshots]


@router.get("/{entity_type}/{entity_code}/comparison", response_model=HistoricalComparison)
async def compare_to_history(
    entity_type: EntityType,
    entity_code: str,
    period: Period = "daily",
    as_of: date | None = None,
    aggregator: SnapshotAggregator = Depends(get_snapshot_aggregator),
    _actor: Actor = Depends(require_role(ROLE_ADMIN, ROLE_OFFICER)),
) -> HistoricalComparison:
    return await aggregator.compare_to_history(entity_type, entity_code, period, as_of)
