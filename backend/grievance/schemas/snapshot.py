from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

EntityType = Literal["district", "subdistrict", "village"]
Period = Literal["daily", "weekly", "monthly"]
Trend = Literal["up", "down", "stable"]


class SnapshotCreate(BaseModel):
    entity_type: EntityType
    entity_code: str = Field(min_length=1, max_length=50)
    entity_name: str | None = Field(default=None, max_length=200)
    period: Period = "daily"
    as_of: date | None = None


class SnapshotResponse(BaseModel):
    id: int
    entity_type: str
    entity_code: str
    entity_name: str
    snapshot_date: date
    period: str
    total_complaints: int
    by_status: dict[str, int]
    by_category: dict[str, int]
    created_at: datetime

    model_config = {"from_attributes": True}


class HistoricalComparison(BaseModel):
    current: int
    previous: int
    change: int
    change_percent: float
    trend: Trend
    as_of: date
    previous_snapshot_date: date | None = None
