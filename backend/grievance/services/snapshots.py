"""
Snapshot aggregator: point-in-time complaint counts per geographic entity.

compute_snapshot() rolls live complaint state up to one entity and appends an
immutable ComplaintSnapshot row.  Scope follows the geography tree: a district
covers its own complaints plus every complaint filed against one of its
sub-districts or villages.  Counts are cumulative: every complaint created up
to and including the as-of date.

compare_to_history() turns the series into a trend:

    change         = current - previous
    change_percent = change / previous * 100      (previous > 0)
    trend          = stable if |change_percent| <= TREND_STABLE_EPSILON
                     else up / down by the sign of change

The scheduler runs run_scheduled_snapshots() once a day for every district:
daily always, weekly on Mondays, monthly on the 1st.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import get_args

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grievance.core.clock import Clock, system_clock
from grievance.core.config import Settings, get_settings
from grievance.core.errors import ValidationError
from grievance.models.complaint import Complaint
from grievance.models.snapshot import ComplaintSnapshot
from grievance.schemas.complaint import Category, Status
from grievance.schemas.snapshot import HistoricalComparison
from grievance.services.geography import ENTITY_TYPES, GeographyService

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly")
CATEGORIES = get_args(Category)
STATUSES = get_args(Status)
OTHER_CATEGORY = "other"


class SnapshotAggregator:
    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = system_clock,
        settings: Settings | None = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings or get_settings()
        self.geography = GeographyService(db)

    @staticmethod
    def _check_key(entity_type: str, period: str | None = None) -> None:
        if entity_type not in ENTITY_TYPES:
            raise ValidationError(f"entity_type must be one of {list(ENTITY_TYPES)}")
        if period is not None and period not in PERIODS:
            raise ValidationError(f"period must be one of {list(PERIODS)}")

    async def _scope(self, entity_type: str, entity_code: str):
        if entity_type == "village":
            return Complaint.village_code == entity_code

        below = await self.geography.descendants_of(entity_code)
        if entity_type == "district":
            clauses = [Complaint.district_code == entity_code]
            if below:
                clauses += [Complaint.subdistrict_code.in_(below), Complaint.village_code.in_(below)]
        else:
            clauses = [Complaint.subdistrict_code == entity_code]
            if below:
                clauses.append(Complaint.village_code.in_(below))
        return or_(*clauses)

    async def tally(
        self, entity_type: str, entity_code: str, as_of: date
    ) -> tuple[int, dict[str, int], dict[str, int]]:
        """Live (total, by_status, by_category) for complaints created up to *as_of*."""
        self._check_key(entity_type)
        cutoff = datetime.combine(as_of + timedelta(days=1), time.min)
        result = await self.db.execute(
            select(Complaint.status, Complaint.category, func.count())
            .where(await self._scope(entity_type, entity_code), Complaint.created_at < cutoff)
            .group_by(Complaint.status, Complaint.category)
        )

        by_status = {s: 0 for s in STATUSES}
        by_category = {c: 0 for c in CATEGORIES}
        by_category[OTHER_CATEGORY] = 0
        total = 0
        for status, category, count in result.all():
            total += count
            by_status[status] = by_status.get(status, 0) + count
            key = category if category in by_category else OTHER_CATEGORY
            by_category[key] += count
        return total, by_status, by_category

    async def compute_snapshot(
        self,
        entity_type: str,
        entity_code: str,
        period: str = "daily",
        as_of: date | None = None,
        entity_name: str | None = None,
    ) -> ComplaintSnapshot:
        self._check_key(entity_type, period)
        as_of = as_of or self.clock.today()
        total, by_status, by_category = await self.tally(entity_type, entity_code, as_of)
        name = entity_name or await self.geography.name_of(entity_code) or entity_code

        snapshot = ComplaintSnapshot(
            entity_type=entity_type,
            entity_code=entity_code,
            entity_name=name,
            snapshot_date=as_of,
            period=period,
            total_complaints=total,
            by_status=by_status,
            by_category=by_category,
            created_at=self.clock.now(),
        )
        self.db.add(snapshot)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(
            "Snapshot %s %s/%s %s: %d complaints",
            period,
            entity_type,
            entity_code,
            as_of.isoformat(),
            total,
        )
        return snapshot

    async def list_snapshots(
        self,
        entity_type: str,
        entity_code: str,
        period: str | None = None,
        limit: int = 30,
    ) -> list[ComplaintSnapshot]:
        self._check_key(entity_type, period)
        query = select(ComplaintSnapshot).where(
            ComplaintSnapshot.entity_type == entity_type,
            ComplaintSnapshot.entity_code == entity_code,
        )
        if period is not None:
            query = query.where(ComplaintSnapshot.period == period)
        result = await self.db.execute(
            query.order_by(ComplaintSnapshot.snapshot_date.desc(), ComplaintSnapshot.id.desc())
            .limit(max(1, min(limit, 365)))
        )
        return list(result.scalars().all())

    def _trend(self, change: int, change_percent: float, has_previous: bool, current: int) -> str:
        if not has_previous:
            return "up" if current > 0 else "stable"
        if abs(change_percent) <= self.settings.trend_stable_epsilon:
            return "stable"
        return "up" if change > 0 else "down"

    async def compare_to_history(
        self,
        entity_type: str,
        entity_code: str,
        period: str = "daily",
        as_of: date | None = None,
    ) -> HistoricalComparison:
        """
        current is the latest snapshot taken on *as_of* (live counts if none
        was taken); previous is the latest snapshot strictly before *as_of*.
        """
        self._check_key(entity_type, period)
        as_of = as_of or self.clock.today()
        key = (
            ComplaintSnapshot.entity_type == entity_type,
            ComplaintSnapshot.entity_code == entity_code,
            ComplaintSnapshot.period == period,
        )

        result = await self.db.execute(
            select(ComplaintSnapshot)
            .where(*key, ComplaintSnapshot.snapshot_date == as_of)
            .order_by(ComplaintSnapshot.id.desc())
            .limit(1)
        )
        latest = result.scalars().first()
        if latest is not None:
            current = latest.total_complaints
        else:
            current, _, _ = await self.tally(entity_type, entity_code, as_of)

        result = await self.db.execute(
            select(ComplaintSnapshot)
            .where(*key, ComplaintSnapshot.snapshot_date < as_of)
            .order_by(ComplaintSnapshot.snapshot_date.desc(), ComplaintSnapshot.id.desc())
            .limit(1)
        )
        prior = result.scalars().first()
        previous = prior.total_complaints if prior else 0

        change = current - previous
        if previous > 0:
            change_percent = round(change / previous * 100, 1)
        else:
            change_percent = 100.0 if current > 0 else 0.0

        return HistoricalComparison(
            current=current,
            previous=previous,
            change=change,
            change_percent=change_percent,
            trend=self._trend(change, change_percent, prior is not None, current),
            as_of=as_of,
            previous_snapshot_date=prior.snapshot_date if prior else None,
        )

    async def district_codes(self) -> list[str]:
        known = set(await self.geography.codes_of_type("district"))
        result = await self.db.execute(select(Complaint.district_code).distinct())
        known.update(code for code in result.scalars().all() if code)
        return sorted(known)

    async def snapshot_all_districts(
        self, period: str = "daily", as_of: date | None = None
    ) -> list[ComplaintSnapshot]:
        as_of = as_of or self.clock.today()
        return [
            await self.compute_snapshot("district", code, period, as_of)
            for code in await self.district_codes()
        ]


def periods_due(day: date) -> list[str]:
    periods = ["daily"]
    if day.weekday() == 0:
        periods.append("weekly")
    if day.day == 1:
        periods.append("monthly")
    return periods


async def run_scheduled_snapshots(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock = system_clock,
) -> int:
    """Scheduler job; returns the number of snapshot rows written."""
    if session_factory is None:
        from grievance.core.db import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    today = clock.today()
    written = 0
    async with session_factory() as db:
        aggregator = SnapshotAggregator(db, clock=clock)
        for period in periods_due(today):
            written += len(await aggregator.snapshot_all_districts(period, today))
    logger.info("Scheduled snapshot run for %s wrote %d rows", today.isoformat(), written)
    return written
