from datetime import date, datetime

from sqlalchemy import Date, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from grievance.models.base import Base, JSONType


class ComplaintSnapshot(Base):
    """
    Immutable point-in-time complaint counts for one geographic entity.

    No uniqueness on (entity, period, snapshot_date): computing twice for the
    same key appends a second row.  The integer id orders rows written on the
    same date.
    """

    __tablename__ = "complaint_snapshots"
    __table_args__ = (
        Index(
            "idx_complaint_snapshots_key",
            "entity_type",
            "entity_code",
            "period",
            "snapshot_date",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_code: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(200), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    total_complaints: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    by_status: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    by_category: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
