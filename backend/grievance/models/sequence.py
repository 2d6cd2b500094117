from datetime import date

from sqlalchemy import Date, Integer
from sqlalchemy.orm import Mapped, mapped_column

from grievance.models.base import Base


class ComplaintSequence(Base):
    """Per-day counter behind the public complaint code (DDMMYYYY<suffix>NNN)."""

    __tablename__ = "complaint_sequence"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
