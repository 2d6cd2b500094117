import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from grievance.models.base import Base, JSONType


class Complaint(Base):
    __tablename__ = "complaints"
    __table_args__ = (
        Index("idx_complaints_status_priority", "status", "priority"),
        Index("idx_complaints_category_status", "category", "status"),
        Index("idx_complaints_officer_status", "assigned_officer_id", "status"),
        Index("idx_complaints_district", "district_code"),
        Index("idx_complaints_subdistrict", "subdistrict_code"),
        Index("idx_complaints_village", "village_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    complaint_code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    # Classification
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Geography
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    district_code: Mapped[str] = mapped_column(String(50), nullable=False)
    district_name: Mapped[str] = mapped_column(String(100), nullable=False)
    subdistrict_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subdistrict_name: Mapped[str] = mapped_column(String(100), nullable=False)
    village_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    village_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    # Contact
    contact_name: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Assignment
    assigned_officer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    is_officer_assigned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    arrival_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    assigned_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # SLA
    time_boundary: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    is_extended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Closure
    is_complaint_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closing_details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    event_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())

    __mapper_args__ = {"version_id_col": version}

    @property
    def deadline(self) -> datetime | None:
        """assigned_time + time_boundary days; never stored."""
        if self.assigned_time is None:
            return None
        return self.assigned_time + timedelta(days=self.time_boundary)


class ComplaintNote(Base):
    __tablename__ = "complaint_notes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    complaint_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    note: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    author_role: Mapped[str] = mapped_column(String(20), nullable=False)
    author_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())


class ComplaintAttachment(Base):
    """Reference to a file held by the document-storage collaborator."""

    __tablename__ = "complaint_attachments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    complaint_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uploaded_by_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
