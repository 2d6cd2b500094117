from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from grievance.models.base import Base


class GeoArea(Base):
    """One node of the district → subdistrict → village tree."""

    __tablename__ = "geo_areas"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    parent_code: Mapped[str | None] = mapped_column(
        String(50), ForeignKey("geo_areas.code"), nullable=True, index=True
    )
