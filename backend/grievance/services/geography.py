"""
Geography collaborator: the district → subdistrict → village tree.

The snapshot aggregator only needs children_of(code); lookups are cached in
memory with a 5-minute TTL because the tree changes only on data imports.
Call clear_cache() after importing areas.
"""
import logging
import time
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.models.geography import GeoArea

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("district", "subdistrict", "village")

# ---------------------------------------------------------------------------
# Simple in-memory TTL cache
# ---------------------------------------------------------------------------
_cache: dict[str, tuple[float, Any]] = {}
_CACHE_TTL = 300  # 5 minutes


def _cache_get(key: str) -> Any | None:
    if key in _cache:
        ts, value = _cache[key]
        if time.monotonic() - ts < _CACHE_TTL:
            return value
        del _cache[key]
    return None


def _cache_set(key: str, value: Any) -> None:
    _cache[key] = (time.monotonic(), value)


def clear_cache() -> None:
    _cache.clear()


class GeographyService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, code: str) -> GeoArea | None:
        return await self.db.get(GeoArea, code)

    async def children_of(self, code: str) -> list[str]:
        cached = _cache_get(f"children:{code}")
        if cached is not None:
            return cached
        result = await self.db.execute(
            select(GeoArea.code).where(GeoArea.parent_code == code).order_by(GeoArea.code)
        )
        children = list(result.scalars().all())
        _cache_set(f"children:{code}", children)
        return children

    async def descendants_of(self, code: str) -> list[str]:
        """Every code below *code* (breadth-first, cycle-safe)."""
        seen: set[str] = {code}
        ordered: list[str] = []
        frontier = [code]
        while frontier:
            next_frontier: list[str] = []
            for parent in frontier:
                for child in await self.children_of(parent):
                    if child in seen:
                        logger.warning("Geography cycle detected at %s under %s", child, parent)
                        continue
                    seen.add(child)
                    ordered.append(child)
                    next_frontier.append(child)
            frontier = next_frontier
        return ordered

    async def codes_of_type(self, entity_type: str) -> list[str]:
        result = await self.db.execute(
            select(GeoArea.code).where(GeoArea.entity_type == entity_type).order_by(GeoArea.code)
        )
        return list(result.scalars().all())

    async def name_of(self, code: str) -> str | None:
        area = await self.get(code)
        return area.name if area else None
