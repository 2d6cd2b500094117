"""Shared schema utilities."""
from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    detail: str
    code: str
    errors: list[dict[str, Any]] | None = None


class PaginationMeta(BaseModel):
    total: int
    page: int
    page_size: int
    pages: int
