"""
Response envelope shared by every endpoint.

    {"success": true, "message": "...", "data": ..., "meta": {...}}
"""

from pydantic import BaseModel
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# Largest value an INTEGER primary key column holds
MAX_ID = 2**31 - 1


class PageMeta(BaseModel):
    """Listing metadata."""
    total: int
    page: int
    page_size: int


class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope."""
    success: bool = True
    message: str
    data: Optional[T] = None
    meta: Optional[PageMeta] = None
