"""Pagination utilities and models for API responses."""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Query parameters for list endpoints.

    Used as a FastAPI dependency:
    ```python
    @router.get("/admin/users")
    async def list_users(pagination: PaginationParams = Depends()):
        ...
    ```
    """

    page: int | None = Field(default=1, ge=1, description="Page number (1-indexed). Omit with page_size for all rows")
    page_size: int | None = Field(default=50, ge=1, le=500, description="Items per page")

    @property
    def skip(self) -> int:
        """Offset for the database query."""
        if self.page is None or self.page_size is None:
            return 0
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int | None:
        return self.page_size

    @property
    def is_paginated(self) -> bool:
        return self.page is not None and self.page_size is not None


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response body."""

    items: list[T]
    total: int
    page: int | None = None
    page_size: int | None = None

    @property
    def total_pages(self) -> int | None:
        """Total number of pages, or None when not paginated."""
        if self.page is None or self.page_size is None or self.page_size == 0:
            return None
        return (self.total + self.page_size - 1) // self.page_size

    @classmethod
    def build(cls, items: list[T], total: int, pagination: PaginationParams) -> "PaginatedResponse[T]":
        return cls(items=items, total=total, page=pagination.page, page_size=pagination.page_size)


__all__ = ["PaginatedResponse", "PaginationParams"]
