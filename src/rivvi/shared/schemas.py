"""
Pydantic building blocks shared by every domain API.
"""

from typing import Any, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, Field

T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


class Page(BaseModel, Generic[T]):
    """A page of results with the total across all pages."""

    items: list[T]
    total_count: int
    has_more: bool

    @classmethod
    def build(cls, items: list[T], total_count: int, limit: int, offset: int) -> "Page[T]":
        return cls(items=items, total_count=total_count, has_more=offset + limit < total_count)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    detail: ErrorDetail


def metadata_field() -> Any:
    """``metadata`` response field read from the ORM's ``metadata_`` attribute."""
    return Field(default=None, validation_alias=AliasChoices("metadata_", "metadata"))
