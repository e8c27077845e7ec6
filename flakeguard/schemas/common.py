"""Common API schemas."""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""

    code: int = Field(default=0, description="Response code, 0 for success")
    message: str = Field(default="success", description="Response message")
    data: T | None = Field(default=None, description="Response data")


class ListResponse(BaseModel, Generic[T]):
    """List response wrapper."""

    code: int = Field(default=0, description="Response code")
    message: str = Field(default="success", description="Response message")
    data: list[T] = Field(default_factory=list, description="List of items")
    total: int = Field(default=0, ge=0, description="Total count")
