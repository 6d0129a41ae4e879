"""Shared response schemas."""
from typing import Any, Literal

from pydantic import BaseModel


class PaginationMeta(BaseModel):
    """Page-number pagination.

    ``total`` and ``total_pages`` are lower-bound estimates unless stated
    otherwise: they count the records seen up to the requested page plus one
    lookahead record, never the whole partition.
    """
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class APIResponse(BaseModel):
    status: Literal["success", "error"]
    data: Any = None
    message: str | None = None
    pagination: PaginationMeta | None = None


class ErrorDetail(BaseModel):
    """RFC 7807 Problem Details."""
    type: str = "about:blank"
    title: str
    status: int
    detail: str
    code: str
    service: str | None = None
    instance: str | None = None
