"""Restore and compare schemas."""
from typing import Any, Literal

from pydantic import BaseModel, Field


class RestoreRequest(BaseModel):
    credential_id: str = Field(min_length=1)
    mode: Literal["new", "in_place"] = "new"
    # only honoured when mode == "new"
    target_account_id: str | None = None
    new_name: str | None = Field(None, min_length=1, max_length=255)


class RestoreResult(BaseModel):
    success: bool
    new_dashboard_guid: str | None = None
    message: str


class CompareResult(BaseModel):
    snapshot_id: str
    dashboard_guid: str
    has_changes: bool
    changed_fields: list[str] = []
    current_version: dict[str, Any] | None = None
    backup_version: dict[str, Any] | None = None
