from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class Issue(BaseModel):
    """期刊卷期（volume + issue_number 唯一）"""

    id: str
    volume: int = Field(..., ge=1)
    issue_number: int = Field(..., ge=1)
    year: int
    title: Optional[str] = None
    is_published: bool = False
    manuscript_ids: list[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None
    row_version: int = 1
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Issue":
        return cls(**row)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class IssueCreate(BaseModel):
    volume: int = Field(..., ge=1)
    issue_number: int = Field(..., ge=1)
    year: int = Field(..., ge=1900, le=2200)
    title: Optional[str] = None


class IssueManuscriptRequest(BaseModel):
    manuscript_id: str


class IssuePublishItem(BaseModel):
    manuscript_id: str
    manuscript_code: Optional[str] = None
    status: Optional[str] = None
    deposit_status: Optional[str] = None
    doi: Optional[str] = None
    error: Optional[str] = None


class IssuePublishResult(BaseModel):
    issue: Issue
    items: list[IssuePublishItem] = Field(default_factory=list)
