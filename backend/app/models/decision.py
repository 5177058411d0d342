from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


DecisionValue = Literal["accept", "reject", "major_revision", "minor_revision"]


class DecisionRequest(BaseModel):
    """
    编辑决策提交请求
    """

    decision: DecisionValue = Field(..., description="决策结论")
    letter: str = Field("", description="给作者的决定信")
    internal_notes: Optional[str] = Field(None, description="仅编辑部可见的备注")
    override: bool = Field(
        False,
        description="编辑越过 review_completed 直接决策（会记录在决策与时间线中）",
    )


class DecisionRecord(BaseModel):
    decision: DecisionValue
    letter: str = ""
    internal_notes: Optional[str] = None
    decided_by: str
    decided_at: datetime
    override: bool = False
