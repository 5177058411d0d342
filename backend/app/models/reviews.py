from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    PENDING_INVITATION = "pending_invitation"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def allowed_next(cls, current: str) -> set[str]:
        """
        审稿状态单调推进:
        - pending_invitation -> accepted / declined
        - accepted -> in_progress
        - in_progress -> completed
        - declined / completed 为终态
        """
        c = (current or "").strip().lower()
        if c == cls.PENDING_INVITATION.value:
            return {cls.ACCEPTED.value, cls.DECLINED.value}
        if c == cls.ACCEPTED.value:
            return {cls.IN_PROGRESS.value}
        if c == cls.IN_PROGRESS.value:
            return {cls.COMPLETED.value}
        return set()

    @classmethod
    def active(cls) -> set["ReviewStatus"]:
        return {cls.PENDING_INVITATION, cls.ACCEPTED, cls.IN_PROGRESS}


class Recommendation(str, Enum):
    ACCEPT = "accept"
    MINOR_REVISION = "minor_revision"
    MAJOR_REVISION = "major_revision"
    REJECT = "reject"


class ReviewRatings(BaseModel):
    originality: int
    methodology: int
    clarity: int
    significance: int

    def values(self) -> list[int]:
        return [self.originality, self.methodology, self.clarity, self.significance]

    def average(self) -> float:
        vals = self.values()
        return sum(vals) / len(vals)


class Review(BaseModel):
    """审稿记录（一位审稿人对一篇稿件的一次指派）"""

    id: str
    manuscript_id: str
    reviewer_id: str
    assigned_by: str
    status: ReviewStatus = ReviewStatus.PENDING_INVITATION
    review_round: int = 1
    due_date: date
    invited_at: datetime
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    completed_at: Optional[datetime] = None

    ratings: Optional[ReviewRatings] = None
    # Public (Author-visible)
    comments_for_author: Optional[str] = None
    # Confidential (Editor-only)
    comments_for_editor: Optional[str] = None
    recommendation: Optional[Recommendation] = None

    reminders_sent: list[datetime] = Field(default_factory=list)
    row_version: int = 1

    def is_overdue(self, today: date) -> bool:
        return self.status in ReviewStatus.active() and self.due_date < today

    def author_view(self) -> dict:
        """作者视角：去掉给编辑的保密意见与审稿人身份"""
        data = self.model_dump(mode="json")
        for key in ("comments_for_editor", "reviewer_id", "assigned_by", "reminders_sent"):
            data.pop(key, None)
        return data


class ReviewAssignRequest(BaseModel):
    reviewer_ids: list[str] = Field(default_factory=list)
    due_date: Optional[date] = None
    deadlines: dict[str, date] = Field(
        default_factory=dict, description="按审稿人单独指定截止日期"
    )


class InvitationResponse(BaseModel):
    response: Literal["accepted", "declined"]
    reason: Optional[str] = None


class ReviewSubmitRequest(BaseModel):
    ratings: ReviewRatings
    comments_for_author: str = ""
    comments_for_editor: str = ""
    recommendation: Recommendation


class ReviewerScore(BaseModel):
    review_id: str
    reviewer_id: str
    recommendation: Recommendation
    average_rating: float


class ReviewAggregate(BaseModel):
    """Decision Aggregator 的输出：仅供编辑参考，不自动决策"""

    manuscript_id: str
    review_round: Optional[int] = None
    total_reviews: int = 0
    completed_count: int = 0
    min_reviewers: int
    recommendation_counts: dict[str, int] = Field(default_factory=dict)
    mean_rating: Optional[float] = None
    reviewer_scores: list[ReviewerScore] = Field(default_factory=list)
    eligible_for_decision: bool = False
    blocking_review_ids: list[str] = Field(default_factory=list)
    summary: str = ""
