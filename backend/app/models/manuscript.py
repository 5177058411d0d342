from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models.decision import DecisionRecord
from app.models.doi import DoiMetadata
from app.models.revision import ManuscriptFile, Revision


class ManuscriptStatus(str, Enum):
    """
    统一稿件生命周期状态枚举。

    中文注释:
    - 状态流转规则集中在 allowed_next，服务层统一校验，禁止在调用点做字符串比较。
    - 数据库存储为字符串；服务层会 normalize 后再写入。
    """

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REVIEW_COMPLETED = "review_completed"
    REVISION_REQUIRED = "revision_required"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PUBLISHED = "published"

    @classmethod
    def allowed_next(cls, current: str) -> set[str]:
        """
        状态机规则必须显性可见:
        - submitted -> under_review
        - under_review -> review_completed
        - review_completed -> revision_required / accepted / rejected
        - revision_required -> submitted（修回，版本号 +1）
        - accepted -> published（需先编入期刊 issue）
        - rejected / published 为终态
        """
        c = (current or "").strip().lower()
        if c == cls.SUBMITTED.value:
            return {cls.UNDER_REVIEW.value}
        if c == cls.UNDER_REVIEW.value:
            return {cls.REVIEW_COMPLETED.value}
        if c == cls.REVIEW_COMPLETED.value:
            return {cls.REVISION_REQUIRED.value, cls.ACCEPTED.value, cls.REJECTED.value}
        if c == cls.REVISION_REQUIRED.value:
            return {cls.SUBMITTED.value}
        if c == cls.ACCEPTED.value:
            return {cls.PUBLISHED.value}
        return set()

    @classmethod
    def decision_override_sources(cls) -> set[str]:
        # 编辑越权决策：允许在评审未完成时直接给出结论
        return {cls.SUBMITTED.value, cls.UNDER_REVIEW.value}

    @classmethod
    def terminal(cls) -> set[str]:
        return {cls.REJECTED.value, cls.PUBLISHED.value}


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower().replace(" ", "_")
    if not v:
        return None
    # 兼容旧系统的展示型状态
    legacy_map = {
        "revisions_required": ManuscriptStatus.REVISION_REQUIRED.value,
        "revised_submitted": ManuscriptStatus.SUBMITTED.value,
    }
    v = legacy_map.get(v, v)

    try:
        return ManuscriptStatus(v).value
    except ValueError:
        return None


class Author(BaseModel):
    name: str = ""
    affiliation: str = ""
    email: Optional[str] = None
    orcid: Optional[str] = None
    is_corresponding: bool = False


class TimelineEvent(BaseModel):
    event: str
    timestamp: datetime
    detail: Optional[str] = None
    performed_by: Optional[str] = None


class Manuscript(BaseModel):
    id: str
    manuscript_code: str
    title: str
    abstract: str
    keywords: list[str] = Field(default_factory=list)
    authors: list[Author] = Field(default_factory=list)
    submitted_by: str
    status: ManuscriptStatus = ManuscriptStatus.SUBMITTED
    assigned_editor_id: Optional[str] = None
    files: list[ManuscriptFile] = Field(default_factory=list)
    revisions: list[Revision] = Field(default_factory=list)
    current_version: int = 1
    decision: Optional[DecisionRecord] = None
    doi: Optional[str] = None
    doi_metadata: Optional[DoiMetadata] = None
    issue_id: Optional[str] = None
    published_at: Optional[datetime] = None
    public_url: Optional[str] = None
    timeline: list[TimelineEvent] = Field(default_factory=list)
    row_version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Manuscript":
        return cls(**row)

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(mode="json")
        # 冗余列：便于按 DOI 注册状态筛选（BulkRetry / 列表页）
        row["deposit_status"] = (
            self.doi_metadata.deposit_status.value if self.doi_metadata else None
        )
        return row

    @property
    def corresponding_author(self) -> Optional[Author]:
        for author in self.authors:
            if author.is_corresponding:
                return author
        return None

    def latest_version(self) -> int:
        if not self.revisions:
            return 0
        return max(r.version for r in self.revisions)

    def get_revision(self, version: int) -> Optional[Revision]:
        for revision in self.revisions:
            if revision.version == version:
                return revision
        return None

    def without_internal_notes(self) -> "Manuscript":
        """非编辑视角：去掉决策中的编辑部内部备注"""
        if self.decision is None or self.decision.internal_notes is None:
            return self
        return self.model_copy(
            update={"decision": self.decision.model_copy(update={"internal_notes": None})}
        )

    def add_timeline_event(
        self,
        event: str,
        *,
        now: datetime,
        performed_by: Optional[str],
        detail: Optional[str] = None,
    ) -> None:
        self.timeline.append(
            TimelineEvent(event=event, timestamp=now, detail=detail, performed_by=performed_by)
        )


class ManuscriptSubmit(BaseModel):
    title: str = ""
    abstract: str = ""
    keywords: list[str] = Field(default_factory=list)
    authors: list[Author] = Field(default_factory=list)
    files: list[ManuscriptFile] = Field(default_factory=list)


class AssignEditorRequest(BaseModel):
    editor_id: str
