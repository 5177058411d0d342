"""
Revision & file manifest models

中文注释: 修订历史的核心模型。每个 Revision 是某一版本文件清单的不可变快照，版本号从 1 开始连续递增。
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ManuscriptFile(BaseModel):
    """文件清单条目（字节内容由 File Storage 协作方保管，这里只保留元数据）"""

    file_id: str
    original_name: str
    size: int = Field(0, description="文件大小（字节）")
    content_type: Optional[str] = None
    checksum: Optional[str] = Field(
        None, description="外部提供的内容签名（例如 sha256），用于 diff 判定"
    )

    model_config = ConfigDict(frozen=True)


class Revision(BaseModel):
    version: int = Field(..., ge=1, description="版本号，从 1 开始")
    submitted_at: datetime
    submitted_by: str
    files: list[ManuscriptFile] = Field(default_factory=list)
    response_to_reviewers: Optional[str] = Field(
        None, description="回复审稿意见文件的 file_id"
    )
    revision_notes: Optional[str] = None
    is_initial: bool = False

    model_config = ConfigDict(frozen=True)


class RevisionSubmit(BaseModel):
    """Author 提交修订稿时使用的模型"""

    files: list[ManuscriptFile] = Field(default_factory=list)
    response_to_reviewers: Optional[str] = None
    revision_notes: Optional[str] = None


class FileChange(BaseModel):
    file_id: str
    original_name: str
    size: int
    content_type: Optional[str] = None
    previous_name: Optional[str] = None
    previous_size: Optional[int] = None


class ChangeSummary(BaseModel):
    added: int = 0
    modified: int = 0
    removed: int = 0


class RevisionComparison(BaseModel):
    manuscript_id: str
    from_version: int
    to_version: int
    summary: ChangeSummary
    added: list[FileChange] = Field(default_factory=list)
    modified: list[FileChange] = Field(default_factory=list)
    removed: list[FileChange] = Field(default_factory=list)
