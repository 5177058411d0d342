from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.core.errors import InvalidStateError

# 中文注释: 注册机构前缀 10.xxxx，后接 /suffix（后缀不允许空白字符）
DOI_PATTERN = re.compile(r"^\d{2,9}\.\d{4,9}/\S+$")


def is_valid_doi(value: str | None) -> bool:
    text = str(value or "").strip()
    if not text.startswith("10."):
        return False
    return DOI_PATTERN.match(text) is not None


class DepositStatus(str, Enum):
    NOT_ASSIGNED = "not_assigned"
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def allowed_next(cls, current: str) -> set[str]:
        """
        DOI 注册状态机（人工指定 DOI 不走此表，见 DoiMetadata.apply_manual_assignment）:
        - not_assigned -> pending
        - pending -> processing
        - processing -> success / failed
        - failed -> pending（重试）
        """
        c = (current or "").strip().lower()
        if c == cls.NOT_ASSIGNED.value:
            return {cls.PENDING.value}
        if c == cls.PENDING.value:
            return {cls.PROCESSING.value}
        if c == cls.PROCESSING.value:
            return {cls.SUCCESS.value, cls.FAILED.value}
        if c == cls.FAILED.value:
            return {cls.PENDING.value}
        return set()


class DepositHistoryEntry(BaseModel):
    attempt_number: int = Field(..., ge=1)
    timestamp: datetime
    status: DepositStatus
    error: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    manual: bool = False
    performed_by: Optional[str] = None


class DoiMetadata(BaseModel):
    deposit_status: DepositStatus = DepositStatus.NOT_ASSIGNED
    deposit_attempts: int = 0
    last_deposit_attempt: Optional[datetime] = None
    deposit_error: Optional[str] = None
    deposit_history: list[DepositHistoryEntry] = Field(default_factory=list)
    doi: Optional[str] = None

    def transition(self, to_status: DepositStatus) -> None:
        current = self.deposit_status.value
        if to_status.value not in DepositStatus.allowed_next(current):
            raise InvalidStateError(
                f"Invalid deposit transition: {current} -> {to_status.value}",
                extra={"deposit_status": current},
            )
        self.deposit_status = to_status

    def record_attempt(
        self,
        *,
        succeeded: bool,
        now: datetime,
        performed_by: Optional[str],
        doi: Optional[str] = None,
        error: Optional[str] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> DepositHistoryEntry:
        """
        记录一次注册尝试的结果：attempts +1 且 history 追加恰好一条。

        中文注释: 若处理期间被管理员人工指定了 DOI（状态已是 success），失败结果仍写入历史，但不覆盖 success。
        """
        outcome = DepositStatus.SUCCESS if succeeded else DepositStatus.FAILED
        was_processing = self.deposit_status == DepositStatus.PROCESSING
        if not was_processing and self.deposit_status != DepositStatus.SUCCESS:
            raise InvalidStateError(
                "Deposit result can only be recorded for a processing attempt",
                extra={"deposit_status": self.deposit_status.value},
            )

        if was_processing:
            self.transition(outcome)
            if succeeded:
                self.doi = doi
                self.deposit_error = None
            else:
                self.deposit_error = error

        return self._append_history(
            status=outcome,
            now=now,
            performed_by=performed_by,
            error=error,
            response=response,
            manual=False,
        )

    def apply_manual_assignment(self, *, doi: str, now: datetime, performed_by: Optional[str]) -> DepositHistoryEntry:
        self.deposit_status = DepositStatus.SUCCESS
        self.doi = doi
        self.deposit_error = None
        self.last_deposit_attempt = now
        return self._append_history(
            status=DepositStatus.SUCCESS,
            now=now,
            performed_by=performed_by,
            error=None,
            response={"doi": doi, "source": "manual_override"},
            manual=True,
        )

    def _append_history(
        self,
        *,
        status: DepositStatus,
        now: datetime,
        performed_by: Optional[str],
        error: Optional[str],
        response: Optional[dict[str, Any]],
        manual: bool,
    ) -> DepositHistoryEntry:
        self.deposit_attempts += 1
        entry = DepositHistoryEntry(
            attempt_number=self.deposit_attempts,
            timestamp=now,
            status=status,
            error=error,
            response=response,
            manual=manual,
            performed_by=performed_by,
        )
        self.deposit_history.append(entry)
        return entry


class ManualDoiRequest(BaseModel):
    doi: str


class DepositAttemptRequest(BaseModel):
    attempt_number: Optional[int] = Field(
        None, description="幂等标识：重复提交同一 attempt_number 不会产生新的尝试"
    )


class DepositSummary(BaseModel):
    manuscript_id: str
    manuscript_code: str
    title: str
    status: str
    doi: Optional[str] = None
    doi_metadata: Optional[DoiMetadata] = None


class BulkRetryItem(BaseModel):
    manuscript_id: str
    manuscript_code: Optional[str] = None
    deposit_status: Optional[str] = None
    doi: Optional[str] = None
    error: Optional[str] = None


class BulkRetryResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    items: list[BulkRetryItem] = Field(default_factory=list)
