from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from app.core.errors import WorkflowError
from app.models.doi import DepositStatus

logger = logging.getLogger("journalflow.doi")

# 可以发起注册尝试的来源状态
DEPOSITABLE_STATUSES = {
    DepositStatus.NOT_ASSIGNED.value,
    DepositStatus.PENDING.value,
    DepositStatus.FAILED.value,
}
RETRYABLE_STATUSES = {DepositStatus.FAILED.value, DepositStatus.NOT_ASSIGNED.value}

INTERRUPTED_ERROR = "Deposit interrupted before completion"


class DuplicateAttempt(Exception):
    """attempt_number 已被记录过：幂等返回当前状态，不产生新尝试。"""


def truncate(value: str, max_len: int = 2000) -> str:
    text = str(value or "").strip()
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def describe_error(exc: BaseException, *, timeout: Optional[float] = None) -> str:
    """把注册失败原因压成一行可展示的 deposit_error"""
    if isinstance(exc, asyncio.TimeoutError):
        return f"Registrar timed out after {timeout}s" if timeout else "Registrar timed out"
    if isinstance(exc, httpx.HTTPStatusError):
        return truncate(f"Registrar HTTP {exc.response.status_code}: {exc.response.text}", 500)
    if isinstance(exc, httpx.HTTPError):
        return truncate(f"Registrar transport error: {exc.__class__.__name__}: {exc}", 500)
    if isinstance(exc, WorkflowError):
        return truncate(exc.message, 500)
    return truncate(f"{exc.__class__.__name__}: {exc}", 500)


def json_safe_response(response: Any) -> Optional[dict[str, Any]]:
    if not isinstance(response, dict):
        return None
    return {
        str(k): v
        for k, v in response.items()
        if isinstance(v, (str, int, float, bool)) or v is None
    }
