"""
Typed workflow errors.

中文注释:
- 每个错误都带稳定的机器码 (code) 与人类可读 message，API 层统一渲染。
- 继承 HTTPException，服务层直接 raise 即可被 FastAPI 处理（与既有 service 写法一致）。
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException


class WorkflowError(HTTPException):
    code = "workflow_error"
    http_status = 400

    def __init__(self, message: str, *, extra: Optional[dict[str, Any]] = None):
        self.message = message
        self.extra = dict(extra or {})
        super().__init__(
            status_code=self.http_status,
            detail={"code": self.code, "message": message, **self.extra},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(WorkflowError):
    """Malformed input. The caller must correct it; never retried."""

    code = "validation_error"
    http_status = 422


class InvalidStateError(WorkflowError):
    """Operation attempted from a state that does not allow it."""

    code = "invalid_state"
    http_status = 409


class ConflictError(WorkflowError):
    """Uniqueness violation or lost optimistic-concurrency race."""

    code = "conflict"
    http_status = 409


class ExternalServiceError(WorkflowError):
    code = "external_service_error"
    http_status = 502


class NotFoundError(WorkflowError):
    code = "not_found"
    http_status = 404


class PermissionDeniedError(WorkflowError):
    code = "forbidden"
    http_status = 403
