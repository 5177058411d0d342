from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from app.core.config import WorkflowConfig
from app.core.errors import ExternalServiceError, NotFoundError, ValidationError
from app.models.revision import ManuscriptFile

logger = logging.getLogger("journalflow.storage")

FILES_TABLE = "manuscript_files"
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/x-latex",
    "application/zip",
    "text/plain",
    "image/png",
    "image/jpeg",
}


def _normalize_signed_url(resp: object) -> str | None:
    if not isinstance(resp, dict):
        return None
    return str(resp.get("signedUrl") or resp.get("signedURL") or "") or None


def content_signature(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_in: int


class StorageService:
    """
    文件存储协作方（Supabase Storage）

    中文注释:
    - 引擎只关心文件清单元数据（file_id / 名称 / 大小 / 类型 / 签名），字节内容放在 bucket 中。
    - 上传受 STORAGE_TIMEOUT_SECONDS 约束，超时视为外部服务错误。
    """

    def __init__(self, client: Any = None, *, config: Optional[WorkflowConfig] = None) -> None:
        if client is None:
            from app.lib.api_client import supabase_admin

            client = supabase_admin
        self.client = client
        self.config = config or WorkflowConfig.from_env()
        self.bucket = self.config.storage_bucket

    def ensure_bucket_exists(self, *, public: bool = False) -> None:
        """
        确保 Storage bucket 存在（开发/演示环境兜底）。
        """
        storage = getattr(self.client, "storage", None)
        if storage is None or not hasattr(storage, "get_bucket") or not hasattr(storage, "create_bucket"):
            return

        try:
            storage.get_bucket(self.bucket)
            return
        except Exception:
            pass

        try:
            storage.create_bucket(self.bucket, options={"public": bool(public)})
        except Exception as e:
            text = str(e).lower()
            if "already" in text or "exists" in text or "duplicate" in text:
                return
            raise

    def _upload(self, path: str, content: bytes, content_type: str) -> None:
        self.ensure_bucket_exists(public=False)
        # storage3 期望 header value 为字符串；传 bool 会触发 httpx "Header value must be str or bytes"。
        opts = {"content-type": content_type, "upsert": "false"}
        self.client.storage.from_(self.bucket).upload(path, content, opts)

    async def store(
        self,
        content: bytes,
        *,
        original_name: str,
        content_type: str,
        uploaded_by: Optional[str] = None,
    ) -> ManuscriptFile:
        name = (original_name or "").strip()
        if not name:
            raise ValidationError("original_name is required")
        if not content:
            raise ValidationError("Uploaded file is empty")
        if len(content) > MAX_UPLOAD_BYTES:
            raise ValidationError(f"File exceeds {MAX_UPLOAD_BYTES} bytes")
        content_type = (content_type or "application/octet-stream").split(";")[0].strip().lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(f"Unsupported content type: {content_type}")

        file_id = str(uuid.uuid4())
        path = f"{file_id}/{name}"
        timeout = self.config.storage_timeout_seconds
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._upload, path, content, content_type), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(f"Storage upload timed out after {timeout}s") from e
        except Exception as e:
            logger.warning("[Storage] upload %s failed: %s", path, e)
            raise ExternalServiceError("Storage upload failed") from e

        manifest = ManuscriptFile(
            file_id=file_id,
            original_name=name,
            size=len(content),
            content_type=content_type,
            checksum=content_signature(content),
        )
        self.client.table(FILES_TABLE).insert(
            {**manifest.model_dump(mode="json"), "id": file_id, "path": path, "uploaded_by": uploaded_by}
        ).execute()
        return manifest

    def _metadata(self, file_id: str) -> dict[str, Any]:
        resp = self.client.table(FILES_TABLE).select("*").eq("id", file_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFoundError("File not found", extra={"file_id": file_id})
        return rows[0]

    def retrieve(self, file_id: str) -> tuple[bytes, dict[str, Any]]:
        meta = self._metadata(file_id)
        try:
            content = self.client.storage.from_(self.bucket).download(meta["path"])
        except Exception as e:
            raise ExternalServiceError("Storage download failed", extra={"file_id": file_id}) from e
        return content, meta

    def create_signed_url(self, file_id: str, *, expires_in: int = 600) -> SignedUrl:
        meta = self._metadata(file_id)
        signed = self.client.storage.from_(self.bucket).create_signed_url(meta["path"], expires_in)
        url = _normalize_signed_url(signed)
        if not url:
            raise ExternalServiceError("Failed to create signed url", extra={"file_id": file_id})
        return SignedUrl(url=url, expires_in=expires_in)
