from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from app.core.config import WorkflowConfig
from app.core.errors import ExternalServiceError, NotFoundError, ValidationError
from app.services.storage_service import StorageService, content_signature
from fake_supabase import FakeSupabase


def _service(timeout: float = 5.0) -> tuple[StorageService, FakeSupabase]:
    db = FakeSupabase()
    db.storage = MagicMock()
    return StorageService(db, config=WorkflowConfig(storage_timeout_seconds=timeout)), db


@pytest.mark.asyncio
async def test_store_returns_manifest_entry_with_signature() -> None:
    svc, db = _service()
    manifest = await svc.store(b"%PDF-1.7 body", original_name="main.pdf", content_type="application/pdf; charset=binary", uploaded_by="author-1")

    assert manifest.original_name == "main.pdf"
    assert manifest.size == len(b"%PDF-1.7 body")
    assert manifest.content_type == "application/pdf"
    assert manifest.checksum == content_signature(b"%PDF-1.7 body")

    rows = db.rows("manuscript_files")
    assert rows[0]["id"] == manifest.file_id
    assert rows[0]["path"] == f"{manifest.file_id}/main.pdf"
    db.storage.from_.return_value.upload.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content,name,content_type",
    [
        (b"", "main.pdf", "application/pdf"),
        (b"data", "  ", "application/pdf"),
        (b"data", "run.exe", "application/x-msdownload"),
    ],
)
async def test_store_rejects_invalid_uploads(content, name, content_type) -> None:
    svc, _ = _service()
    with pytest.raises(ValidationError):
        await svc.store(content, original_name=name, content_type=content_type)


@pytest.mark.asyncio
async def test_store_timeout_is_external_error() -> None:
    svc, db = _service(timeout=0.05)
    db.storage.from_.return_value.upload.side_effect = lambda *a, **k: time.sleep(0.3)

    with pytest.raises(ExternalServiceError):
        await svc.store(b"data", original_name="main.pdf", content_type="application/pdf")
    assert db.rows("manuscript_files") == []


@pytest.mark.asyncio
async def test_signed_url_and_missing_file() -> None:
    svc, db = _service()
    manifest = await svc.store(b"data", original_name="main.pdf", content_type="application/pdf")
    db.storage.from_.return_value.create_signed_url.return_value = {"signedURL": "https://cdn.example.org/x?token=1"}

    signed = svc.create_signed_url(manifest.file_id, expires_in=120)
    assert signed.url == "https://cdn.example.org/x?token=1"
    assert signed.expires_in == 120

    with pytest.raises(NotFoundError):
        svc.create_signed_url("missing")
