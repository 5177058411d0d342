from fastapi import APIRouter, Depends, File, Query, UploadFile

from app.api.v1.deps import get_storage_service
from app.core.roles import Actor, get_current_actor
from app.services.storage_service import StorageService

router = APIRouter(prefix="/files", tags=["Files"])


@router.post("", status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    service: StorageService = Depends(get_storage_service),
):
    """
    上传稿件文件，返回可直接放入投稿 / 修回请求 files 列表的清单条目
    """
    content = await file.read()
    manifest = await service.store(
        content,
        original_name=file.filename or "",
        content_type=file.content_type or "",
        uploaded_by=actor.id,
    )
    return {"success": True, "data": manifest}


@router.get("/{file_id}/download")
async def download_url(
    file_id: str,
    expires_in: int = Query(600, ge=60, le=3600),
    actor: Actor = Depends(get_current_actor),
    service: StorageService = Depends(get_storage_service),
):
    signed = service.create_signed_url(file_id, expires_in=expires_in)
    return {"success": True, "data": {"url": signed.url, "expires_in": signed.expires_in}}
